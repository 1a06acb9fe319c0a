#!/usr/bin/env python3
"""
Health check utilities for the todo ↔ beads sync system.

Computes a simple health score and status with diagnostics.
"""

from __future__ import annotations

import json
from typing import Dict, Any, Optional

from bd_wrapper import BeadsWrapper, BeadsError, get_wrapper
from config_loader import SyncConfig, load_config
from mapping_store import JsonSerializer, MappingCorrupt, TodoMapping


def compute_health(config: Optional[SyncConfig] = None, wrapper: Optional[BeadsWrapper] = None) -> Dict[str, Any]:
    """Compute overall health from bd availability and mapping state."""
    config = config or load_config()
    diagnostics: Dict[str, Any] = {}
    score = 100

    # 1) bd availability
    bd = {'installed': False, 'version': None}
    try:
        wrapper = wrapper or get_wrapper(
            command=config.get('beads.command', 'bd'),
            cwd=config.get('beads.cwd'),
            timeout=config.get('beads.timeout'),
        )
        bd['version'] = wrapper.check_installation()
        bd['installed'] = True
    except BeadsError as e:
        bd['error'] = str(e)
    diagnostics['bd'] = bd
    if not bd['installed']:
        score -= 40

    # 2) Mapping document readable
    mapping_path = config.mapping_path
    mapping = {'path': str(mapping_path), 'exists': mapping_path.exists(), 'ok': True}
    if mapping['exists']:
        try:
            parsed = TodoMapping.from_dict(JsonSerializer().loads(mapping_path.read_text(encoding='utf-8')))
            mapping['sessions'] = len(parsed.sessions)
            mapping['todos'] = sum(len(m) for m in parsed.todos.values())
        except (MappingCorrupt, OSError, UnicodeDecodeError) as e:
            mapping['ok'] = False
            mapping['error'] = str(e)
    diagnostics['mapping'] = mapping
    if not mapping['ok']:
        score -= 30

    # 3) Mapping kept out of version control
    gitignore = mapping_path.parent / '.gitignore'
    ignored = False
    if gitignore.exists():
        lines = [line.strip() for line in gitignore.read_text(encoding='utf-8').split('\n')]
        ignored = mapping_path.name in lines
    diagnostics['mapping_ignored'] = ignored
    if mapping['exists'] and not ignored:
        score -= 10

    score = max(0, min(100, score))
    status = 'OK' if score >= 80 else 'DEGRADED' if score >= 60 else 'POOR'

    return {'status': status, 'score': score, 'diagnostics': diagnostics}


if __name__ == '__main__':
    print(json.dumps(compute_health(), indent=2))
