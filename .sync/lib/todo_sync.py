#!/usr/bin/env python3
"""
Host-facing entry points for todo ↔ beads sync.

TodoSync backs the host's todowrite/todoread tools: writes reconcile the
list into beads and are cached in memory; reads answer from that cache and
fall back to beads when the process has no list for the session.

Also runnable as the `todo-sync` command:

    todo-sync write --session ID [--file todos.json]   (stdin if no file)
    todo-sync read --session ID
    todo-sync doctor
"""

import sys
import json
import argparse
from pathlib import Path
from typing import Dict, Any, List, Optional

from config_loader import SyncConfig, ConfigError, load_config
from logger import get_logger
from recovery import TodoRecovery
from state_mapper import TodoItem
from sync_engine import TodoSyncEngine, SyncResult
from validator import validate_todo_list


class TodoPayloadError(ValueError):
    """Raised when a todowrite payload is malformed."""
    pass


def summarize_todos(todos: List[TodoItem]) -> Dict[str, Any]:
    """Title and metadata the host renders in its todo sidebar."""
    open_count = sum(1 for t in todos if t.status != 'completed')
    return {
        'title': f"{open_count} todos",
        'metadata': {'todos': [t.to_dict() for t in todos]},
    }


class TodoSync:
    """todowrite/todoread backed by beads."""

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        engine: Optional[TodoSyncEngine] = None,
        recovery: Optional[TodoRecovery] = None,
    ):
        self.config = config or load_config()
        self.engine = engine or TodoSyncEngine(config=self.config)
        self.recovery = recovery or TodoRecovery(
            config=self.config, store=self.engine.store, wrapper=self.engine.wrapper
        )
        self._cache: Dict[str, List[TodoItem]] = {}
        self.last_result: Optional[SyncResult] = None

    def write(self, session_id: str, todos: List[Dict[str, Any]]) -> List[TodoItem]:
        """
        Replace the session's todo list and sync it to beads.

        Raises:
            TodoPayloadError: If the payload is malformed
        """
        errors = validate_todo_list(todos)
        if errors:
            raise TodoPayloadError("Invalid todos:\n" + "\n".join(f"  • {e}" for e in errors))

        items = [TodoItem.from_dict(t) for t in todos]
        # Cached first so a failed sync still answers reads with what the host sent
        self._cache[session_id] = items
        self.last_result = self.engine.reconcile(session_id, items)
        return items

    def read(self, session_id: str) -> List[TodoItem]:
        """Return the cached list, or rebuild it from beads."""
        if session_id in self._cache:
            return self._cache[session_id]

        items = self.recovery.recover(session_id)
        if items:
            self._cache[session_id] = items
        return items

    def forget(self, session_id: str) -> None:
        """Drop the in-memory list so the next read goes to beads."""
        self._cache.pop(session_id, None)


def _load_payload(path: Optional[str]) -> Any:
    text = Path(path).read_text(encoding='utf-8') if path else sys.stdin.read()
    payload = json.loads(text)
    # Accept both the bare list and the tool-args form {"todos": [...]}
    if isinstance(payload, dict) and 'todos' in payload:
        payload = payload['todos']
    return payload


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='todo-sync', description='Sync OpenCode todos with beads')
    parser.add_argument('--config', help='Path to sync_config.yaml')
    parser.add_argument('--debug', action='store_true', help='Verbose logging')
    sub = parser.add_subparsers(dest='command', required=True)

    write = sub.add_parser('write', help='Sync a todo list to beads')
    write.add_argument('--session', required=True, help='OpenCode session id')
    write.add_argument('--file', help='JSON file with the todo list (default: stdin)')

    read = sub.add_parser('read', help='Recover a todo list from beads')
    read.add_argument('--session', required=True, help='OpenCode session id')

    sub.add_parser('doctor', help='Report bd and mapping health')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(Path(args.config) if args.config else None)
    except ConfigError as e:
        print(f"✗ Configuration error:\n{e}", file=sys.stderr)
        return 1

    log_dir = config.get('logging.dir')
    get_logger(
        log_dir=Path(log_dir) if log_dir else None,
        debug=args.debug or bool(config.get('logging.debug', False)),
        console_output=bool(config.get('logging.console', False)),
    )

    if args.command == 'doctor':
        from health import compute_health

        report = compute_health(config)
        print(json.dumps(report, indent=2))
        return 0 if report['status'] == 'OK' else 1

    sync = TodoSync(config=config)
    try:
        if args.command == 'write':
            items = sync.write(args.session, _load_payload(args.file))
        else:
            items = sync.read(args.session)
    except (json.JSONDecodeError, OSError, TodoPayloadError) as e:
        print(f"✗ Invalid input: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"✗ todo-sync {args.command} failed: {e}", file=sys.stderr)
        return 1

    print(json.dumps(summarize_todos(items), indent=2))
    return 0


if __name__ == '__main__':
    sys.exit(main())
