#!/usr/bin/env python3
"""
Rebuild a session's todo list from beads.

Used when the host has no in-memory todos for a session (restart, context
compaction). Walks the mapping's todo entries in insertion order; issues
that cannot be fetched are skipped.
"""

import time
from typing import List, Optional

from bd_wrapper import BeadsError, BeadsWrapper, get_wrapper
from config_loader import SyncConfig, load_config
from logger import get_logger
from mapping_store import get_mapping_store
from state_mapper import TodoItem, beads_issue_to_todo


class TodoRecovery:
    """Read todos back from the issues recorded in the mapping."""

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        store=None,
        wrapper: Optional[BeadsWrapper] = None,
    ):
        self.config = config or load_config()
        self.store = store or get_mapping_store(self.config)
        self.wrapper = wrapper or get_wrapper(
            command=self.config.get('beads.command', 'bd'),
            cwd=self.config.get('beads.cwd'),
            timeout=self.config.get('beads.timeout'),
        )
        self.logger = get_logger()

    def recover(self, session_id: str) -> List[TodoItem]:
        """
        Return the session's todos as beads currently sees them.

        An unknown session yields an empty list.
        """
        started = time.monotonic()
        mapping = self.store.load()

        if not mapping.sessions.get(session_id):
            return []

        todos: List[TodoItem] = []
        skipped = 0
        for todo_id, issue_id in mapping.todos.get(session_id, {}).items():
            try:
                issue = self.wrapper.show(issue_id)
            except BeadsError as e:
                skipped += 1
                self.logger.swallowed('recover fetch', e, {"session": session_id, "todo": todo_id, "issue": issue_id})
                continue
            todos.append(beads_issue_to_todo(todo_id, issue, mapping.get_terminal(session_id, todo_id)))

        self.logger.log_sync_operation(
            'recover',
            'success',
            time.monotonic() - started,
            {"session": session_id, "todos": len(todos), "skipped": skipped},
        )
        return todos
