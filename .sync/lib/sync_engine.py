#!/usr/bin/env python3
"""
Sync Engine for OpenCode todos → beads issues

Converges beads state to the current todo list of a session:
- creates a child issue under the session epic for every new todo
- reasserts status of already-mapped todos (update or close)
- closes issues of todos that disappeared from the list
- closes the session epic once every todo is completed or cancelled

Update/close failures are logged and absorbed; only creation failures reach
the caller. The mapping is saved at the end of every pass, even a failed
one, so the next call only has the remaining deltas to redo.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from bd_wrapper import BeadsError, BeadsWrapper, get_wrapper
from config_loader import SyncConfig, load_config
from logger import get_logger
from mapping_store import TodoMapping, get_mapping_store
from session_issue import SessionIssueManager
from state_mapper import (
    TodoItem,
    close_reason,
    todo_priority_to_beads,
    todo_status_to_beads,
)


class TodoSyncError(Exception):
    """Raised when a beads issue cannot be created for a todo."""
    pass


@dataclass
class SyncResult:
    """Summary of one reconciliation pass."""
    session_id: str
    epic_id: Optional[str] = None
    created: List[str] = field(default_factory=list)  # todo ids
    updated: List[str] = field(default_factory=list)
    closed: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    epic_closed: bool = False
    epic_reopened: bool = False
    ignored_failures: int = 0

    def as_context(self) -> Dict[str, Any]:
        return {
            "session": self.session_id,
            "epic": self.epic_id,
            "created": len(self.created),
            "updated": len(self.updated),
            "closed": len(self.closed),
            "removed": len(self.removed),
            "epic_closed": self.epic_closed,
            "ignored_failures": self.ignored_failures,
        }


class TodoSyncEngine:
    """Reconcile a session's todo list with beads."""

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        store=None,
        wrapper: Optional[BeadsWrapper] = None,
        session_manager: Optional[SessionIssueManager] = None,
    ) -> None:
        self.config = config or load_config()
        self.store = store or get_mapping_store(self.config)
        self.wrapper = wrapper or get_wrapper(
            command=self.config.get("beads.command", "bd"),
            cwd=self.config.get("beads.cwd"),
            timeout=self.config.get("beads.timeout"),
        )
        self.sessions = session_manager or SessionIssueManager.from_config(self.config, self.wrapper, self.store)
        self.logger = get_logger()

        self.completed_reason = self.config.get("reasons.completed", "Completed")
        self.cancelled_reason = self.config.get("reasons.cancelled", "Cancelled in OpenCode")
        self.removed_reason = self.config.get("reasons.removed", "Todo removed from OpenCode")

    # ---------- Per-issue operations ----------
    def _reason(self, status: str) -> str:
        return close_reason(status, self.completed_reason, self.cancelled_reason)

    def _apply_status(self, issue_id: str, todo: TodoItem, result: SyncResult) -> bool:
        """Push the todo's status to its issue. Failures are absorbed."""
        beads_status = todo_status_to_beads(todo.status)
        try:
            if beads_status == "closed":
                self.wrapper.close(issue_id, self._reason(todo.status))
            else:
                self.wrapper.update(issue_id, status=beads_status)
        except BeadsError as e:
            # Issue might already be in the desired state
            result.ignored_failures += 1
            self.logger.swallowed(
                "status update", e,
                {"session": result.session_id, "todo": todo.id, "issue": issue_id, "status": beads_status},
            )
            return False
        return True

    def _create_issue(self, epic_id: str, todo: TodoItem, result: SyncResult) -> str:
        """
        Create the child issue for a todo and align its status.

        Raises:
            TodoSyncError: If bd cannot create the issue
        """
        try:
            issue_id = self.wrapper.create(
                todo.content,
                "task",
                todo_priority_to_beads(todo.priority),
                description=f"OpenCode todo ID: {todo.id}",
                parent_id=epic_id,
            )
        except BeadsError as e:
            self.logger.error(
                "Failed to create beads issue",
                error=e,
                context={"session": result.session_id, "todo": todo.id},
            )
            raise TodoSyncError(f"Failed to create beads issue for todo {todo.id}: {e}") from e

        # New issues start open; no intermediate state is left when the todo is further along
        if todo.status != "pending":
            self._apply_status(issue_id, todo, result)
        return issue_id

    # ---------- Orchestration ----------
    def reconcile(self, session_id: str, todos: Iterable[Union[TodoItem, Dict[str, Any]]]) -> SyncResult:
        """
        Converge beads to the given todo list for one session.

        Safe to call repeatedly with the same or an evolving list.

        Raises:
            SessionIssueError: If the session epic cannot be created
            TodoSyncError: If an issue cannot be created for a new todo
            MappingError: If the mapping cannot be locked or written
        """
        items = [t if isinstance(t, TodoItem) else TodoItem.from_dict(t) for t in todos]
        result = SyncResult(session_id=session_id)
        started = time.monotonic()
        outcome = "failure"

        with self.store.locked():
            mapping = self.store.load()
            try:
                self._reconcile(session_id, items, mapping, result)
                outcome = "success"
            finally:
                # Partial progress is kept; the next pass redoes only what is missing
                self.store.save(mapping)
                self.logger.log_sync_operation(
                    "reconcile", outcome, time.monotonic() - started, result.as_context()
                )

        return result

    def _reconcile(self, session_id: str, items: List[TodoItem], mapping: TodoMapping, result: SyncResult) -> None:
        epic_id = self.sessions.ensure_session_issue(session_id, mapping)
        result.epic_id = epic_id

        all_terminal = bool(items) and all(t.is_terminal for t in items)
        if not all_terminal and items:
            result.epic_reopened = self.sessions.reopen_if_closed(epic_id)

        todo_map = mapping.session_todos(session_id)
        seen = set()

        for todo in items:
            seen.add(todo.id)
            issue_id = todo_map.get(todo.id)

            if issue_id:
                self._apply_status(issue_id, todo, result)
                result.updated.append(todo.id)
            else:
                issue_id = self._create_issue(epic_id, todo, result)
                todo_map[todo.id] = issue_id
                result.created.append(todo.id)

            mapping.set_terminal(session_id, todo.id, todo.status if todo.is_terminal else None)
            if todo.is_terminal:
                result.closed.append(todo.id)

        for todo_id, issue_id in list(todo_map.items()):
            if todo_id in seen:
                continue
            try:
                self.wrapper.close(issue_id, self.removed_reason)
            except BeadsError as e:
                # Might already be closed or deleted
                result.ignored_failures += 1
                self.logger.swallowed("removed todo close", e, {"session": session_id, "todo": todo_id, "issue": issue_id})
            del todo_map[todo_id]
            mapping.set_terminal(session_id, todo_id, None)
            result.removed.append(todo_id)

        if all_terminal:
            result.epic_closed = self.sessions.close_session_issue(epic_id, items)
