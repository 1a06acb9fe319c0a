#!/usr/bin/env python3
"""
Session epic management.

Each OpenCode session owns exactly one beads epic that parents the issues
of its todos. The epic is created lazily and recreated if it was deleted
outside this tool.
"""

from datetime import datetime, timezone
from typing import List, Optional, Callable

from bd_wrapper import BeadsWrapper, BeadsError, BeadsIssue
from logger import get_logger
from state_mapper import TodoItem


class SessionIssueError(Exception):
    """Raised when the session epic cannot be created."""
    pass


class SessionIssueManager:
    """Creates, verifies and closes the per-session beads epic."""

    def __init__(
        self,
        wrapper: BeadsWrapper,
        store,
        title_prefix: str = 'OpenCode Session',
        id_length: int = 8,
        priority: int = 2,
        description_template: str = 'Tracks todos for OpenCode session {session_id}',
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.wrapper = wrapper
        self.store = store
        self.title_prefix = title_prefix
        self.id_length = id_length
        self.priority = priority
        self.description_template = description_template
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger()
        self.last_issue: Optional[BeadsIssue] = None

    @classmethod
    def from_config(cls, config, wrapper: BeadsWrapper, store) -> 'SessionIssueManager':
        return cls(
            wrapper,
            store,
            title_prefix=config.get('session.title_prefix', 'OpenCode Session'),
            id_length=config.get('session.id_length', 8),
            priority=config.get('session.epic_priority', 2),
            description_template=config.get(
                'session.description_template', 'Tracks todos for OpenCode session {session_id}'
            ),
        )

    def epic_title(self, session_id: str) -> str:
        return f"{self.title_prefix} {session_id[:self.id_length]} ({self.clock().date().isoformat()})"

    def ensure_session_issue(self, session_id: str, mapping) -> str:
        """
        Return the session's epic id, creating the epic if needed.

        A recorded epic that can no longer be shown is replaced; the
        session's todo map is reset with it. A newly created epic is
        persisted immediately so a crash before the first todo sync does
        not orphan it.

        Raises:
            SessionIssueError: If the epic has to be created and bd fails
        """
        self.last_issue = None
        existing = mapping.sessions.get(session_id)
        if existing:
            try:
                self.last_issue = self.wrapper.show(existing)
                return existing
            except BeadsError as e:
                self.logger.warning(
                    "Session epic missing, creating a new one",
                    context={"session": session_id, "epic": existing, "error": str(e)},
                )

        try:
            issue_id = self.wrapper.create(
                self.epic_title(session_id),
                'epic',
                self.priority,
                description=self.description_template.format(session_id=session_id),
            )
        except BeadsError as e:
            self.logger.error("Failed to create session issue", error=e, context={"session": session_id})
            raise SessionIssueError(f"Failed to create session issue: {e}") from e

        mapping.sessions[session_id] = issue_id
        mapping.todos[session_id] = {}
        mapping.terminal.pop(session_id, None)
        self.store.save(mapping)

        self.logger.info("Created session epic", context={"session": session_id, "epic": issue_id})
        return issue_id

    def reopen_if_closed(self, issue_id: str) -> bool:
        """Reopen the epic last shown by ensure_session_issue if it is closed."""
        if self.last_issue is None or self.last_issue.id != issue_id or self.last_issue.status != 'closed':
            return False
        try:
            self.wrapper.update(issue_id, status='open')
        except BeadsError as e:
            self.logger.swallowed('epic reopen', e, {"epic": issue_id})
            return False
        self.last_issue.status = 'open'
        return True

    def close_session_issue(self, issue_id: str, todos: List[TodoItem]) -> bool:
        """
        Close the epic with a completed/cancelled summary.

        Failures are logged and ignored; the epic may already be closed.
        """
        completed = sum(1 for t in todos if t.status == 'completed')
        cancelled = sum(1 for t in todos if t.status == 'cancelled')
        summary = f"Session complete: {completed} completed, {cancelled} cancelled"

        try:
            self.wrapper.update(issue_id, notes=summary)
        except BeadsError as e:
            self.logger.swallowed('epic notes', e, {"epic": issue_id})

        try:
            self.wrapper.close(issue_id, summary)
        except BeadsError as e:
            self.logger.swallowed('epic close', e, {"epic": issue_id, "summary": summary})
            return False
        return True
