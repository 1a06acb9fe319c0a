#!/usr/bin/env python3
"""
State and priority mapping between OpenCode todos and beads issues.

Pure functions in both directions. Todo statuses completed and cancelled
both become beads 'closed'; the difference survives only through the close
reason (and the terminal flag kept in the mapping document).
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional

from bd_wrapper import BeadsIssue


TODO_STATUSES = ('pending', 'in_progress', 'completed', 'cancelled')
TODO_PRIORITIES = ('high', 'medium', 'low')
TERMINAL_STATUSES = ('completed', 'cancelled')

DEFAULT_BEADS_PRIORITY = 2
DEFAULT_TODO_PRIORITY = 'medium'

PRIORITY_TO_BEADS: Dict[str, int] = {
    'high': 1,
    'medium': 2,
    'low': 3,
}

PRIORITY_FROM_BEADS: Dict[int, str] = {
    0: 'high',
    1: 'high',
    2: 'medium',
    3: 'low',
    4: 'low',
}

STATUS_TO_BEADS: Dict[str, str] = {
    'pending': 'open',
    'in_progress': 'in_progress',
    'completed': 'closed',
    'cancelled': 'closed',
}

CANCELLED_MARKER = 'Cancelled'


@dataclass
class TodoItem:
    """OpenCode todo item (todowrite payload entry)."""
    id: str
    content: str
    status: str = 'pending'
    priority: str = DEFAULT_TODO_PRIORITY

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TodoItem':
        return cls(
            id=str(data['id']),
            content=str(data.get('content', '')),
            status=data.get('status') or 'pending',
            priority=data.get('priority') or DEFAULT_TODO_PRIORITY,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def todo_status_to_beads(status: str) -> str:
    """Unknown statuses are treated as pending."""
    return STATUS_TO_BEADS.get(status, 'open')


def todo_priority_to_beads(priority: Optional[str]) -> int:
    return PRIORITY_TO_BEADS.get(priority, DEFAULT_BEADS_PRIORITY)


def beads_priority_to_todo(priority: Any) -> str:
    return PRIORITY_FROM_BEADS.get(priority, DEFAULT_TODO_PRIORITY)


def close_reason(status: str, completed_reason: str = 'Completed',
                 cancelled_reason: str = 'Cancelled in OpenCode') -> str:
    """Reason text written when a todo reaches a terminal status."""
    return cancelled_reason if status == 'cancelled' else completed_reason


def beads_status_to_todo(status: str, notes: str = '', terminal_flag: Optional[str] = None) -> str:
    """
    Convert a beads status back to a todo status.

    Args:
        status: Beads status ('open', 'in_progress', 'closed')
        notes: Free text to inspect for the cancelled marker when closed
        terminal_flag: 'completed'/'cancelled' recorded in the mapping, preferred when present

    Returns:
        Todo status
    """
    if status == 'in_progress':
        return 'in_progress'
    if status != 'closed':
        return 'pending'
    if terminal_flag in TERMINAL_STATUSES:
        return terminal_flag
    return 'cancelled' if CANCELLED_MARKER in (notes or '') else 'completed'


def beads_issue_to_todo(todo_id: str, issue: BeadsIssue, terminal_flag: Optional[str] = None) -> TodoItem:
    """Rebuild a todo from its beads issue, keeping the original todo id."""
    closing_text = ' '.join(part for part in (issue.notes, issue.close_reason) if part)
    return TodoItem(
        id=todo_id,
        content=issue.title,
        status=beads_status_to_todo(issue.status, closing_text, terminal_flag),
        priority=beads_priority_to_todo(issue.priority),
    )
