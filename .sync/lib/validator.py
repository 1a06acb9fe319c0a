#!/usr/bin/env python3
"""
Validation helpers for todowrite payloads.

Returns lists of human-readable problems instead of raising, so callers
can report everything at once.
"""

from __future__ import annotations

from typing import Any, Dict, List

from state_mapper import TODO_PRIORITIES, TODO_STATUSES


def validate_todo_payload(data: Dict[str, Any]) -> List[str]:
    """Validate a single todo entry."""
    if not isinstance(data, dict):
        return [f"todo must be an object, got {type(data).__name__}"]

    errors: List[str] = []
    todo_id = data.get('id')
    content = data.get('content')
    status = data.get('status')
    priority = data.get('priority')

    if todo_id is None or not str(todo_id).strip():
        errors.append("missing or empty: id")
    if not content or not str(content).strip():
        errors.append("missing or empty: content")
    if status is not None and status not in TODO_STATUSES:
        errors.append(f"invalid status: {status}")
    if priority is not None and priority not in TODO_PRIORITIES:
        errors.append(f"invalid priority: {priority}")

    return errors


def validate_todo_list(todos: Any) -> List[str]:
    """Validate a whole todowrite list, prefixing problems with the entry index."""
    if not isinstance(todos, list):
        return [f"todos must be a list, got {type(todos).__name__}"]

    errors: List[str] = []
    seen = set()
    for index, todo in enumerate(todos):
        for err in validate_todo_payload(todo):
            errors.append(f"todos[{index}]: {err}")
        if isinstance(todo, dict) and todo.get('id') is not None:
            todo_id = str(todo['id'])
            if todo_id in seen:
                errors.append(f"todos[{index}]: duplicate id: {todo_id}")
            seen.add(todo_id)

    return errors
