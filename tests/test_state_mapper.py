from __future__ import annotations

import pytest

from bd_wrapper import BeadsIssue
from state_mapper import (
    TodoItem,
    beads_issue_to_todo,
    beads_priority_to_todo,
    beads_status_to_todo,
    close_reason,
    todo_priority_to_beads,
    todo_status_to_beads,
)


@pytest.mark.parametrize("status", ["pending", "in_progress"])
def test_active_status_round_trip(status: str) -> None:
    assert beads_status_to_todo(todo_status_to_beads(status)) == status


@pytest.mark.parametrize("status", ["completed", "cancelled"])
def test_terminal_status_round_trip_through_close_reason(status: str) -> None:
    beads_status = todo_status_to_beads(status)
    assert beads_status == "closed"
    assert beads_status_to_todo(beads_status, notes=close_reason(status)) == status


def test_unknown_todo_status_maps_to_open() -> None:
    assert todo_status_to_beads("blocked") == "open"


def test_terminal_flag_wins_over_notes() -> None:
    assert beads_status_to_todo("closed", notes="Cancelled by someone", terminal_flag="completed") == "completed"
    assert beads_status_to_todo("closed", notes="", terminal_flag="cancelled") == "cancelled"


def test_terminal_flag_ignored_for_open_issue() -> None:
    # Reopened in beads after we closed it
    assert beads_status_to_todo("open", terminal_flag="completed") == "pending"


@pytest.mark.parametrize(
    "priority, beads_priority",
    [("high", 1), ("medium", 2), ("low", 3)],
)
def test_priority_round_trip(priority: str, beads_priority: int) -> None:
    assert todo_priority_to_beads(priority) == beads_priority
    assert beads_priority_to_todo(beads_priority) == priority


def test_priority_defaults() -> None:
    assert todo_priority_to_beads("urgent") == 2
    assert todo_priority_to_beads(None) == 2
    assert beads_priority_to_todo(0) == "high"
    assert beads_priority_to_todo(4) == "low"
    assert beads_priority_to_todo(9) == "medium"


def test_close_reasons() -> None:
    assert close_reason("completed") == "Completed"
    assert close_reason("cancelled") == "Cancelled in OpenCode"
    assert close_reason("cancelled", cancelled_reason="Cancelled by user") == "Cancelled by user"


def test_beads_issue_to_todo_keeps_todo_id() -> None:
    issue = BeadsIssue(id="bd-7", title="Write docs", status="closed", priority=3, close_reason="Cancelled in OpenCode")

    todo = beads_issue_to_todo("todo-1", issue)

    assert todo == TodoItem(id="todo-1", content="Write docs", status="cancelled", priority="low")


def test_todo_item_from_dict_defaults() -> None:
    todo = TodoItem.from_dict({"id": 5, "content": "x"})

    assert todo.id == "5"
    assert todo.status == "pending"
    assert todo.priority == "medium"
    assert not todo.is_terminal
