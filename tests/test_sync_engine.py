from __future__ import annotations

import json

import pytest

from bd_wrapper import TrackerUnavailable
from recovery import TodoRecovery
from session_issue import SessionIssueError
from state_mapper import TodoItem
from sync_engine import TodoSyncEngine, TodoSyncError


SESSION = "ses_abc123456"


@pytest.fixture
def engine(config, memory_store, beads) -> TodoSyncEngine:
    return TodoSyncEngine(config=config, store=memory_store, wrapper=beads)


def todo(todo_id: str, status: str = "pending", priority: str = "medium") -> dict:
    return {"id": todo_id, "content": f"Task {todo_id}", "status": status, "priority": priority}


def stored(store) -> dict:
    return json.loads(store.document)


def test_first_pass_creates_epic_and_children(engine, beads, memory_store) -> None:
    result = engine.reconcile(SESSION, [todo("a", priority="high"), todo("b", priority="low")])

    epic_id = result.epic_id
    children = beads.children(epic_id)
    assert [c["title"] for c in children] == ["Task a", "Task b"]
    assert [c["priority"] for c in children] == [1, 3]
    assert all(c["issue_type"] == "task" for c in children)
    assert children[0]["description"] == "OpenCode todo ID: a"
    assert result.created == ["a", "b"]
    assert stored(memory_store)["todos"] == {SESSION: {"a": children[0]["id"], "b": children[1]["id"]}}
    assert stored(memory_store)["sessions"] == {SESSION: epic_id}


def test_reconcile_is_idempotent(engine, beads, memory_store) -> None:
    todos = [todo("a"), todo("b", "in_progress"), todo("c", "completed")]
    engine.reconcile(SESSION, todos)
    first = stored(memory_store)
    issues_before = dict(beads.issues)

    memory_store.clock = lambda: 1800000000.0
    result = engine.reconcile(SESSION, todos)

    second = stored(memory_store)
    assert beads.count("create") == 4  # epic + three todos
    assert beads.issues.keys() == issues_before.keys()
    assert result.created == []
    assert result.updated == ["a", "b", "c"]
    assert second["lastSync"] != first["lastSync"]
    first.pop("lastSync")
    second.pop("lastSync")
    assert first == second


def test_new_todo_is_brought_to_current_status_in_same_pass(engine, beads) -> None:
    result = engine.reconcile(SESSION, [todo("a", "in_progress"), todo("b", "cancelled"), todo("c")])

    children = {c["title"]: c for c in beads.children(result.epic_id)}
    assert children["Task a"]["status"] == "in_progress"
    assert children["Task b"]["status"] == "closed"
    assert children["Task b"]["close_reason"] == "Cancelled in OpenCode"
    assert children["Task c"]["status"] == "open"
    # pending todos need no follow-up call
    assert not any(call[0] == "update" and call[1] == children["Task c"]["id"] for call in beads.calls)


def test_status_changes_are_pushed(engine, beads) -> None:
    result = engine.reconcile(SESSION, [todo("a"), todo("b")])
    issue_a, issue_b = (c["id"] for c in beads.children(result.epic_id))

    engine.reconcile(SESSION, [todo("a", "in_progress"), todo("b", "completed")])

    assert beads.issues[issue_a]["status"] == "in_progress"
    assert beads.issues[issue_b]["status"] == "closed"
    assert beads.issues[issue_b]["close_reason"] == "Completed"


def test_creation_then_deletion(engine, beads, memory_store, config) -> None:
    result = engine.reconcile(SESSION, [todo("a")])
    (child,) = beads.children(result.epic_id)

    second = engine.reconcile(SESSION, [])

    assert beads.issues[child["id"]]["status"] == "closed"
    assert beads.issues[child["id"]]["close_reason"] == "Todo removed from OpenCode"
    assert second.removed == ["a"]
    assert stored(memory_store)["todos"] == {SESSION: {}}
    assert second.epic_closed is False
    assert TodoRecovery(config=config, store=memory_store, wrapper=beads).recover(SESSION) == []


def test_removal_tolerates_already_deleted_issue(engine, beads, memory_store) -> None:
    result = engine.reconcile(SESSION, [todo("a"), todo("b")])
    child_a = beads.children(result.epic_id)[0]["id"]
    del beads.issues[child_a]

    second = engine.reconcile(SESSION, [todo("b")])

    assert second.removed == ["a"]
    assert second.ignored_failures == 1
    assert list(stored(memory_store)["todos"][SESSION]) == ["b"]


def test_all_complete_closes_epic(engine, beads, memory_store) -> None:
    result = engine.reconcile(SESSION, [todo("a", "completed"), todo("b", "cancelled")])

    epic = beads.issues[result.epic_id]
    assert result.epic_closed is True
    assert epic["status"] == "closed"
    assert "1 completed, 1 cancelled" in epic["close_reason"]
    children = beads.children(result.epic_id)
    assert [c["close_reason"] for c in children] == ["Completed", "Cancelled in OpenCode"]
    assert stored(memory_store)["terminal"] == {SESSION: {"a": "completed", "b": "cancelled"}}


def test_empty_list_never_closes_epic(engine, beads) -> None:
    result = engine.reconcile(SESSION, [])

    assert beads.issues[result.epic_id]["status"] == "open"
    assert result.epic_closed is False


def test_closed_epic_reopens_for_new_work(engine, beads) -> None:
    first = engine.reconcile(SESSION, [todo("a", "completed")])
    assert beads.issues[first.epic_id]["status"] == "closed"

    second = engine.reconcile(SESSION, [todo("a", "completed"), todo("b")])

    assert second.epic_id == first.epic_id
    assert second.epic_reopened is True
    assert beads.issues[first.epic_id]["status"] == "open"


def test_update_failures_are_swallowed(engine, beads, memory_store) -> None:
    engine.reconcile(SESSION, [todo("a"), todo("b")])
    beads.fail("update")
    beads.fail("close")

    result = engine.reconcile(SESSION, [todo("a", "in_progress"), todo("b", "completed")])

    assert result.ignored_failures >= 2
    assert result.updated == ["a", "b"]


def test_failed_status_alignment_still_records_new_issue(engine, beads, memory_store) -> None:
    beads.fail("update")

    result = engine.reconcile(SESSION, [todo("a", "in_progress")])

    assert result.created == ["a"]
    assert "a" in stored(memory_store)["todos"][SESSION]


def test_creation_failure_surfaces_and_keeps_progress(engine, beads, memory_store) -> None:
    original_create = beads.create

    def flaky_create(title, issue_type, priority, description=None, parent_id=None):
        if title == "Task b":
            raise TrackerUnavailable("bd not reachable")
        return original_create(title, issue_type, priority, description, parent_id)

    beads.create = flaky_create

    with pytest.raises(TodoSyncError, match="todo b") as excinfo:
        engine.reconcile(SESSION, [todo("a"), todo("b"), todo("c")])

    assert isinstance(excinfo.value.__cause__, TrackerUnavailable)
    assert list(stored(memory_store)["todos"][SESSION]) == ["a"]

    beads.create = original_create
    result = engine.reconcile(SESSION, [todo("a"), todo("b"), todo("c")])

    assert result.created == ["b", "c"]
    assert result.updated == ["a"]


def test_epic_creation_failure_surfaces(engine, beads, memory_store) -> None:
    beads.fail("create")

    with pytest.raises(SessionIssueError):
        engine.reconcile(SESSION, [todo("a")])

    assert stored(memory_store)["sessions"] == {}


def test_sessions_are_independent(engine, beads, memory_store) -> None:
    one = engine.reconcile("ses-one", [todo("a")])
    two = engine.reconcile("ses-two", [todo("a")])

    assert one.epic_id != two.epic_id
    data = stored(memory_store)
    assert set(data["sessions"]) == {"ses-one", "ses-two"}
    assert data["todos"]["ses-one"]["a"] != data["todos"]["ses-two"]["a"]


def test_accepts_todo_items(engine, beads) -> None:
    result = engine.reconcile(SESSION, [TodoItem("a", "Typed", "pending", "high")])

    assert beads.children(result.epic_id)[0]["title"] == "Typed"


def test_reconcile_with_file_store(config, file_store, beads) -> None:
    engine = TodoSyncEngine(config=config, store=file_store, wrapper=beads)

    engine.reconcile(SESSION, [todo("a")])

    data = json.loads(file_store.path.read_text())
    assert list(data["todos"][SESSION]) == ["a"]
    assert "opencode-todo-mapping.json" in (file_store.path.parent / ".gitignore").read_text()


def test_reconcile_on_corrupt_file_starts_fresh(config, file_store, beads) -> None:
    file_store.path.parent.mkdir(parents=True)
    file_store.path.write_text("{{ definitely not json")
    engine = TodoSyncEngine(config=config, store=file_store, wrapper=beads)

    result = engine.reconcile(SESSION, [todo("a")])

    assert result.created == ["a"]
    assert json.loads(file_store.path.read_text())["sessions"] == {SESSION: result.epic_id}
