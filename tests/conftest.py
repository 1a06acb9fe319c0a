from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

import bd_wrapper
import logger
from bd_wrapper import BeadsIssue, IssueNotFound, TrackerRejected
from config_loader import load_config
from mapping_store import InMemoryMappingStore, MappingStore


class FakeBeads:
    """In-memory stand-in for the bd CLI wrapper."""

    def __init__(self) -> None:
        self.issues: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple] = []
        self.failures: dict[str, Exception] = {}
        self._next = 1

    def fail(self, operation: str, error: Exception | None = None) -> None:
        self.failures[operation] = error or TrackerRejected(f"{operation} refused")

    def _check(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    def check_installation(self) -> str:
        self._check("version")
        return "bd version 0.0.0 (fake)"

    def create(self, title, issue_type, priority, description=None, parent_id=None) -> str:
        self.calls.append(("create", title, issue_type, priority, description, parent_id))
        self._check("create")
        issue_id = f"bd-{self._next}"
        self._next += 1
        self.issues[issue_id] = {
            "id": issue_id,
            "title": title,
            "description": description or "",
            "status": "open",
            "priority": priority,
            "issue_type": issue_type,
            "notes": "",
            "close_reason": "",
            "parent": parent_id,
        }
        return issue_id

    def update(self, issue_id, status=None, notes=None) -> None:
        self.calls.append(("update", issue_id, status, notes))
        self._check("update")
        issue = self._get(issue_id)
        if status is not None:
            issue["status"] = status
        if notes is not None:
            issue["notes"] = notes

    def close(self, issue_id, reason) -> None:
        self.calls.append(("close", issue_id, reason))
        self._check("close")
        issue = self._get(issue_id)
        issue["status"] = "closed"
        issue["close_reason"] = reason

    def show(self, issue_id) -> BeadsIssue:
        self.calls.append(("show", issue_id))
        self._check("show")
        return BeadsIssue.from_dict(self._get(issue_id))

    def _get(self, issue_id) -> dict[str, Any]:
        if issue_id not in self.issues:
            raise IssueNotFound(f"Issue not found: {issue_id}")
        return self.issues[issue_id]

    def children(self, parent_id: str) -> list[dict[str, Any]]:
        return [i for i in self.issues.values() if i["parent"] == parent_id]

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)


@pytest.fixture(autouse=True)
def isolated_logger(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    for var in ("DEBUG", "BD_COMMAND", "BEADS_DIR", "TODO_SYNC_MAPPING_FILE"):
        monkeypatch.delenv(var, raising=False)
    instance = logger.SyncLogger(log_dir=tmp_path / "logs")
    monkeypatch.setattr(logger, "_logger", instance)
    monkeypatch.setattr(bd_wrapper, "_wrapper", None)
    return instance


@pytest.fixture
def config(tmp_path: Path):
    return load_config(
        tmp_path / "no-config.yaml",
        overrides={"beads": {"data_dir": str(tmp_path / ".beads")}, "mapping": {"lock_timeout": 1}},
    )


@pytest.fixture
def beads() -> FakeBeads:
    return FakeBeads()


@pytest.fixture
def memory_store() -> InMemoryMappingStore:
    return InMemoryMappingStore(clock=lambda: 1700000000.0)


@pytest.fixture
def file_store(config) -> MappingStore:
    return MappingStore(config.mapping_path, lock_timeout=1)
