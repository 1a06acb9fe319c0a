#!/usr/bin/env python3
"""
Persistence for the todo ↔ beads mapping document.

The document records, per OpenCode session, the beads epic and the beads
issue behind each todo id. It is loaded whole, mutated in memory during one
pass, and rewritten atomically (temp file + rename). A missing or corrupt
document loads as an empty mapping.
"""

import json
import time
import fcntl
import threading
from pathlib import Path
from datetime import datetime
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from logger import get_logger


class MappingError(Exception):
    """Raised when the mapping cannot be written or locked."""
    pass


class MappingCorrupt(MappingError):
    """The stored document cannot be decoded."""
    pass


@dataclass
class TodoMapping:
    """In-memory view of the mapping document."""
    # sessionID -> epic issue id
    sessions: Dict[str, str] = field(default_factory=dict)
    # sessionID -> {todoID -> issue id}
    todos: Dict[str, Dict[str, str]] = field(default_factory=dict)
    # sessionID -> {todoID -> 'completed' | 'cancelled'}
    terminal: Dict[str, Dict[str, str]] = field(default_factory=dict)
    last_sync: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> 'TodoMapping':
        if not isinstance(data, dict):
            raise MappingCorrupt(f"Mapping root must be an object, got {type(data).__name__}")

        sessions = data.get('sessions') or {}
        todos = data.get('todos') or {}
        terminal = data.get('terminal') or {}
        if not isinstance(sessions, dict) or not isinstance(todos, dict) or not isinstance(terminal, dict):
            raise MappingCorrupt("Mapping sections must be objects")
        if any(not isinstance(v, dict) for v in todos.values()):
            raise MappingCorrupt("Per-session todo maps must be objects")

        last_sync = data.get('lastSync', 0)
        return cls(
            sessions={str(k): str(v) for k, v in sessions.items()},
            todos={str(s): {str(t): str(i) for t, i in m.items()} for s, m in todos.items()},
            terminal={str(s): dict(m) for s, m in terminal.items() if isinstance(m, dict)},
            last_sync=last_sync if isinstance(last_sync, (int, float)) else 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'sessions': self.sessions,
            'todos': self.todos,
            'lastSync': self.last_sync,
        }
        if any(self.terminal.values()):
            data['terminal'] = {s: m for s, m in self.terminal.items() if m}
        return data

    def session_todos(self, session_id: str) -> Dict[str, str]:
        """Per-session todo map, created on first access."""
        return self.todos.setdefault(session_id, {})

    def set_terminal(self, session_id: str, todo_id: str, status: Optional[str]) -> None:
        flags = self.terminal.setdefault(session_id, {})
        if status:
            flags[todo_id] = status
        else:
            flags.pop(todo_id, None)

    def get_terminal(self, session_id: str, todo_id: str) -> Optional[str]:
        return self.terminal.get(session_id, {}).get(todo_id)


class JsonSerializer:
    """Default document codec."""

    def dumps(self, data: Dict[str, Any]) -> str:
        return json.dumps(data, indent=2)

    def loads(self, text: str) -> Any:
        try:
            return json.loads(text)
        except (json.JSONDecodeError, RecursionError) as e:
            raise MappingCorrupt(f"Invalid JSON: {type(e).__name__}: {e}")


def ensure_gitignore_entry(directory: Path, filename: str) -> None:
    """Append filename to directory/.gitignore unless already listed."""
    gitignore = Path(directory) / '.gitignore'
    if gitignore.exists():
        content = gitignore.read_text(encoding='utf-8')
        if any(line.strip() == filename for line in content.split('\n')):
            return
        separator = '' if content.endswith('\n') or not content else '\n'
        gitignore.write_text(content + separator + filename + '\n', encoding='utf-8')
    else:
        gitignore.write_text(filename + '\n', encoding='utf-8')


class MappingStore:
    """File-backed mapping store with atomic writes and file locking."""

    def __init__(
        self,
        path: Path,
        serializer: Optional[JsonSerializer] = None,
        lock_timeout: float = 30.0,
        clock=time.time,
    ):
        """
        Initialize mapping store.

        Args:
            path: Mapping document path (e.g. .beads/opencode-todo-mapping.json)
            serializer: Object with dumps/loads; JSON by default
            lock_timeout: Seconds to wait for the pass lock
            clock: Returns epoch seconds, used for lastSync
        """
        self.path = Path(path)
        self.serializer = serializer or JsonSerializer()
        self.lock_timeout = lock_timeout
        self.clock = clock
        self.lock_path = self.path.with_suffix(self.path.suffix + '.lock')
        self.logger = get_logger()

    def load(self) -> TodoMapping:
        """Load the mapping; missing or corrupt documents yield an empty mapping."""
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return TodoMapping()
        except OSError as e:
            self.logger.warning("Mapping unreadable, starting empty", context={"path": str(self.path), "error": str(e)})
            return TodoMapping()

        try:
            try:
                text = raw.decode('utf-8')
            except UnicodeDecodeError as e:
                raise MappingCorrupt(f"Not UTF-8: {e}")
            return TodoMapping.from_dict(self.serializer.loads(text))
        except MappingCorrupt as e:
            backup = self._backup_corrupt(raw)
            self._ensure_ignored()
            self.logger.warning(
                "Corrupt mapping, starting empty",
                context={"path": str(self.path), "error": str(e), "backup": str(backup) if backup else None},
            )
            return TodoMapping()

    def _backup_corrupt(self, raw: bytes) -> Optional[Path]:
        """Copy a corrupt document aside once; returns the existing copy if already saved."""
        for existing in sorted(self.path.parent.glob(f"{self.path.name}.corrupt-*")):
            try:
                if existing.read_bytes() == raw:
                    return existing
            except OSError:
                continue

        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S_%f')
        backup_path = self.path.with_name(f"{self.path.name}.corrupt-{timestamp}")
        try:
            backup_path.write_bytes(raw)
        except OSError:
            return None
        return backup_path

    def _ensure_ignored(self) -> None:
        """Keep the mapping and its side files out of version control."""
        directory = self.path.parent
        try:
            for name in (
                self.path.name,
                self.lock_path.name,
                f"{self.path.name}.tmp",
                f"{self.path.name}.corrupt-*",
            ):
                ensure_gitignore_entry(directory, name)
        except OSError as e:
            self.logger.warning("Could not update .gitignore", context={"dir": str(directory), "error": str(e)})

    def save(self, mapping: TodoMapping) -> None:
        """
        Atomically write the whole mapping, refreshing lastSync.

        The mapping file and its lock, temp and corrupt-backup siblings are
        added to the directory's .gitignore when the file is first created
        or found corrupt.

        Raises:
            MappingError: If write fails
        """
        mapping.last_sync = int(self.clock() * 1000)
        directory = self.path.parent
        temp_file = self.path.with_suffix(self.path.suffix + '.tmp')

        try:
            directory.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                self._ensure_ignored()

            temp_file.write_text(self.serializer.dumps(mapping.to_dict()), encoding='utf-8')
            temp_file.replace(self.path)
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise MappingError(f"Failed to write {self.path}: {e}")

    @contextmanager
    def locked(self):
        """
        Hold an exclusive lock for one load → mutate → save pass.

        Raises:
            MappingError: If the lock cannot be acquired in time
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            lock_fd = open(self.lock_path, 'w')
        except OSError as e:
            raise MappingError(f"Cannot open lock file {self.lock_path}: {e}")

        try:
            deadline = time.monotonic() + self.lock_timeout
            while True:
                try:
                    fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise MappingError(
                            f"Could not acquire lock on {self.path} after {self.lock_timeout}s. "
                            "Another sync pass may be running."
                        )
                    time.sleep(0.05)

            try:
                yield self
            finally:
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
        finally:
            lock_fd.close()


class InMemoryMappingStore:
    """Mapping store kept in memory; same contract as MappingStore."""

    def __init__(self, serializer: Optional[JsonSerializer] = None, clock=time.time):
        self.serializer = serializer or JsonSerializer()
        self.clock = clock
        self.document: Optional[str] = None
        self.saves = 0
        self._lock = threading.Lock()

    def load(self) -> TodoMapping:
        if self.document is None:
            return TodoMapping()
        try:
            return TodoMapping.from_dict(self.serializer.loads(self.document))
        except MappingCorrupt:
            return TodoMapping()

    def save(self, mapping: TodoMapping) -> None:
        mapping.last_sync = int(self.clock() * 1000)
        self.document = self.serializer.dumps(mapping.to_dict())
        self.saves += 1

    @contextmanager
    def locked(self):
        with self._lock:
            yield self


def get_mapping_store(config) -> MappingStore:
    """Build the file-backed store described by a SyncConfig."""
    return MappingStore(
        config.mapping_path,
        lock_timeout=float(config.get('mapping.lock_timeout', 30)),
    )
