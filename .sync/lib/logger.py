#!/usr/bin/env python3
"""
Logging for the todo ↔ beads sync.

Every record is one line: a message followed by a compact JSON context.
Context keys that look like credentials are masked. Tracker failures that a
pass absorbs are logged through `swallowed()`, so drift between the todo
list and beads can be traced afterwards.
"""

import os
import sys
import json
import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Any, Optional

LOGGER_NAME = 'todo_beads_sync'
LOG_FILENAME = 'sync.log'

_SENSITIVE_KEYS = ('token', 'password', 'secret', 'api_key')
_FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'


def _default_log_dir() -> Path:
    """.sync/logs of the nearest ancestor holding a .sync directory."""
    for directory in [Path.cwd(), *Path.cwd().parents]:
        if (directory / '.sync').is_dir():
            return directory / '.sync' / 'logs'
    return Path('.sync/logs')


class SyncLogger:
    """Context-aware logger shared by the sync components."""

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        debug: bool = False,
        console_output: bool = False,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 30,
    ):
        """
        Args:
            log_dir: Directory for sync.log (default: <project>/.sync/logs)
            debug: Log debug records; the DEBUG env var turns this on too
            console_output: Mirror INFO and above to stderr
            max_bytes: Size at which sync.log rotates
            backup_count: Rotated files kept
        """
        self.log_dir = Path(log_dir) if log_dir else _default_log_dir()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / LOG_FILENAME
        self.debug_enabled = debug or os.getenv('DEBUG', '').lower() in ('true', '1', 'yes')

        level = logging.DEBUG if self.debug_enabled else logging.INFO
        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(level)
        self.logger.propagate = False
        self._reset_handlers()

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        self.logger.addHandler(file_handler)

        # stdout carries the CLI's JSON
        if console_output:
            console = logging.StreamHandler(sys.stderr)
            console.setLevel(logging.INFO)
            console.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
            self.logger.addHandler(console)

    def _reset_handlers(self) -> None:
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

    @staticmethod
    def _format_context(context: Optional[Dict[str, Any]]) -> str:
        if not context:
            return ''
        masked = {
            key: '<REDACTED>' if any(s in key.lower() for s in _SENSITIVE_KEYS) else value
            for key, value in context.items()
        }
        return ' | ' + json.dumps(masked, separators=(',', ':'), default=str)

    def _emit(self, level: int, message: str, context: Optional[Dict[str, Any]] = None, exc_info=None) -> None:
        self.logger.log(level, message + self._format_context(context), exc_info=exc_info)

    def info(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.INFO, message, context)

    def debug(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        if self.debug_enabled:
            self._emit(logging.DEBUG, message, context)

    def warning(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.WARNING, message, context)

    def error(
        self,
        message: str,
        error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log an error; the traceback is attached only in debug mode."""
        if error is not None:
            message = f"{message} | Error: {type(error).__name__}: {error}"
        self._emit(logging.ERROR, message, context, exc_info=error if self.debug_enabled else None)

    def swallowed(self, operation: str, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        """Record a tracker failure the caller chose to absorb."""
        ctx = dict(context or {})
        ctx.update(operation=operation, error=f"{type(error).__name__}: {error}")
        self._emit(logging.WARNING, f"Ignored failure during {operation}", ctx)

    def log_sync_operation(
        self,
        operation: str,
        result: str,
        duration: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log the outcome of one reconcile or recover pass.

        Args:
            operation: 'reconcile' or 'recover'
            result: 'success' logs at INFO, anything else at ERROR
            duration: Pass duration in seconds
            context: Counters and ids for the pass
        """
        ctx = dict(context or {})
        ctx.update(operation=operation, result=result)
        message = f"Operation: {operation} | Result: {result}"
        if duration is not None:
            ctx['duration_sec'] = round(duration, 3)
            message += f" | Duration: {duration:.3f}s"
        self._emit(logging.INFO if result == 'success' else logging.ERROR, message, ctx)


_logger: Optional[SyncLogger] = None


def get_logger(
    log_dir: Optional[Path] = None,
    debug: bool = False,
    console_output: bool = False,
) -> SyncLogger:
    """Process-wide SyncLogger; arguments apply only to the first call."""
    global _logger
    if _logger is None:
        _logger = SyncLogger(log_dir=log_dir, debug=debug, console_output=console_output)
    return _logger
