#!/usr/bin/env python3
"""
bd (beads) CLI wrapper with structured results and error classification.

Every call is a single blocking process invocation. There are no retries
here: callers decide whether a failure matters.
"""

import sys
import json
import subprocess
from dataclasses import dataclass
from typing import Dict, Any, Optional, List, Callable

from logger import get_logger


class BeadsError(Exception):
    """Raised when a bd command fails."""
    pass


class TrackerUnavailable(BeadsError):
    """bd could not be started, or did not answer."""
    pass


class TrackerRejected(BeadsError):
    """bd ran and reported a failure."""
    pass


class IssueNotFound(TrackerRejected):
    """The looked-up issue does not exist."""
    pass


_NOT_FOUND_MARKERS = ('not found', 'no issue', 'does not exist', 'no such issue')


@dataclass
class BeadsIssue:
    """Beads issue as returned by `bd show --json` (fields we rely on)."""
    id: str
    title: str = ''
    description: str = ''
    status: str = 'open'
    priority: int = 2
    issue_type: str = 'task'
    notes: str = ''
    close_reason: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BeadsIssue':
        priority = data.get('priority', 2)
        try:
            priority = int(priority)
        except (TypeError, ValueError):
            priority = 2

        return cls(
            id=str(data['id']),
            title=data.get('title') or '',
            description=data.get('description') or '',
            status=data.get('status') or 'open',
            priority=priority,
            issue_type=data.get('issue_type') or data.get('type') or 'task',
            notes=data.get('notes') or '',
            close_reason=data.get('close_reason') or '',
        )


class BeadsWrapper:
    """Wrapper for bd CLI commands."""

    def __init__(
        self,
        command: str = 'bd',
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
    ):
        """
        Initialize bd wrapper.

        Args:
            command: bd executable name or path
            cwd: Working directory for bd (the project holding .beads/)
            timeout: Per-call timeout in seconds (None waits forever)
            runner: subprocess.run-compatible callable, replaced in tests
        """
        self.command = command
        self.cwd = cwd
        self.timeout = timeout
        self.runner = runner or subprocess.run
        self.logger = get_logger()

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        cmd = [self.command] + args
        self.logger.debug(f"bd exec: {' '.join(cmd)}", context={"timeout": self.timeout})

        try:
            return self.runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=self.cwd,
            )
        except FileNotFoundError:
            raise TrackerUnavailable(
                f"{self.command} not found in PATH.\n"
                "Installation: https://github.com/steveyegge/beads"
            )
        except subprocess.TimeoutExpired:
            raise TrackerUnavailable(
                f"bd command timed out after {self.timeout}s: {' '.join(cmd)}"
            )
        except OSError as e:
            raise TrackerUnavailable(f"Could not execute {' '.join(cmd)}: {e}")

    def _exec(self, args: List[str]) -> Any:
        """
        Execute a bd command and parse its JSON output.

        Args:
            args: Command arguments (e.g., ['show', 'bd-12'])

        Returns:
            Parsed JSON response, or {'output': text} for non-JSON output

        Raises:
            TrackerUnavailable: If bd cannot be run
            TrackerRejected: If bd exits non-zero
        """
        result = self._run(args + ['--json'])

        if result.returncode != 0:
            error_msg = (result.stderr or '').strip() or (result.stdout or '').strip()
            self.logger.debug(
                "bd command failed",
                context={"cmd": ' '.join(args), "error": error_msg, "code": result.returncode},
            )
            if any(marker in error_msg.lower() for marker in _NOT_FOUND_MARKERS):
                raise IssueNotFound(error_msg or f"bd {' '.join(args)}: not found")
            raise TrackerRejected(
                f"bd command failed: bd {' '.join(args)}\n"
                f"Error: {error_msg}"
            )

        output = (result.stdout or '').strip()
        if not output:
            return {}
        try:
            return json.loads(output)
        except json.JSONDecodeError:
            return {'output': output}

    def check_installation(self) -> str:
        """
        Check bd installation and return version.

        Raises:
            TrackerUnavailable: If bd is not installed
        """
        result = self._run(['--version'])
        if result.returncode != 0:
            raise TrackerUnavailable("bd --version failed. Is beads installed?")
        return (result.stdout or '').strip()

    def create(
        self,
        title: str,
        issue_type: str,
        priority: int,
        description: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> str:
        """
        Create a beads issue.

        Returns:
            The new issue id

        Raises:
            BeadsError: If creation fails or bd returns no id
        """
        args = ['create', '--title', title, '-t', issue_type, '-p', str(priority)]
        if parent_id:
            args.extend(['--parent', parent_id])
        if description:
            args.extend(['-d', description])

        result = self._exec(args)
        if isinstance(result, list):
            result = result[0] if result else {}
        issue_id = result.get('id') if isinstance(result, dict) else None
        if not issue_id:
            raise TrackerRejected(f"bd create returned no issue id for '{title}'")
        return str(issue_id)

    def update(self, issue_id: str, status: Optional[str] = None, notes: Optional[str] = None) -> None:
        """Update status and/or notes of an issue."""
        args = ['update', issue_id]
        if status is not None:
            args.extend(['--status', status])
        if notes is not None:
            args.extend(['--notes', notes])
        self._exec(args)

    def close(self, issue_id: str, reason: str) -> None:
        """Close an issue with a reason."""
        self._exec(['close', issue_id, '--reason', reason])

    def show(self, issue_id: str) -> BeadsIssue:
        """
        Fetch an issue.

        bd prints either a one-element list or a bare object.

        Raises:
            IssueNotFound: If the issue does not exist
        """
        result = self._exec(['show', issue_id])
        if isinstance(result, list):
            result = result[0] if result else None
        if not isinstance(result, dict) or not result.get('id'):
            raise IssueNotFound(f"Issue not found: {issue_id}")
        return BeadsIssue.from_dict(result)


# Global wrapper instance
_wrapper: Optional[BeadsWrapper] = None


def get_wrapper(command: str = 'bd', cwd: Optional[str] = None, timeout: Optional[float] = None) -> BeadsWrapper:
    """
    Get or create global bd wrapper instance.

    Args:
        command: bd executable
        cwd: Working directory for bd
        timeout: Per-call timeout in seconds

    Returns:
        BeadsWrapper instance
    """
    global _wrapper

    if _wrapper is None:
        _wrapper = BeadsWrapper(command=command, cwd=cwd, timeout=timeout)

    return _wrapper


if __name__ == '__main__':
    try:
        wrapper = get_wrapper()
        print("✓ Checking bd installation...")
        print(f"  Version: {wrapper.check_installation()}")
    except BeadsError as e:
        print(f"\n✗ bd integration failed:\n{e}", file=sys.stderr)
        sys.exit(1)
