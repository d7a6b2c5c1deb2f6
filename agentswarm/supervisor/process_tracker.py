"""Filesystem-based PID registry for a session.

Every spawned process writes ``pids/<pid>`` (containing a human label)
into the session directory itself, so tracking survives a supervisor
restart and needs no shared memory.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import psutil

from ..config.constants import KILL_GRACE_PERIOD_SECONDS, PIDS_DIR

logger = logging.getLogger(__name__)

TERMINATED = "terminated"
FORCE_KILLED = "force_killed"
ALREADY_TERMINATED = "already_terminated"
NO_PERMISSION = "no_permission"
SKIPPED = "skipped"


@dataclass
class CleanupOutcome:
    """What happened to one registered PID during cleanup."""

    pid: int
    label: str
    status: str

    def describe(self) -> str:
        if self.status == TERMINATED:
            return f"Terminated {self.label} (PID: {self.pid})"
        if self.status == FORCE_KILLED:
            return f"Force killed {self.label} (PID: {self.pid})"
        if self.status == ALREADY_TERMINATED:
            return f"{self.label} (PID: {self.pid}) already terminated"
        if self.status == NO_PERMISSION:
            return f"No permission to terminate {self.label} (PID: {self.pid})"
        return f"Skipped {self.label} (PID: {self.pid})"


class ProcessTracker:
    """Register, unregister and sweep the PIDs of one session."""

    def __init__(self, session_path: Union[str, Path]):
        self.session_path = Path(session_path)
        self.pids_dir = self.session_path / PIDS_DIR
        self.pids_dir.mkdir(parents=True, exist_ok=True)

    def track_pid(self, pid: int, label: str) -> Path:
        pid_file = self.pids_dir / str(pid)
        self.pids_dir.mkdir(parents=True, exist_ok=True)
        pid_file.write_text(label)
        logger.debug("Tracking PID %d (%s)", pid, label)
        return pid_file

    def untrack_pid(self, pid: int) -> None:
        try:
            (self.pids_dir / str(pid)).unlink()
        except FileNotFoundError:
            pass

    def tracked(self) -> dict[int, str]:
        """Registered PIDs and their labels."""
        result: dict[int, str] = {}
        if not self.pids_dir.is_dir():
            return result
        for pid_file in sorted(self.pids_dir.iterdir()):
            try:
                pid = int(pid_file.name)
            except ValueError:
                continue
            try:
                label = pid_file.read_text().strip() or "unknown"
            except OSError:
                label = "unknown"
            result[pid] = label
        return result

    def _terminate(self, pid: int, label: str, grace_period: float) -> CleanupOutcome:
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            proc.wait(timeout=grace_period)
            return CleanupOutcome(pid, label, TERMINATED)
        except psutil.TimeoutExpired:
            pass
        except psutil.NoSuchProcess:
            return CleanupOutcome(pid, label, ALREADY_TERMINATED)
        except psutil.AccessDenied:
            return CleanupOutcome(pid, label, NO_PERMISSION)

        try:
            proc.kill()
        except psutil.NoSuchProcess:
            return CleanupOutcome(pid, label, TERMINATED)
        except psutil.AccessDenied:
            return CleanupOutcome(pid, label, NO_PERMISSION)
        return CleanupOutcome(pid, label, FORCE_KILLED)

    def cleanup_all(self, grace_period: float = KILL_GRACE_PERIOD_SECONDS) -> list[CleanupOutcome]:
        """Terminate every registered process, then remove the registry.

        A failure for one PID is reported and never stops the sweep.
        """
        outcomes: list[CleanupOutcome] = []
        own_pid = os.getpid()

        for pid, label in self.tracked().items():
            if pid == own_pid:
                outcomes.append(CleanupOutcome(pid, label, SKIPPED))
                continue
            try:
                outcome = self._terminate(pid, label, grace_period)
            except psutil.Error as e:
                logger.error("Failed to terminate %s (PID: %d): %s", label, pid, e)
                outcome = CleanupOutcome(pid, label, ALREADY_TERMINATED)
            logger.info(outcome.describe())
            outcomes.append(outcome)

        shutil.rmtree(self.pids_dir, ignore_errors=True)
        return outcomes
