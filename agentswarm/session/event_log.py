"""
Append-only JSONL event log shared by every process of a session.

Each line is one event tagged with the emitting instance, its unique id,
the calling instance, and a timestamp. Independent OS processes append
to the same file, so every write holds an exclusive ``flock`` across
seek-to-end, write and flush.
"""

import fcntl
import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from ..config.constants import SESSION_EVENT_LOG

logger = logging.getLogger(__name__)


class SessionEventLog:
    """Process- and thread-safe JSONL writer for ``session.log.json``."""

    def __init__(
        self,
        session_path: Union[str, Path],
        instance: Optional[str] = None,
        instance_id: Optional[str] = None,
        calling_instance: Optional[str] = None,
        calling_instance_id: Optional[str] = None,
    ):
        """Initialize the event log.

        Args:
            session_path: Session directory holding ``session.log.json``
            instance: Name of the instance emitting events
            instance_id: Session-unique id of that instance
            calling_instance: Instance that invoked this one, if any
            calling_instance_id: Session-unique id of the caller
        """
        self.path = Path(session_path) / SESSION_EVENT_LOG
        self.instance = instance
        self.instance_id = instance_id
        self.calling_instance = calling_instance
        self.calling_instance_id = calling_instance_id
        self._lock = threading.Lock()

        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _create_entry(self, event: dict[str, Any]) -> dict[str, Any]:
        return {
            "instance": self.instance,
            "instance_id": self.instance_id,
            "calling_instance": self.calling_instance,
            "calling_instance_id": self.calling_instance_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
        }

    def append(self, event: dict[str, Any]) -> dict[str, Any]:
        """Append one event as a single JSON line.

        Args:
            event: Event payload; conventionally carries a ``type`` key

        Returns:
            The full entry that was written
        """
        entry = self._create_entry(event)
        json_line = json.dumps(entry, default=str) + "\n"

        with self._lock:
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                    try:
                        f.seek(0, os.SEEK_END)
                        f.write(json_line)
                        f.flush()
                    finally:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            except OSError as e:
                logger.error("Failed to append to session event log %s: %s", self.path, e)
                raise
        return entry

    def log_request(self, prompt: str, **extra: Any) -> dict[str, Any]:
        """Record a cross-instance request arriving at this instance."""
        return self.append(
            {
                "type": "request",
                "from_instance": self.calling_instance,
                "from_instance_id": self.calling_instance_id,
                "to_instance": self.instance,
                "to_instance_id": self.instance_id,
                "prompt": prompt,
                **extra,
            }
        )

    def log_response(self, result: Any, **extra: Any) -> dict[str, Any]:
        """Record this instance's answer to its caller."""
        return self.append(
            {
                "type": "response",
                "from_instance": self.instance,
                "from_instance_id": self.instance_id,
                "to_instance": self.calling_instance,
                "to_instance_id": self.calling_instance_id,
                "result": result,
                **extra,
            }
        )

    def log_error(self, error: BaseException, **extra: Any) -> dict[str, Any]:
        """Record a request that ended in ``error`` instead of a response."""
        return self.append(
            {
                "type": "error",
                "from_instance": self.instance,
                "from_instance_id": self.instance_id,
                "to_instance": self.calling_instance,
                "to_instance_id": self.calling_instance_id,
                "error": {"class": type(error).__name__, "message": str(error)},
                **extra,
            }
        )


def read_events(path: Union[str, Path]) -> list[dict[str, Any]]:
    """Read every parseable entry of a JSONL event log, skipping bad lines."""
    entries = []
    log_path = Path(path)
    if not log_path.exists():
        return entries
    with open(log_path, encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("Skipping unparseable event log line: %s", line[:80])
    return entries
