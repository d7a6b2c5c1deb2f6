"""Follow a growing log file from a background thread."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from ..config.constants import LOG_TAIL_POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class LogTail:
    """Forward text appended to ``path`` to ``sink`` until stopped.

    The polling thread is a daemon, so it never keeps the process alive.
    """

    def __init__(
        self,
        path: Path,
        sink: Callable[[str], None],
        poll_interval: float = LOG_TAIL_POLL_INTERVAL_SECONDS,
        from_end: bool = True,
    ):
        self.path = Path(path)
        self.sink = sink
        self.poll_interval = poll_interval
        self.position = 0
        self._from_end = from_end
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "LogTail":
        if self._from_end and self.path.exists():
            self.position = self.path.stat().st_size
        self._thread = threading.Thread(target=self._poll_loop, daemon=True, name="log-tail")
        self._thread.start()
        logger.debug("Started tailing %s", self.path)
        return self

    def stop(self) -> None:
        self._stopped.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._thread = None
        # Deliver whatever arrived between the last poll and the stop
        content = self._read_new_content()
        if content:
            self._deliver(content)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _read_new_content(self) -> str:
        """Read only new content since last position."""
        if not self.path.exists():
            return ""
        try:
            with open(self.path, encoding="utf-8", errors="replace") as f:
                f.seek(0, 2)
                if f.tell() < self.position:
                    # Truncated or replaced
                    self.position = 0
                f.seek(self.position)
                content = f.read()
                self.position = f.tell()
                return content
        except OSError as e:
            logger.error("Error reading new log content: %s", e)
            return ""

    def _deliver(self, content: str) -> None:
        try:
            self.sink(content)
        except Exception as e:
            logger.error("Error in log tail sink: %s", e)

    def _poll_loop(self) -> None:
        while not self._stopped.is_set():
            content = self._read_new_content()
            if content:
                self._deliver(content)
            self._stopped.wait(self.poll_interval)
