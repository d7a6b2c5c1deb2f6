"""Shared helpers for the session inspection commands.

This module provides:
- require_session(): Locate a session or exit with error
- read_snapshot(): Load a session's ``config.yml`` snapshot
- session_started_at(): Best-known start time of a session
- format_uptime() / format_duration(): Compact and long duration strings
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer
import yaml

from ..config.constants import CONFIG_SNAPSHOT
from ..session import paths
from ..session.metadata import read_metadata
from ..utils.output import print_error

logger = logging.getLogger(__name__)


def require_session(session_ref: str) -> Path:
    """Find a session by id or path, or exit with error if not found.

    Raises:
        typer.Exit: If the session cannot be found (exits with code 1)
    """
    session_path = paths.find_session(session_ref)
    if session_path is None:
        print_error(f"Session not found: {session_ref}")
        raise typer.Exit(1)
    return session_path


def read_snapshot(session_path: Path) -> dict[str, Any]:
    with open(session_path / CONFIG_SNAPSHOT) as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def main_directories(snapshot: dict[str, Any]) -> list[str]:
    swarm = snapshot.get("swarm") or {}
    main = (swarm.get("instances") or {}).get(swarm.get("main")) or {}
    directory = main.get("directory") or "."
    return [str(d) for d in directory] if isinstance(directory, list) else [str(directory)]


def session_started_at(session_path: Path) -> datetime:
    """Start time from the metadata, falling back to the directory ctime."""
    start = read_metadata(session_path).get("start_time")
    if start:
        try:
            parsed = datetime.fromisoformat(start)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            logger.debug("Unparseable start_time in %s: %r", session_path, start)
    return datetime.fromtimestamp(session_path.stat().st_ctime, tz=timezone.utc)


def seconds_since(moment: datetime) -> int:
    return max(0, int((datetime.now(timezone.utc) - moment).total_seconds()))


def format_uptime(seconds: float) -> str:
    """Single-unit duration, e.g. ``42s``, ``5m``, ``3h``, ``2d``."""
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m"
    if seconds < 86_400:
        return f"{int(seconds // 3600)}h"
    return f"{int(seconds // 86_400)}d"


def format_duration(seconds: int) -> str:
    """Multi-unit duration, e.g. ``1h 2m 3s``."""
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def runtime_info(session_path: Path) -> Optional[str]:
    metadata = read_metadata(session_path)
    if metadata.get("duration_seconds") is not None:
        return format_duration(metadata["duration_seconds"])
    if metadata.get("start_time"):
        return f"{format_duration(seconds_since(session_started_at(session_path)))} (active)"
    return None


def truncate(text: str, length: int) -> str:
    return f"{text[:length - 2]}.." if len(text) > length else text
