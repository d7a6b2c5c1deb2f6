"""Browse stored sessions and follow a session's log."""

import logging
import os
import sys
import threading
from collections import deque
from datetime import datetime

import typer
import yaml

from ..config.constants import (
    DEFAULT_SESSION_LIST_LIMIT,
    DEFAULT_WATCH_LINES,
    MANIFEST_SUFFIX,
    SESSION_LOG,
)
from ..session import paths
from ..supervisor.log_tail import LogTail
from ..utils.output import console, print_error
from ._helpers import read_snapshot, require_session

logger = logging.getLogger(__name__)


def collect_sessions() -> list[dict]:
    """Stored sessions with manifests, newest first."""
    sessions = []
    for session_path in paths.iter_sessions():
        manifests = list(session_path.glob(f"*{MANIFEST_SUFFIX}"))
        if not manifests:
            continue
        try:
            snapshot = read_snapshot(session_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Skipping session with unreadable config %s: %s", session_path, e)
            continue
        swarm = snapshot.get("swarm") or {}
        sessions.append(
            {
                "path": session_path,
                "id": session_path.name,
                "project": session_path.parent.name,
                "created_at": datetime.fromtimestamp(session_path.stat().st_ctime),
                "swarm_name": swarm.get("name") or "Unknown",
                "main_instance": swarm.get("main") or "Unknown",
                "instances_count": len(manifests),
            }
        )
    sessions.sort(key=lambda s: s["created_at"], reverse=True)
    return sessions


def list_sessions(
    limit: int = typer.Option(
        DEFAULT_SESSION_LIST_LIMIT, "--limit", "-l", help="Maximum number of sessions to display"
    ),
) -> None:
    """List stored sessions, newest first."""
    sessions = collect_sessions()[:limit]
    if not sessions:
        console.print("[yellow]No sessions found[/yellow]")
        return

    console.print("\n[bold]Available sessions (newest first):[/bold]")
    for session in sessions:
        console.print(f"\n[green]{session['project']}/{session['id']}[/green]")
        console.print(f"  Created: {session['created_at']:%Y-%m-%d %H:%M:%S}")
        console.print(f"  Main: {session['main_instance']}")
        console.print(f"  Instances: {session['instances_count']}")
        console.print(f"  Swarm: {session['swarm_name']}")
        console.print(f"  Path: {session['path']}")
    console.print("\nTo resume a session, run:")
    console.print("  [cyan]agentswarm start --session-id <session-id>[/cyan]")


def _write(content: str) -> None:
    sys.stdout.write(content)
    sys.stdout.flush()


def watch(
    session_id: str = typer.Argument(..., help="Session id or path"),
    lines: int = typer.Option(
        DEFAULT_WATCH_LINES, "--lines", "-n", help="Number of lines to show initially"
    ),
) -> None:
    """Follow a session's log until interrupted."""
    session_path = require_session(session_id)
    log_file = session_path / SESSION_LOG
    if not log_file.is_file():
        print_error(f"Log file not found for session: {session_id}")
        raise typer.Exit(1)

    with open(log_file, encoding="utf-8", errors="replace") as f:
        for line in deque(f, maxlen=lines):
            _write(line)
        position = f.seek(0, os.SEEK_END)

    tail = LogTail(log_file, sink=_write, from_end=False)
    tail.position = position
    tail.start()
    stop = threading.Event()
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        tail.stop()
