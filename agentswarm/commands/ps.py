"""List active swarm sessions."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml
from rich.table import Table

from ..config.constants import CONFIG_SNAPSHOT, SESSION_EVENT_LOG
from ..session import paths
from ..session.costs import calculate_total_cost, format_cost
from ..utils.output import console
from ._helpers import (
    format_uptime,
    main_directories,
    read_snapshot,
    seconds_since,
    session_started_at,
    truncate,
)

logger = logging.getLogger(__name__)


@dataclass
class ActiveSession:
    session_id: str
    swarm_name: str
    cost: float
    uptime: str
    directory: str
    started_at: datetime


def collect_active_sessions() -> list[ActiveSession]:
    """Sessions with a live run symlink, newest first. Stale links are skipped."""
    run_dir = paths.run_dir()
    if not run_dir.is_dir():
        return []

    sessions = []
    for link in run_dir.iterdir():
        if not link.is_symlink():
            continue
        target = Path(os.readlink(link))
        if not target.is_dir() or not (target / CONFIG_SNAPSHOT).is_file():
            continue
        info = _session_info(target)
        if info:
            sessions.append(info)
    sessions.sort(key=lambda s: s.started_at, reverse=True)
    return sessions


def _session_info(session_path: Path) -> Optional[ActiveSession]:
    try:
        snapshot = read_snapshot(session_path)
        started_at = session_started_at(session_path)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Skipping unreadable session %s: %s", session_path, e)
        return None

    swarm = snapshot.get("swarm") or {}
    return ActiveSession(
        session_id=session_path.name,
        swarm_name=str(swarm.get("name") or "Unknown"),
        cost=calculate_total_cost(session_path / SESSION_EVENT_LOG).total_cost,
        uptime=format_uptime(seconds_since(started_at)),
        directory=", ".join(main_directories(snapshot)),
        started_at=started_at,
    )


def ps() -> None:
    """List running swarm sessions with cost and uptime."""
    sessions = collect_active_sessions()
    if not sessions:
        console.print("No active sessions")
        return

    table = Table(title="Active Sessions")
    table.add_column("SESSION_ID", style="cyan", no_wrap=True)
    table.add_column("SWARM_NAME", style="bold")
    table.add_column("TOTAL_COST", justify="right", style="green")
    table.add_column("UPTIME", justify="right")
    table.add_column("DIRECTORY", style="dim")

    for session in sessions:
        table.add_row(
            session.session_id,
            truncate(session.swarm_name, 25),
            format_cost(session.cost),
            session.uptime,
            session.directory,
        )

    console.print(table)
    console.print("[dim italic]Total cost does not include the cost of the main instance[/dim italic]")
