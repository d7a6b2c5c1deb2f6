"""Locate a stored session and rebuild what is needed to resume it."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config.configuration import InstanceGraph, load
from ..config.constants import CONFIG_SNAPSHOT, MANIFEST_SUFFIX, START_DIRECTORY_FILE
from ..exceptions import SessionError
from . import paths
from .metadata import read_metadata

logger = logging.getLogger(__name__)


@dataclass
class RestoredSession:
    """Everything the orchestrator needs to re-enter a previous session."""

    path: Path
    session_id: str
    graph: InstanceGraph
    start_directory: Optional[Path]
    worktree_name: Optional[str]


def restore_session(session_ref: str, change_directory: bool = True) -> RestoredSession:
    """Find a session by id or path and re-derive its graph and worktree label.

    The process changes into the recorded start directory first so that
    relative instance directories resolve exactly as they did originally.

    Raises:
        SessionError: The session, its snapshot, or its start directory is missing.
    """
    session_path = paths.find_session(session_ref)
    if session_path is None:
        raise SessionError(f"Session not found: {session_ref}")

    if not any(session_path.glob(f"*{MANIFEST_SUFFIX}")):
        raise SessionError("No MCP configuration files found in session", path=str(session_path))

    config_file = session_path / CONFIG_SNAPSHOT
    if not config_file.is_file():
        raise SessionError("Configuration file not found in session", path=str(session_path))

    start_directory = None
    marker = session_path / START_DIRECTORY_FILE
    if marker.is_file():
        start_directory = Path(marker.read_text().strip())
        if not start_directory.is_dir():
            raise SessionError(f"Original directory no longer exists: {start_directory}")
        if change_directory:
            os.chdir(start_directory)
            logger.info("Changed to original directory: %s", start_directory)

    graph = load(config_file, base_dir=start_directory or Path.cwd())

    worktree_name = None
    worktree = read_metadata(session_path).get("worktree") or {}
    if worktree.get("enabled"):
        worktree_name = worktree.get("shared_name")

    return RestoredSession(
        path=session_path,
        session_id=session_path.name,
        graph=graph,
        start_directory=start_directory,
        worktree_name=worktree_name,
    )
