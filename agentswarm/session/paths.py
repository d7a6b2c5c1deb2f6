"""Session directory layout.

Sessions live under ``<home>/sessions/<project-folder>/<session_id>/``
where the project folder is the absolute start directory with its path
separators replaced by ``+``. Active sessions are also reachable through
``<home>/run/<session_id>`` symlinks.
"""

import os
import re
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union

from ..config.constants import (
    CONFIG_SNAPSHOT,
    ENV_SESSION_PATH,
    RUN_DIR,
    SESSIONS_DIR,
    WORKTREES_DIR,
)
from ..config.settings import swarm_home
from ..exceptions import SessionError

SESSION_ID_FORMAT = "%Y%m%d_%H%M%S"


def project_folder_name(working_dir: Union[str, Path, None] = None) -> str:
    """Convert a directory path to a flat folder name using ``+`` as separator."""
    path = str(Path(working_dir).expanduser().absolute()) if working_dir else os.getcwd()
    # C:\ -> C
    path = re.sub(r"^([A-Za-z]):", r"\1", path)
    path = re.sub(r"^[/\\]", "", path)
    return re.sub(r"[/\\]", "+", path)


def new_session_id(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime(SESSION_ID_FORMAT)


def generate(working_dir: Union[str, Path, None] = None, session_id: Optional[str] = None) -> Path:
    """Build the session path for a start directory and session id."""
    return (
        swarm_home()
        / SESSIONS_DIR
        / project_folder_name(working_dir)
        / (session_id or new_session_id())
    )


def ensure_directory(session_path: Union[str, Path]) -> Path:
    """Create the session directory and keep the home out of version control."""
    path = Path(session_path)
    path.mkdir(parents=True, exist_ok=True)

    home = swarm_home()
    home.mkdir(parents=True, exist_ok=True)
    gitignore = home / ".gitignore"
    if not gitignore.exists():
        gitignore.write_text("*\n")
    return path


def from_env() -> Path:
    """Session path of the running swarm, as exported by the orchestrator."""
    value = os.environ.get(ENV_SESSION_PATH)
    if not value:
        raise SessionError(f"{ENV_SESSION_PATH} not set")
    return Path(value)


def run_dir() -> Path:
    return swarm_home() / RUN_DIR


def sessions_dir() -> Path:
    return swarm_home() / SESSIONS_DIR


def worktrees_dir() -> Path:
    return swarm_home() / WORKTREES_DIR


def iter_sessions() -> Iterator[Path]:
    """Yield every stored session directory that has a configuration snapshot."""
    root = sessions_dir()
    if not root.is_dir():
        return
    for project in sorted(root.iterdir()):
        if not project.is_dir():
            continue
        for session in sorted(project.iterdir()):
            if (session / CONFIG_SNAPSHOT).is_file():
                yield session


def find_session(session_ref: str) -> Optional[Path]:
    """Locate a session by directory path or by session id.

    A run symlink wins over a search of the sessions tree.
    """
    candidate = Path(session_ref).expanduser()
    if (candidate / CONFIG_SNAPSHOT).is_file():
        return candidate.resolve()

    link = run_dir() / session_ref
    if link.is_symlink():
        target = Path(os.readlink(link))
        if (target / CONFIG_SNAPSHOT).is_file():
            return target

    for session in iter_sessions():
        if session.name == session_ref:
            return session
    return None
