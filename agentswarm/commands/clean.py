"""Remove stale run symlinks and orphaned session worktrees."""

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path

import typer

from ..config.constants import CONFIG_SNAPSHOT, DEFAULT_CLEAN_DAYS
from ..session import paths
from ..utils.output import console

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


def clean_stale_symlinks(days: int) -> int:
    """Remove run symlinks whose session is gone or that are older than ``days``."""
    run_dir = paths.run_dir()
    if not run_dir.is_dir():
        return 0

    cutoff = time.time() - days * SECONDS_PER_DAY
    cleaned = 0
    for link in run_dir.iterdir():
        if not link.is_symlink():
            continue
        try:
            target = Path(os.readlink(link))
            if not target.exists() or link.lstat().st_mtime < cutoff:
                link.unlink()
                cleaned += 1
        except OSError as e:
            logger.warning("Could not inspect run symlink %s: %s", link, e)
    return cleaned


def _session_exists(session_id: str) -> bool:
    sessions_dir = paths.sessions_dir()
    if not sessions_dir.is_dir():
        return False
    return any((project / session_id / CONFIG_SNAPSHOT).is_file() for project in sessions_dir.iterdir())


def _repo_of_worktree(worktree_path: Path) -> Path | None:
    """Main repository of a linked worktree, read from its ``.git`` file."""
    git_file = worktree_path / ".git"
    if not git_file.is_file():
        return None
    content = git_file.read_text().strip()
    if not content.startswith("gitdir:"):
        return None
    gitdir = content.split(":", 1)[1].strip()
    if "/.git/worktrees/" not in gitdir:
        return None
    return Path(gitdir.split("/.git/worktrees/")[0])


def _remove_worktree(worktree_path: Path) -> None:
    repo = _repo_of_worktree(worktree_path)
    if repo is not None and repo.is_dir():
        result = subprocess.run(
            ["git", "-C", str(repo), "worktree", "remove", str(worktree_path), "--force"],
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            logger.warning("git worktree remove failed for %s: %s", worktree_path, result.stderr.strip())
        subprocess.run(
            ["git", "-C", str(repo), "worktree", "prune"],
            capture_output=True,
            text=True,
            check=False,
        )
    if worktree_path.exists():
        shutil.rmtree(worktree_path, ignore_errors=True)


def clean_orphaned_worktrees(days: int) -> int:
    """Remove worktree directories of sessions that no longer exist.

    Layout: ``worktrees/<session_id>/<repo>-<hash>/<label>``.
    """
    worktrees_dir = paths.worktrees_dir()
    if not worktrees_dir.is_dir():
        return 0

    cutoff = time.time() - days * SECONDS_PER_DAY
    cleaned = 0
    for session_dir in worktrees_dir.iterdir():
        if not session_dir.is_dir() or _session_exists(session_dir.name):
            continue
        if session_dir.stat().st_mtime >= cutoff:
            continue

        for repo_dir in session_dir.iterdir():
            if not repo_dir.is_dir():
                continue
            for worktree_path in repo_dir.iterdir():
                if worktree_path.is_dir():
                    _remove_worktree(worktree_path)
        shutil.rmtree(session_dir, ignore_errors=True)
        logger.info("Removed orphaned worktrees for session %s", session_dir.name)
        cleaned += 1
    return cleaned


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" + ("" if count == 1 else "s")


def clean(
    days: int = typer.Option(
        DEFAULT_CLEAN_DAYS, "--days", "-d", help="Remove entries older than this many days"
    ),
) -> None:
    """Remove stale run symlinks and orphaned worktrees."""
    symlinks = clean_stale_symlinks(days)
    worktrees = clean_orphaned_worktrees(days)

    if symlinks or worktrees:
        console.print(f"[green]Cleaned {_plural(symlinks, 'stale symlink')}[/green]")
        console.print(f"[green]Cleaned {_plural(worktrees, 'orphaned worktree')}[/green]")
    else:
        console.print("[green]No cleanup needed[/green]")
