"""Shared pytest fixtures for agentswarm tests."""

import re
import shutil
import subprocess
from pathlib import Path

import pytest

from agentswarm.config.constants import (
    ENV_CLAUDE_BINARY,
    ENV_DEBUG,
    ENV_HOME,
    ENV_PROMPT,
    ENV_SESSION_ID,
    ENV_SESSION_PATH,
    ENV_START_DIR,
)

SWARM_ENV_VARS = (
    ENV_SESSION_PATH,
    ENV_SESSION_ID,
    ENV_START_DIR,
    ENV_PROMPT,
    ENV_DEBUG,
    ENV_CLAUDE_BINARY,
)

ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    return ANSI_RE.sub("", text)


@pytest.fixture(autouse=True)
def swarm_home(tmp_path, monkeypatch):
    """Point AGENTSWARM_HOME at a temp directory and clear session variables.

    Each variable is set before it is deleted so monkeypatch restores the
    original state even for values the orchestrator exports later.
    """
    home = tmp_path / "swarm-home"
    monkeypatch.setenv(ENV_HOME, str(home))
    for name in SWARM_ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return home


@pytest.fixture
def project_dir(tmp_path, monkeypatch):
    """An empty project directory that is also the cwd."""
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return project


@pytest.fixture
def write_config(project_dir):
    """Write a swarm YAML into the project directory and return its path."""

    def _write(text: str, name: str = "agentswarm.yml") -> Path:
        path = project_dir / name
        path.write_text(text)
        return path

    return _write


def _git(repo: Path, *args: str) -> None:
    subprocess.run(["git", "-C", str(repo), *args], check=True, capture_output=True)


@pytest.fixture
def git_repo(tmp_path):
    """A git repository on branch main with one commit."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-b", "main")
    _git(repo, "config", "user.email", "test@example.com")
    _git(repo, "config", "user.name", "Test User")
    _git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("# test repo\n")
    _git(repo, "add", "README.md")
    _git(repo, "commit", "-m", "Initial commit")
    return repo.resolve()
