"""Git worktree isolation for swarm instances.

Each ``(repo_root, label)`` pair gets at most one worktree per session,
created under ``<home>/worktrees/<session_id>/<repo>-<hash>/<label>`` on a
branch named after the label. Instance directories inside a bound
repository are re-rooted into the worktree. On shutdown a worktree is
removed only when it has neither uncommitted nor unpushed changes.
"""

import hashlib
import logging
import os
import subprocess
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import git

from ..config.configuration import AgentInstance
from ..config.settings import swarm_home
from ..config.constants import WORKTREES_DIR
from ..exceptions import WorktreeError
from ..utils.output import say

logger = logging.getLogger(__name__)

BASE_BRANCH_CANDIDATES = ("main", "master")


def _git(args: list[str], cwd: Union[str, Path]) -> subprocess.CompletedProcess:
    """Run a git command in ``cwd`` and capture its combined text output."""
    return subprocess.run(
        ["git", "-C", str(cwd), *args],
        capture_output=True,
        text=True,
        check=False,
    )


def _output(result: subprocess.CompletedProcess) -> str:
    return ((result.stdout or "") + (result.stderr or "")).strip()


def find_git_root(path: Union[str, Path]) -> Optional[Path]:
    """Working tree root of the repository containing ``path``, if any."""
    try:
        repo = git.Repo(path, search_parent_directories=True)
    except (git.InvalidGitRepositoryError, git.NoSuchPathError):
        return None
    if repo.working_tree_dir is None:
        return None
    return Path(repo.working_tree_dir).resolve()


def list_worktrees(repo_root: Union[str, Path]) -> list[dict[str, str]]:
    """Parse ``git worktree list --porcelain`` into one dict per worktree."""
    result = _git(["worktree", "list", "--porcelain"], repo_root)
    if result.returncode != 0:
        return []

    worktrees: list[dict[str, str]] = []
    current: dict[str, str] = {}
    for line in result.stdout.splitlines():
        if not line:
            if current:
                worktrees.append(current)
            current = {}
        elif line.startswith("worktree "):
            current["worktree"] = line[9:]
        elif line.startswith("HEAD "):
            current["HEAD"] = line[5:]
        elif line.startswith("branch "):
            current["branch"] = line[7:]
        elif line.startswith("prunable"):
            current["prunable"] = "true"
    if current:
        worktrees.append(current)
    return worktrees


class WorktreeManager:
    """Provision, map and tear down per-session git worktrees."""

    def __init__(self, cli_option: Optional[str] = None, session_id: Optional[str] = None):
        """Initialize the manager.

        Args:
            cli_option: Run-wide ``--worktree`` value. ``None`` means the
                option was not given; an empty string means it was given
                without a name.
            session_id: Session the worktrees belong to
        """
        self.cli_option = cli_option
        self.session_id = session_id or "default"
        if cli_option:
            self.shared_label = cli_option
        else:
            self.shared_label = f"worktree-{self.session_id}"
        self.bindings: dict[tuple[str, str], str] = {}
        self.instance_policies: dict[str, Optional[str]] = {}

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def determine_policy(self, instance: AgentInstance) -> Optional[str]:
        """Label the instance should run under, or None to skip isolation."""
        setting = instance.worktree
        if setting is None:
            return None if self.cli_option is None else self.shared_label
        if setting is False:
            return None
        if setting is True:
            return self.shared_label
        return setting

    def collect_needed(self, instances: Iterable[AgentInstance]) -> list[tuple[str, str]]:
        """Unique ``(repo_root, label)`` pairs across all instance directories."""
        needed: list[tuple[str, str]] = []
        for instance in instances:
            label = self.instance_policies.get(instance.name, self.determine_policy(instance))
            if label is None:
                continue
            for directory in instance.directories:
                root = find_git_root(directory)
                if root is None:
                    continue
                key = (str(root), label)
                if key not in needed:
                    needed.append(key)
        return needed

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def worktree_path(self, repo_root: Union[str, Path], label: str) -> Path:
        root = Path(repo_root)
        digest = hashlib.sha256(str(root).encode()).hexdigest()[:8]
        return swarm_home() / WORKTREES_DIR / self.session_id / f"{root.name}-{digest}" / label

    def _current_branch(self, repo_root: str) -> str:
        result = _git(["rev-parse", "--abbrev-ref", "HEAD"], repo_root)
        if result.returncode != 0:
            raise WorktreeError(
                f"Failed to get current branch in {repo_root}", stderr=_output(result)
            )
        branch = result.stdout.strip()
        if branch != "HEAD":
            return branch

        # Detached HEAD: base the worktree on the commit itself
        result = _git(["rev-parse", "HEAD"], repo_root)
        if result.returncode != 0:
            raise WorktreeError(
                f"Failed to resolve HEAD commit in {repo_root}", stderr=_output(result)
            )
        return result.stdout.strip()

    def _live_worktree_for(self, repo_root: str, path: Path, label: str) -> Optional[str]:
        """Path of an existing worktree at ``path`` or on branch ``label``."""
        for entry in list_worktrees(repo_root):
            location = entry.get("worktree", "")
            if not location or not Path(location).exists() or entry.get("prunable"):
                continue
            if Path(location) == path or entry.get("branch") == f"refs/heads/{label}":
                return location
        return None

    def _prune(self, repo_root: str) -> None:
        try:
            result = _git(["worktree", "prune"], repo_root)
            if result.returncode != 0:
                logger.warning("git worktree prune failed in %s: %s", repo_root, _output(result))
        except OSError as e:
            logger.warning("git worktree prune failed in %s: %s", repo_root, e)

    def create(self, repo_root: Union[str, Path], label: str) -> str:
        """Create (or reuse) the worktree for ``(repo_root, label)``.

        Returns:
            Filesystem path of the bound worktree

        Raises:
            WorktreeError: git could not create the worktree
        """
        repo_root = str(repo_root)
        key = (repo_root, label)
        if key in self.bindings:
            return self.bindings[key]

        path = self.worktree_path(repo_root, label)
        if path.exists():
            say(f"Using existing worktree: {path}")
            logger.info("Reusing existing worktree %s", path)
            self.bindings[key] = str(path)
            return str(path)

        path.parent.mkdir(parents=True, exist_ok=True)
        base = self._current_branch(repo_root)

        say(f"Creating worktree: {path} with branch: {label}")
        logger.info("Creating worktree %s on branch %s from %s", path, label, base)
        command = ["worktree", "add", "-b", label, str(path), base]
        result = _git(command, repo_root)

        if result.returncode != 0 and "already exists" in _output(result):
            say(f"Branch {label} already exists, using existing branch")
            command = ["worktree", "add", str(path), label]
            result = _git(command, repo_root)

        if result.returncode != 0:
            output = _output(result)
            if "already registered" in output or "already used by worktree" in output \
                    or "already checked out" in output:
                live = self._live_worktree_for(repo_root, path, label)
                if live:
                    logger.info("Reusing live worktree %s for branch %s", live, label)
                    self.bindings[key] = live
                    return live
                self._prune(repo_root)
                result = _git(command, repo_root)

        if result.returncode != 0:
            raise WorktreeError(
                f"Failed to create worktree for {repo_root}",
                command=["git", *command],
                stderr=_output(result),
            )

        self.bindings[key] = str(path)
        return str(path)

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def map_path(self, original_path: Union[str, Path], label: str) -> str:
        """Re-root ``original_path`` into its bound worktree, if there is one."""
        expanded = Path(original_path).expanduser().resolve()
        root = find_git_root(expanded)
        if root is None:
            return str(original_path)

        bound = self.bindings.get((str(root), label))
        if bound is None:
            return str(original_path)

        relative = os.path.relpath(expanded, root)
        return bound if relative == "." else str(Path(bound) / relative)

    def setup(self, instances: Iterable[AgentInstance]) -> list[AgentInstance]:
        """Resolve policies, create the needed worktrees, remap directories.

        Returns:
            New instance objects with worktree-relative directories
        """
        instances = list(instances)
        for instance in instances:
            self.instance_policies[instance.name] = self.determine_policy(instance)

        for repo_root, label in self.collect_needed(instances):
            self.create(repo_root, label)

        remapped = []
        for instance in instances:
            label = self.instance_policies[instance.name]
            if label is None:
                remapped.append(instance)
                continue
            directories = tuple(self.map_path(d, label) for d in instance.directories)
            logger.debug("Mapped %s directories %s -> %s", instance.name, instance.directories, directories)
            remapped.append(replace(instance, directories=directories))
        return remapped

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def has_uncommitted_changes(self, worktree_path: Union[str, Path]) -> bool:
        result = _git(["status", "--porcelain"], worktree_path)
        if result.returncode != 0:
            return True
        return bool(result.stdout.strip())

    def find_base_branch(self, repo_path: Union[str, Path]) -> Optional[str]:
        for branch in BASE_BRANCH_CANDIDATES:
            if _git(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"], repo_path).returncode == 0:
                return branch

        result = _git(["symbolic-ref", "refs/remotes/origin/HEAD"], repo_path)
        if result.returncode == 0:
            ref = result.stdout.strip()
            prefix = "refs/remotes/"
            if ref.startswith(prefix):
                return ref[len(prefix):]
        return None

    def _any_commits(self, worktree_path: Union[str, Path], *revisions: str) -> bool:
        """True if ``rev-list`` lists anything; a failing git counts as True."""
        result = _git(["rev-list", *revisions], worktree_path)
        if result.returncode != 0:
            return True
        return bool(result.stdout.strip())

    def has_unpushed_commits(self, worktree_path: Union[str, Path]) -> bool:
        """Whether the worktree holds commits that exist nowhere else.

        Ambiguous cases answer True so the worktree is kept.
        """
        result = _git(["rev-parse", "--abbrev-ref", "HEAD"], worktree_path)
        if result.returncode != 0:
            return True
        branch = result.stdout.strip()

        if branch != "HEAD":
            upstream = _git(["rev-parse", "--abbrev-ref", f"{branch}@{{upstream}}"], worktree_path)
            if upstream.returncode == 0:
                return self._any_commits(worktree_path, "HEAD", f"^{branch}@{{upstream}}")

        base = self.find_base_branch(worktree_path)
        if base is None:
            if branch == "HEAD":
                return True
            reflog = _git(["reflog", "show", "--format=%H", branch, "--"], worktree_path)
            entries = reflog.stdout.split() if reflog.returncode == 0 else []
            if not entries:
                return True
            return self._any_commits(worktree_path, "HEAD", f"^{entries[-1]}")

        if branch == base:
            return self._any_commits(worktree_path, "-n", "1", "HEAD")

        return self._any_commits(worktree_path, "HEAD", f"^{base}")

    def cleanup(self) -> dict[str, str]:
        """Remove every bound worktree that is safe to delete.

        Returns:
            Mapping of worktree path to outcome: ``removed``,
            ``uncommitted``, ``unpushed``, ``missing`` or ``failed``
        """
        outcomes: dict[str, str] = {}
        for (repo_root, _label), path in list(self.bindings.items()):
            if not Path(path).exists():
                outcomes[path] = "missing"
                continue

            if self.has_uncommitted_changes(path):
                say(f"Warning: Worktree has uncommitted changes, skipping cleanup: {path}", "yellow")
                logger.warning("Worktree has uncommitted changes, skipping cleanup: %s", path)
                outcomes[path] = "uncommitted"
                continue

            if self.has_unpushed_commits(path):
                say(f"Warning: Worktree has unpushed commits, skipping cleanup: {path}", "yellow")
                logger.warning("Worktree has unpushed commits, skipping cleanup: %s", path)
                outcomes[path] = "unpushed"
                continue

            say(f"Removing worktree: {path}")
            result = _git(["worktree", "remove", path], repo_root)
            if result.returncode != 0:
                logger.warning("Failed to remove worktree %s: %s", path, _output(result))
                result = _git(["worktree", "remove", "--force", path], repo_root)
            if result.returncode == 0:
                outcomes[path] = "removed"
            else:
                logger.error("Force remove of worktree %s failed: %s", path, _output(result))
                outcomes[path] = "failed"
        return outcomes

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def session_metadata(self) -> dict[str, Any]:
        return {
            "enabled": True,
            "shared_name": self.shared_label,
            "created_paths": {f"{root}:{label}": path for (root, label), path in self.bindings.items()},
            "instance_configs": {
                name: {"skip": label is None, "name": label}
                for name, label in self.instance_policies.items()
            },
        }


    @classmethod
    def from_metadata(
        cls,
        data: Optional[dict[str, Any]],
        session_id: Optional[str] = None,
        cli_option: Optional[str] = None,
    ) -> Optional["WorktreeManager"]:
        """Rebuild a manager from :meth:`session_metadata` output.

        Bindings whose directory is gone are dropped so :meth:`create`
        makes them again. Returns None when worktrees were not enabled.
        """
        if not data or not data.get("enabled"):
            return None
        label = cli_option if cli_option is not None else data.get("shared_name") or ""
        manager = cls(label, session_id=session_id)
        for key, path in (data.get("created_paths") or {}).items():
            repo_root, _, bound_label = key.rpartition(":")
            if repo_root and bound_label and Path(path).exists():
                manager.bindings[(repo_root, bound_label)] = path
        return manager
