"""Session lifecycle for one swarm run.

``Orchestrator.start`` prepares the session directory, provisions
worktrees, writes the manifests, runs the root ``claude`` process in the
foreground and tears everything down again when it exits or a signal
arrives. The root process's exit code becomes the return value.
"""

import logging
import os
import signal
import subprocess
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from .. import __version__
from ..config.cli_config import get_cli_config
from ..config.configuration import AgentInstance, InstanceGraph, write_snapshot
from ..config.constants import (
    CONFIG_SNAPSHOT,
    ENV_DEBUG,
    ENV_PROMPT,
    ENV_SESSION_ID,
    ENV_SESSION_PATH,
    ENV_START_DIR,
    PERMISSION_TOOL_NAME,
    READY_GREETING,
    SESSION_LOG,
    START_DIRECTORY_FILE,
)
from ..config.settings import get_subprocess_env
from ..exceptions import ExecutionError
from ..session import paths
from ..session.metadata import read_metadata, update_metadata, write_metadata
from ..topology import ManifestGenerator
from ..utils.logging import configure_session_logging
from ..utils.output import say
from ..workspace.worktree_manager import WorktreeManager
from .log_tail import LogTail
from .process_tracker import ProcessTracker

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT)

GeneratorFactory = Callable[..., ManifestGenerator]


class Orchestrator:
    """Run one swarm session from preparation to cleanup."""

    def __init__(
        self,
        graph: InstanceGraph,
        generator_factory: GeneratorFactory = ManifestGenerator,
        vibe: bool = False,
        prompt: Optional[str] = None,
        stream_logs: bool = False,
        debug: bool = False,
        worktree: Optional[str] = None,
        restore_session_path: Union[str, Path, None] = None,
        session_id: Optional[str] = None,
    ):
        self.graph = graph
        self.generator_factory = generator_factory
        self.vibe = vibe
        self.prompt = prompt
        self.stream_logs = stream_logs
        self.debug = debug
        self.worktree = worktree
        self.restore_session_path = Path(restore_session_path) if restore_session_path else None
        self.session_id = session_id
        self.session_path: Optional[Path] = None
        self.start_directory = Path.cwd()

        self.generator: Optional[ManifestGenerator] = None
        self.tracker: Optional[ProcessTracker] = None
        self.worktree_manager: Optional[WorktreeManager] = None
        self.log_tail: Optional[LogTail] = None
        self._start_time: Optional[float] = None
        self._cleaned = False
        self._previous_handlers: dict[int, object] = {}

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def start(self) -> int:
        """Run the swarm and return the root process's exit code."""
        self._start_time = time.time()
        self._prepare_session()

        say(f"Starting swarm: {self.graph.name}", "bold")
        if self.vibe:
            say("Vibe mode ON", "yellow")
        say(f"Session files will be saved to: {self.session_path}")

        try:
            if not self.restore_session_path:
                self._run_before_commands()

            self._setup_worktrees()
            self._install_signal_handlers()

            self.generator = self.generator_factory(
                self.graph,
                self.session_path,
                vibe=self.vibe,
                restore_session_path=self.restore_session_path,
            )
            self.generator.generate_all()
            say("Generated MCP configurations in session directory")

            if self.prompt and self.stream_logs:
                self.log_tail = LogTail(self.session_path / SESSION_LOG, sink=_write_stdout).start()

            main = self.graph.main_instance
            self._announce_main(main)
            command = self.build_main_command(main)
            logger.debug("Running root command: %s", command)

            return self._run_root(command, main.directory)
        finally:
            self.cleanup()

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def _prepare_session(self) -> None:
        if self.restore_session_path:
            self.session_path = self.restore_session_path
            self.session_id = self.session_path.name
        else:
            self.session_id = self.session_id or paths.new_session_id()
            self.session_path = paths.generate(self.start_directory, self.session_id)
        paths.ensure_directory(self.session_path)

        os.environ[ENV_SESSION_PATH] = str(self.session_path)
        os.environ[ENV_SESSION_ID] = self.session_id
        os.environ[ENV_START_DIR] = str(self.start_directory)
        if self.prompt:
            os.environ[ENV_PROMPT] = "1"
        if self.debug:
            os.environ[ENV_DEBUG] = "1"

        configure_session_logging(self.session_path, debug=self.debug)
        logger.info("Session %s at %s", self.session_id, self.session_path)

        if self.restore_session_path:
            update_metadata(
                self.session_path,
                restored_at=_now_iso(),
                end_time=None,
                duration_seconds=None,
            )
        else:
            write_snapshot(self.graph, self.session_path / CONFIG_SNAPSHOT)
            (self.session_path / START_DIRECTORY_FILE).write_text(str(self.start_directory))
            write_metadata(
                self.session_path,
                {
                    "session_id": self.session_id,
                    "start_directory": str(self.start_directory),
                    "start_time": _now_iso(),
                    "swarm_name": self.graph.name,
                    "main_instance": self.graph.main,
                    "vibe": self.vibe,
                    "agentswarm_version": __version__,
                },
            )

        self._create_run_symlink()
        self.tracker = ProcessTracker(self.session_path)

    def _create_run_symlink(self) -> None:
        run_dir = paths.run_dir()
        run_dir.mkdir(parents=True, exist_ok=True)
        link = run_dir / self.session_id
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(self.session_path)

    def _run_before_commands(self) -> None:
        if not self.graph.before:
            return
        cwd = self.graph.main_instance.directory
        say("Executing before commands...")
        for command in self.graph.before:
            say(f"  Running: {command}")
            logger.info("Running before command: %s", command)
            result = subprocess.run(
                command, shell=True, cwd=cwd, capture_output=True, text=True, check=False
            )
            if result.stdout:
                logger.info("before command output: %s", result.stdout.strip())
            if result.returncode != 0:
                logger.error("Before command failed: %s (%s)", command, result.stderr.strip())
                raise ExecutionError(
                    f"Before command failed: {command}",
                    exit_code=result.returncode,
                    stderr=(result.stderr or "").strip()[:200],
                )
        say("Before commands completed successfully", "green")

    def _setup_worktrees(self) -> None:
        if self.restore_session_path:
            self.worktree_manager = WorktreeManager.from_metadata(
                read_metadata(self.session_path).get("worktree"),
                session_id=self.session_id,
                cli_option=self.worktree,
            )

        if self.worktree_manager is None:
            wants_worktree = self.worktree is not None or any(
                instance.worktree not in (None, False) for instance in self.graph.instances.values()
            )
            if not wants_worktree:
                return
            self.worktree_manager = WorktreeManager(self.worktree, session_id=self.session_id)

        remapped = self.worktree_manager.setup(self.graph.instances.values())
        self.graph = self.graph.with_instances({i.name: i for i in remapped})
        update_metadata(self.session_path, worktree=self.worktree_manager.session_metadata())

    def _announce_main(self, main: AgentInstance) -> None:
        say(f"Launching main instance: {main.name}", "bold")
        say(f"   Model: {main.model}")
        say(f"   Directory: {main.directory}")
        if main.allowed_tools:
            say(f"   Allowed tools: {', '.join(main.allowed_tools)}")
        if main.connections:
            say(f"   Connections: {', '.join(main.connections)}")
        if main.vibe:
            say("   Vibe mode ON for this instance", "yellow")

    # ------------------------------------------------------------------
    # Root process
    # ------------------------------------------------------------------

    def build_main_command(self, instance: AgentInstance) -> list[str]:
        """Command line for the interactive (or ``-p``) root claude process."""
        cli = get_cli_config()
        parts = [*cli.binary, cli.model_flag, instance.model]

        if self.vibe or instance.vibe:
            parts.append(cli.skip_permissions_flag)
        else:
            if instance.allowed_tools:
                tools = list(instance.allowed_tools) + [f"mcp__{c}" for c in instance.connections]
                parts += [cli.allowed_tools_flag, ",".join(tools)]
            if instance.disallowed_tools:
                parts += [cli.disallowed_tools_flag, ",".join(instance.disallowed_tools)]
            parts += [cli.permission_prompt_tool_flag, PERMISSION_TOOL_NAME]

        if instance.prompt:
            parts += [cli.append_system_prompt_flag, instance.prompt]

        for directory in instance.additional_directories:
            parts += [cli.add_dir_flag, directory]

        generator = self.generator
        manifest = generator.manifest_path(instance.name) if generator else Path(instance.name)
        parts += [cli.mcp_config_flag, str(manifest)]

        resume_id = generator.backend_session_id(instance.name) if generator else None
        if resume_id:
            parts += [cli.resume_flag, resume_id]

        if self.prompt:
            parts += [cli.prompt_flag, self.prompt]
        elif instance.prompt:
            parts.append(f"{instance.prompt}\n\n{READY_GREETING}")
        else:
            parts.append(READY_GREETING)
        return parts

    def _run_root(self, command: list[str], cwd: str) -> int:
        result = subprocess.run(command, cwd=cwd, env=get_subprocess_env(), check=False)
        logger.info("Root instance exited with code %d", result.returncode)
        return result.returncode

    # ------------------------------------------------------------------
    # Signals and cleanup
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        if sys.platform == "win32":
            return
        for sig in HANDLED_SIGNALS:
            try:
                self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)
            except ValueError:
                # Not in the main thread
                logger.debug("Cannot install handler for %s outside the main thread", sig)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._previous_handlers.items():
            try:
                signal.signal(sig, handler)
            except (ValueError, TypeError):
                logger.debug("Could not restore handler for %s", sig)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame) -> None:
        name = signal.Signals(signum).name
        logger.info("Received %s, shutting down", name)
        say(f"\nReceived {name}, shutting down...", "yellow")
        self.cleanup()
        sys.exit(128 + signum)

    def cleanup(self) -> None:
        """Tear down the session. Safe to call more than once."""
        if self._cleaned:
            return
        self._cleaned = True

        if self.log_tail:
            self.log_tail.stop()
            self.log_tail = None

        if self.tracker:
            for outcome in self.tracker.cleanup_all():
                say(f"  {outcome.describe()}")

        if self.worktree_manager:
            try:
                self.worktree_manager.cleanup()
            except Exception as e:
                logger.error("Error during worktree cleanup: %s", e)
                say(f"Error during worktree cleanup: {e}", "red")

        if self.session_path and self.session_path.exists():
            start_time = self._start_time or time.time()
            metadata = read_metadata(self.session_path)
            metadata["end_time"] = _now_iso()
            metadata["duration_seconds"] = int(time.time() - start_time)
            write_metadata(self.session_path, metadata)

        if self.session_id:
            link = paths.run_dir() / self.session_id
            if link.is_symlink():
                link.unlink()

        self._restore_signal_handlers()
        logger.info("Session cleanup complete")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _write_stdout(content: str) -> None:
    sys.stdout.write(content)
    sys.stdout.flush()
