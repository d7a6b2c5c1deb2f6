"""Claude CLI executor implementation."""

import json
import subprocess
import tempfile
import time
from typing import Any, Optional

from ..config.cli_config import get_cli_config
from ..config.constants import CHILD_STOP_TIMEOUT_SECONDS, PERMISSION_TOOL_NAME
from ..config.settings import get_subprocess_env
from ..exceptions import ExecutionError, ParseError
from ..supervisor.process_tracker import ProcessTracker
from .base import ExecuteOptions, ExecutionResult, ExecutorBackend

STREAM_EVENT_TYPES = ("system", "assistant", "user", "result")


class ClaudeCodeExecutor(ExecutorBackend):
    """Executor for the Claude Code CLI.

    Runs ``claude --print --output-format stream-json --verbose`` and reads
    the event stream line by line. Every event is appended to the session
    event log; the ``result`` event becomes the return value.
    """

    def __init__(self, *args: Any, tracker: Optional[ProcessTracker] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.tracker = tracker
        self.config = get_cli_config()
        self.last_response: Optional[dict[str, Any]] = None

    @property
    def name(self) -> str:
        return "Claude Code"

    def build_command(self, prompt: str, options: ExecuteOptions) -> list[str]:
        """Build the non-interactive claude command line.

        Command format:
            claude --model <model> [--mcp-config <path>] [--resume <id>]
                   --output-format stream-json --verbose --print -p <prompt>
                   [--system-prompt <text>]
                   [--dangerously-skip-permissions | --allowedTools X,Y ...]
                   [--add-dir <dir> ...]
        """
        cfg = self.config
        cmd = list(cfg.binary)
        cmd.extend([cfg.model_flag, self.model])

        if self.mcp_config:
            cmd.extend([cfg.mcp_config_flag, self.mcp_config])

        if self.session_id and not options.new_session:
            cmd.extend([cfg.resume_flag, self.session_id])

        cmd.extend([cfg.output_format_flag, cfg.default_output_format])
        if cfg.requires_verbose_for_stream:
            cmd.append("--verbose")

        cmd.extend([cfg.print_flag, cfg.prompt_flag, prompt])

        if options.system_prompt:
            cmd.extend([cfg.system_prompt_flag, options.system_prompt])

        if self.vibe:
            cmd.append(cfg.skip_permissions_flag)
        else:
            if options.allowed_tools:
                cmd.extend([cfg.allowed_tools_flag, ",".join(options.allowed_tools)])
            if options.disallowed_tools:
                cmd.extend([cfg.disallowed_tools_flag, ",".join(options.disallowed_tools)])
            if self.mcp_config:
                cmd.extend([cfg.permission_prompt_tool_flag, PERMISSION_TOOL_NAME])

        for directory in self.additional_directories:
            cmd.extend([cfg.add_dir_flag, directory])

        return cmd

    def execute(self, prompt: str, options: Optional[ExecuteOptions] = None) -> ExecutionResult:
        options = options or ExecuteOptions()
        cmd = self.build_command(prompt, options)
        self.logger.debug("Running: %s", cmd)

        start = time.monotonic()
        result_event: Optional[dict[str, Any]] = None

        with tempfile.TemporaryFile(mode="w+") as stderr_file:
            try:
                process = subprocess.Popen(
                    cmd,
                    cwd=self.working_directory,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    stdin=subprocess.DEVNULL,
                    text=True,
                    env=get_subprocess_env(),
                )
            except FileNotFoundError as e:
                raise ExecutionError(f"Claude CLI not found: {e}", command=cmd[0]) from e

            if self.tracker:
                self.tracker.track_pid(process.pid, f"claude_{self.instance_name}")
            try:
                if process.stdout is None:
                    raise ExecutionError("Claude CLI started without a stdout pipe")
                for line in process.stdout:
                    event = self.parse_stream_line(line)
                    if event is None:
                        continue
                    self._handle_event(event)
                    if event.get("type") == "result":
                        result_event = event
                exit_code = process.wait()
            except ParseError:
                process.kill()
                process.wait()
                raise
            finally:
                self._stop(process)
                if self.tracker:
                    self.tracker.untrack_pid(process.pid)

            stderr_file.seek(0)
            stderr = stderr_file.read().strip()

        if exit_code != 0:
            self.logger.error("Claude CLI exited with code %d: %s", exit_code, stderr)
            raise ExecutionError(
                f"Claude Code execution failed: {stderr or f'exit code {exit_code}'}",
                exit_code=exit_code,
            )

        if result_event is None:
            raise ParseError("No result event in Claude output")

        self.last_response = result_event
        return ExecutionResult(
            result=result_event.get("result") or "",
            cost_usd=float(result_event.get("total_cost_usd") or result_event.get("cost_usd") or 0.0),
            duration_ms=int(result_event.get("duration_ms") or (time.monotonic() - start) * 1000),
            session_id=self.session_id,
            is_error=bool(result_event.get("is_error", False)),
        )

    def _stop(self, process: subprocess.Popen) -> None:
        """Terminate a child that is still running, killing it if it lingers."""
        if process.poll() is not None:
            return
        self.logger.warning("Stopping Claude CLI (PID: %d) for %s", process.pid, self.instance_name)
        process.terminate()
        try:
            process.wait(timeout=CHILD_STOP_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def parse_stream_line(self, line: str) -> Optional[dict[str, Any]]:
        """Decode one stream-json line; blank lines are skipped."""
        if not line.strip():
            return None
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ParseError(f"Failed to parse JSON response: {e}", line=line.strip()[:200]) from e
        if not isinstance(data, dict):
            raise ParseError("Unexpected stream event", line=line.strip()[:200])
        return data

    def _handle_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        session_id = event.get("session_id")
        if session_id and (event_type == "system" or event_type == "result"):
            self.session_id = session_id

        if event_type in STREAM_EVENT_TYPES:
            self.log_event(event)

        if event_type == "assistant":
            message = event.get("message", {})
            content = message.get("content", [])
            text = self.extract_text_content(content)
            if text:
                self.logger.info("%s: %s", self.instance_name, text)
            for item in content:
                if isinstance(item, dict) and item.get("type") == "tool_use":
                    self.logger.info(
                        "Tool call from %s -> %s: %s",
                        self.instance_name,
                        item.get("name"),
                        json.dumps(item.get("input", {})),
                    )
        elif event_type == "result":
            self.logger.info(
                "(%s USD - %sms) %s finished",
                event.get("total_cost_usd", 0),
                event.get("duration_ms", 0),
                self.instance_name,
            )
