"""MCP server that exposes one instance to its callers.

``agentswarm serve`` is what every connection descriptor in a manifest
launches. The server owns an executor for the target instance and offers
three tools: ``task``, ``session_info`` and ``reset_session``.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from ..config.configuration import AgentInstance
from ..exceptions import ExecutionError, ParseError
from ..executors import ExecuteOptions, ExecutorBackend, create_executor
from ..session import paths
from ..session.event_log import SessionEventLog
from ..session.state import save_instance_state
from ..supervisor.process_tracker import ProcessTracker
from ..utils.logging import configure_session_logging

logger = logging.getLogger(__name__)

THINKING_BUDGETS = ("think", "think hard", "think harder", "ultrathink")


@dataclass
class InstanceContext:
    """Everything the tools of one serve process need."""

    instance: AgentInstance
    instance_id: str
    session_path: Path
    executor: ExecutorBackend
    event_log: SessionEventLog
    tracker: Optional[ProcessTracker] = None
    calling_instance: Optional[str] = None
    calling_instance_id: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.instance.name} ({self.instance_id})"

    @property
    def caller_label(self) -> str:
        if self.calling_instance_id:
            return f"{self.calling_instance} ({self.calling_instance_id})"
        return self.calling_instance or "unknown"

    def allowed_tools(self) -> list[str]:
        """Tool list for the backend; connections stay reachable when restricted."""
        tools = list(self.instance.allowed_tools)
        if tools:
            tools += [f"mcp__{name}" for name in self.instance.connections]
        return tools


def build_context(
    instance: AgentInstance,
    instance_id: str,
    mcp_config_path: Optional[str] = None,
    calling_instance: Optional[str] = None,
    calling_instance_id: Optional[str] = None,
    backend_session_id: Optional[str] = None,
    session_path: Optional[Path] = None,
) -> InstanceContext:
    """Wire up the event log, PID tracker and executor for ``instance``."""
    session_path = session_path or paths.from_env()
    paths.ensure_directory(session_path)

    event_log = SessionEventLog(
        session_path,
        instance=instance.name,
        instance_id=instance_id,
        calling_instance=calling_instance,
        calling_instance_id=calling_instance_id,
    )
    tracker = ProcessTracker(session_path)

    common: dict[str, Any] = {
        "working_directory": instance.directory,
        "model": instance.model,
        "mcp_config": mcp_config_path,
        "vibe": instance.vibe,
        "event_log": event_log,
        "additional_directories": instance.additional_directories,
        "session_id": backend_session_id,
        "instance_name": instance.name,
    }
    if instance.is_openai:
        executor = create_executor(
            instance.provider,
            temperature=instance.temperature,
            api_version=instance.api_version,
            openai_token_env=instance.openai_token_env,
            base_url=instance.base_url,
            reasoning_effort=instance.reasoning_effort,
            **common,
        )
    else:
        executor = create_executor(instance.provider, tracker=tracker, **common)

    return InstanceContext(
        instance=instance,
        instance_id=instance_id,
        session_path=Path(session_path),
        executor=executor,
        event_log=event_log,
        tracker=tracker,
        calling_instance=calling_instance,
        calling_instance_id=calling_instance_id,
    )


def run_task(
    context: InstanceContext,
    prompt: str,
    new_session: bool = False,
    system_prompt: Optional[str] = None,
    description: Optional[str] = None,
    thinking_budget: Optional[str] = None,
) -> str:
    """Execute one task for a caller and return the result text.

    Raises:
        ToolError: On executor failures, so the caller sees a tool error
            instead of the serve process dying
    """
    if thinking_budget is not None and thinking_budget not in THINKING_BUDGETS:
        raise ToolError(
            f"Invalid thinking_budget '{thinking_budget}'. Valid values: {', '.join(THINKING_BUDGETS)}"
        )
    if thinking_budget:
        prompt = f"{thinking_budget}: {prompt}"

    options = ExecuteOptions(
        new_session=new_session,
        system_prompt=system_prompt or context.instance.prompt,
        allowed_tools=context.allowed_tools() or None,
        disallowed_tools=list(context.instance.disallowed_tools) or None,
    )

    extra = {"description": description} if description else {}
    context.event_log.log_request(prompt, **extra)
    logger.info("%s -> %s:\n---\n%s\n---", context.caller_label, context.label, prompt)

    executor = context.executor
    try:
        result = executor.execute(prompt, options)
    except ParseError as e:
        logger.error("Parse error for %s: %s", context.instance.name, e)
        context.event_log.log_error(e)
        raise ToolError(f"Parse error: {e}") from e
    except ExecutionError as e:
        logger.error("Execution error for %s: %s", context.instance.name, e)
        context.event_log.log_error(e)
        raise ToolError(f"Execution failed: {e}") from e
    except Exception as e:
        logger.exception("Unexpected error for %s", context.instance.name)
        context.event_log.log_error(e)
        raise ToolError(f"Unexpected error: {e}") from e

    save_instance_state(
        context.session_path,
        context.instance.name,
        context.instance_id,
        executor.session_id,
    )
    context.event_log.log_response(
        result.result,
        cost_usd=result.cost_usd,
        duration_ms=result.duration_ms,
        is_error=result.is_error,
        session_id=result.session_id,
    )
    logger.info(
        "($%.4f - %dms) %s -> %s:\n---\n%s\n---",
        result.cost_usd,
        result.duration_ms,
        context.label,
        context.caller_label,
        result.result,
    )
    return result.result


def build_instance_server(context: InstanceContext) -> FastMCP:
    """Create the FastMCP server whose tools close over ``context``."""
    instance = context.instance
    server = FastMCP(instance.name)

    task_description = f"Execute a task using Agent {instance.name}."
    if instance.description:
        task_description += f" {instance.description}"

    @server.tool(name="task", description=task_description)
    async def task(
        prompt: str,
        new_session: bool = False,
        system_prompt: Optional[str] = None,
        description: Optional[str] = None,
        thinking_budget: Optional[str] = None,
    ) -> str:
        return await asyncio.to_thread(
            run_task,
            context,
            prompt,
            new_session,
            system_prompt,
            description,
            thinking_budget,
        )

    @server.tool(
        name="session_info",
        description="Get information about the current session for this agent",
    )
    def session_info() -> dict[str, Any]:
        executor = context.executor
        return {
            "has_session": executor.has_session,
            "session_id": executor.session_id,
            "working_directory": executor.working_directory,
        }

    @server.tool(
        name="reset_session",
        description="Reset the session for this agent, starting fresh on the next task",
    )
    def reset_session() -> dict[str, Any]:
        context.executor.reset_session()
        logger.info("Session reset for %s", context.label)
        return {"success": True, "message": "Session has been reset"}

    return server


def run_instance_server(
    instance: AgentInstance,
    instance_id: str,
    mcp_config_path: Optional[str] = None,
    calling_instance: Optional[str] = None,
    calling_instance_id: Optional[str] = None,
    backend_session_id: Optional[str] = None,
    debug: bool = False,
) -> None:
    """Serve ``instance`` on stdio until the client disconnects."""
    session_path = paths.from_env()
    configure_session_logging(session_path, debug=debug)

    context = build_context(
        instance,
        instance_id,
        mcp_config_path=mcp_config_path,
        calling_instance=calling_instance,
        calling_instance_id=calling_instance_id,
        backend_session_id=backend_session_id,
        session_path=session_path,
    )
    pid = os.getpid()
    if context.tracker:
        context.tracker.track_pid(pid, f"mcp_{instance.name}")
    logger.info("Started serve process for %s called by %s", context.label, context.caller_label)

    try:
        build_instance_server(context).run()
    finally:
        if context.tracker:
            context.tracker.untrack_pid(pid)
