"""Commands that run a swarm: ``start`` and the internal ``serve``/``permissions``."""

from pathlib import Path
from typing import List, Optional

import typer

from ..config.configuration import AgentInstance, load
from ..config.constants import DEFAULT_CONFIG_FILE, DEFAULT_MODEL, PROVIDER_CLAUDE
from ..exceptions import ConfigError
from ..permissions.gate import split_tool_list
from ..permissions.server import run_permission_server
from ..server.instance_server import run_instance_server
from ..session.restore import restore_session
from ..supervisor.orchestrator import Orchestrator
from ..topology import new_instance_id
from ..utils.cli import handle_cli_errors
from ..utils.output import say


@handle_cli_errors("starting swarm")
def start(
    config_file: Optional[str] = typer.Argument(None, help="Swarm configuration file"),
    config: str = typer.Option(DEFAULT_CONFIG_FILE, "--config", "-c", help="Swarm configuration file"),
    vibe: bool = typer.Option(False, "--vibe", help="Run with all permissions, skipping every check"),
    prompt: Optional[str] = typer.Option(
        None, "--prompt", "-p", help="Run non-interactively with this prompt"
    ),
    stream_logs: bool = typer.Option(
        False, "--stream-logs", help="Stream session logs to stdout (requires --prompt)"
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    session_id: Optional[str] = typer.Option(
        None, "--session-id", help="Resume a previous session by id or path"
    ),
    worktree: Optional[str] = typer.Option(
        None,
        "--worktree",
        "-w",
        help="Run in git worktrees; without a name a session-derived name is used",
    ),
) -> None:
    """Start a swarm from a configuration file, or resume a session."""
    if stream_logs and not prompt:
        raise ConfigError("--stream-logs can only be used with -p/--prompt")

    if session_id:
        say(f"Restoring session: {session_id}", "green")
        restored = restore_session(session_id)
        orchestrator = Orchestrator(
            restored.graph,
            vibe=vibe,
            prompt=prompt,
            stream_logs=stream_logs,
            debug=debug,
            worktree=worktree if worktree is not None else restored.worktree_name,
            restore_session_path=restored.path,
        )
    else:
        config_path = Path(config_file or config)
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")
        graph = load(config_path, base_dir=Path.cwd())
        orchestrator = Orchestrator(
            graph,
            vibe=vibe,
            prompt=prompt,
            stream_logs=stream_logs,
            debug=debug,
            worktree=worktree,
        )

    exit_code = orchestrator.start()
    raise typer.Exit(exit_code)


def serve(
    name: str = typer.Option(..., "--name", "-n", help="Instance name"),
    directory: str = typer.Option(..., "--directory", "-d", help="Primary working directory"),
    add_dir: Optional[List[str]] = typer.Option(None, "--add-dir", help="Additional directory"),
    model: str = typer.Option(DEFAULT_MODEL, "--model", "-m", help="Model to use"),
    prompt: Optional[str] = typer.Option(None, "--prompt", help="System prompt"),
    description: Optional[str] = typer.Option(None, "--description", help="Instance description"),
    allowed_tools: Optional[str] = typer.Option(None, "--allowed-tools", help="Comma-separated patterns"),
    disallowed_tools: Optional[str] = typer.Option(None, "--disallowed-tools", help="Comma-separated patterns"),
    connections: Optional[str] = typer.Option(None, "--connections", help="Comma-separated instance names"),
    mcp_config_path: Optional[str] = typer.Option(None, "--mcp-config-path", help="Manifest for this instance"),
    calling_instance: Optional[str] = typer.Option(None, "--calling-instance", help="Caller name"),
    calling_instance_id: Optional[str] = typer.Option(None, "--calling-instance-id", help="Caller id"),
    instance_id: Optional[str] = typer.Option(None, "--instance-id", help="Session-unique id"),
    vibe: bool = typer.Option(False, "--vibe", help="Skip permission checks"),
    claude_session_id: Optional[str] = typer.Option(
        None, "--claude-session-id", help="Backend session to resume"
    ),
    provider: str = typer.Option(PROVIDER_CLAUDE, "--provider", help="claude or openai"),
    temperature: Optional[float] = typer.Option(None, "--temperature"),
    api_version: Optional[str] = typer.Option(None, "--api-version"),
    openai_token_env: Optional[str] = typer.Option(None, "--openai-token-env"),
    base_url: Optional[str] = typer.Option(None, "--base-url"),
    reasoning_effort: Optional[str] = typer.Option(None, "--reasoning-effort"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """Serve one instance over MCP (internal; launched from manifests)."""
    instance = AgentInstance(
        name=name,
        description=description or "",
        directories=(directory, *(add_dir or [])),
        model=model,
        connections=tuple(split_tool_list(connections)),
        allowed_tools=tuple(split_tool_list(allowed_tools)),
        disallowed_tools=tuple(split_tool_list(disallowed_tools)),
        prompt=prompt,
        vibe=vibe,
        provider=provider,
        temperature=temperature,
        api_version=api_version,
        openai_token_env=openai_token_env,
        base_url=base_url,
        reasoning_effort=reasoning_effort,
    )
    run_instance_server(
        instance,
        instance_id or new_instance_id(name),
        mcp_config_path=mcp_config_path,
        calling_instance=calling_instance,
        calling_instance_id=calling_instance_id,
        backend_session_id=claude_session_id,
        debug=debug,
    )


def permissions(
    allowed_tools: Optional[str] = typer.Option(None, "--allowed-tools", help="Comma-separated patterns"),
    disallowed_tools: Optional[str] = typer.Option(None, "--disallowed-tools", help="Comma-separated patterns"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """Serve the permission check tool over MCP (internal)."""
    run_permission_server(allowed_tools, disallowed_tools, debug=debug)
