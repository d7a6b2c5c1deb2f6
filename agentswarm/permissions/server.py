"""MCP server exposing the permission gate as ``check_permission``.

Claude instances launched with ``--permission-prompt-tool
mcp__permissions__check_permission`` ask this server before every tool
call. The answer is the JSON-encoded permission decision.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from fastmcp import FastMCP

from ..config.constants import ENV_SESSION_PATH, PERMISSIONS_FALLBACK_LOG, SESSION_LOG
from ..utils.logging import configure_session_logging
from .gate import PermissionGate, split_tool_list

logger = logging.getLogger(__name__)

SERVER_NAME = "agentswarm-permissions"


def build_permission_server(gate: PermissionGate) -> FastMCP:
    """Create the FastMCP server with its single tool bound to ``gate``."""
    server = FastMCP(SERVER_NAME)

    @server.tool(
        name="check_permission",
        description="Check if a tool is allowed to be used based on configured patterns",
    )
    def check_permission(tool_name: str, input: dict[str, Any]) -> str:
        decision = gate.decide(tool_name, input)
        response = json.dumps(decision.to_dict())
        logger.info("Returning response: %s", response)
        return response

    return server


def _log_location() -> tuple[Path, str]:
    session_path = os.environ.get(ENV_SESSION_PATH)
    if session_path:
        return Path(session_path), SESSION_LOG
    return Path.cwd(), PERMISSIONS_FALLBACK_LOG


def run_permission_server(
    allowed_tools: Optional[str] = None,
    disallowed_tools: Optional[str] = None,
    debug: bool = False,
) -> None:
    """Start the permission server on stdio. Blocks until the client disconnects."""
    log_dir, log_name = _log_location()
    configure_session_logging(log_dir, debug=debug, filename=log_name)

    allowed = split_tool_list(allowed_tools)
    disallowed = split_tool_list(disallowed_tools)
    logger.info(
        "Starting permission MCP server with allowed patterns: %r, disallowed patterns: %r",
        allowed,
        disallowed,
    )

    gate = PermissionGate(allowed, disallowed, base_dir=os.getcwd())
    build_permission_server(gate).run()
