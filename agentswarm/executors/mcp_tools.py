"""MCP stdio clients for the servers listed in an instance manifest.

HTTP executors have no built-in MCP support, so they open a client
session per manifest server for the duration of one task and expose the
collected tools to the model under ``mcp__<server>__<tool>`` names.
"""

import json
import logging
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, Optional, Union

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from ..config.constants import MCP_TYPE_SSE, MCP_TYPE_STDIO
from ..config.settings import get_subprocess_env
from ..exceptions import ExecutionError

logger = logging.getLogger(__name__)


def qualified_tool_name(server: str, tool: str) -> str:
    return f"mcp__{server}__{tool}"


def load_manifest_servers(manifest_path: Union[str, Path, None]) -> dict[str, dict[str, Any]]:
    """``mcpServers`` of a manifest, or ``{}`` when there is no manifest."""
    if not manifest_path:
        return {}
    path = Path(manifest_path)
    if not path.exists():
        return {}
    data = json.loads(path.read_text())
    return data.get("mcpServers") or {}


class McpToolbox:
    """Async context manager holding one client session per stdio server.

    Example:
        async with McpToolbox(servers) as toolbox:
            text = await toolbox.call_tool("mcp__worker__task", {"prompt": "hi"})
    """

    def __init__(self, servers: dict[str, dict[str, Any]]):
        self.servers = servers
        self.tools: dict[str, tuple[ClientSession, Any]] = {}
        self._stack: Optional[AsyncExitStack] = None

    async def __aenter__(self) -> "McpToolbox":
        self._stack = AsyncExitStack()
        await self._stack.__aenter__()
        for name, descriptor in self.servers.items():
            server_type = descriptor.get("type", MCP_TYPE_STDIO)
            if server_type == MCP_TYPE_SSE:
                logger.warning("SSE MCP servers are not supported for HTTP executors: %s", name)
                continue
            try:
                await self._connect(name, descriptor)
            except Exception as e:
                logger.error("Failed to connect to MCP server %s: %s", name, e)
        logger.info("Loaded %d tools from %d MCP server(s)", len(self.tools), len(self.servers))
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stack is not None:
            await self._stack.__aexit__(exc_type, exc, tb)
            self._stack = None
        self.tools.clear()

    async def _connect(self, name: str, descriptor: dict[str, Any]) -> None:
        assert self._stack is not None
        env = get_subprocess_env()
        env.update(descriptor.get("env") or {})
        params = StdioServerParameters(
            command=descriptor["command"],
            args=list(descriptor.get("args") or []),
            env=env,
        )
        read, write = await self._stack.enter_async_context(stdio_client(params))
        session = await self._stack.enter_async_context(ClientSession(read, write))
        await session.initialize()
        listed = await session.list_tools()
        for tool in listed.tools:
            self.tools[qualified_tool_name(name, tool.name)] = (session, tool)

    def chat_tools(self) -> list[dict[str, Any]]:
        """Tool definitions in chat-completions format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": tool.description or "",
                    "parameters": tool.inputSchema or {"type": "object", "properties": {}},
                },
            }
            for name, (_, tool) in self.tools.items()
        ]

    def response_tools(self) -> list[dict[str, Any]]:
        """Tool definitions in responses-API format."""
        return [
            {
                "type": "function",
                "name": name,
                "description": tool.description or "",
                "parameters": tool.inputSchema or {"type": "object", "properties": {}},
            }
            for name, (_, tool) in self.tools.items()
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        if name not in self.tools:
            raise ExecutionError(f"Unknown tool: {name}")
        session, tool = self.tools[name]
        result = await session.call_tool(tool.name, arguments=arguments)
        text = "\n".join(
            item.text for item in result.content if getattr(item, "text", None) is not None
        )
        if result.isError:
            raise ExecutionError(text or f"Tool {name} failed")
        return text
