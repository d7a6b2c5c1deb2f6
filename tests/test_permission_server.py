"""Tests for the check_permission MCP tool."""

import json
from unittest.mock import patch

from fastmcp import Client

from agentswarm.permissions.gate import PermissionGate
from agentswarm.permissions.server import build_permission_server, run_permission_server


def _text(result):
    content = getattr(result, "content", result)
    return content[0].text


class TestCheckPermissionTool:
    """Call the tool through an in-memory MCP client."""

    async def test_lists_single_tool(self):
        server = build_permission_server(PermissionGate())
        async with Client(server) as client:
            tools = await client.list_tools()
        assert [tool.name for tool in tools] == ["check_permission"]

    async def test_allow_decision(self):
        server = build_permission_server(PermissionGate(allowed=["Bash(npm:*)"]))
        async with Client(server) as client:
            result = await client.call_tool(
                "check_permission", {"tool_name": "Bash", "input": {"command": "npm test"}}
            )
        assert json.loads(_text(result)) == {
            "behavior": "allow",
            "updatedInput": {"command": "npm test"},
        }

    async def test_deny_decision(self):
        server = build_permission_server(PermissionGate(disallowed=["Write"]))
        async with Client(server) as client:
            result = await client.call_tool(
                "check_permission", {"tool_name": "Write", "input": {"file_path": "/etc/passwd"}}
            )
        assert json.loads(_text(result)) == {
            "behavior": "deny",
            "message": "Tool 'Write' is explicitly disallowed",
        }


class TestRunPermissionServer:
    def test_logs_to_session_and_parses_lists(self, tmp_path, monkeypatch):
        session = tmp_path / "session"
        monkeypatch.setenv("AGENTSWARM_SESSION_PATH", str(session))

        with patch("agentswarm.permissions.server.build_permission_server") as build:
            run_permission_server("Read,Bash(npm:*)", "Edit")

        gate = build.call_args[0][0]
        assert [rule.text for rule in gate.allowed_rules] == ["Read", "Bash(npm:*)"]
        assert [rule.text for rule in gate.disallowed_rules] == ["Edit"]
        build.return_value.run.assert_called_once()
        assert (session / "session.log").exists()

    def test_falls_back_to_cwd_log(self, project_dir):
        with patch("agentswarm.permissions.server.build_permission_server"):
            run_permission_server(None, None)
        assert (project_dir / "permissions.log").exists()
