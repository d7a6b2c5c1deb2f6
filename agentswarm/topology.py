"""Per-instance MCP manifests.

Every instance gets ``<session>/<name>.mcp.json`` describing what it can
reach: its static MCP integrations, one re-entrant ``serve`` descriptor per
declared connection, and the permission server unless it runs
unrestricted. Manifests are written once, before the root process starts.
"""

import json
import logging
import secrets
from pathlib import Path
from typing import Any, Optional, Union

from .config.configuration import AgentInstance, InstanceGraph
from .config.constants import MANIFEST_SUFFIX, MCP_TYPE_STDIO
from .config.settings import swarm_executable
from .session.paths import ensure_directory
from .session.state import load_instance_states

logger = logging.getLogger(__name__)

PERMISSIONS_SERVER = "permissions"


def new_instance_id(name: str) -> str:
    return f"{name}_{secrets.token_hex(4)}"


class ManifestGenerator:
    """Compile a validated instance graph into per-instance manifests."""

    def __init__(
        self,
        graph: InstanceGraph,
        session_path: Union[str, Path],
        vibe: bool = False,
        restore_session_path: Union[str, Path, None] = None,
    ):
        self.graph = graph
        self.session_path = Path(session_path)
        self.vibe = vibe
        self.restore_session_path = Path(restore_session_path) if restore_session_path else None
        self.instance_ids: dict[str, str] = {}
        self.restore_states: dict[str, dict[str, Any]] = {}
        self.executable = swarm_executable()

    def manifest_path(self, name: str) -> Path:
        return self.session_path / f"{name}{MANIFEST_SUFFIX}"

    def backend_session_id(self, name: str) -> Optional[str]:
        """Backend session recorded for ``name`` in the restored session."""
        return self.restore_states.get(name, {}).get("claude_session_id")

    def generate_all(self) -> dict[str, Path]:
        """Assign instance ids and write every manifest.

        Returns:
            Mapping of instance name to manifest path
        """
        ensure_directory(self.session_path)

        if self.restore_session_path:
            for name, state in load_instance_states(self.restore_session_path).items():
                if name in self.graph.instances and state.get("instance_id"):
                    self.instance_ids[name] = state["instance_id"]
                    self.restore_states[name] = state

        for name in self.graph.instances:
            self.instance_ids.setdefault(name, new_instance_id(name))

        written = {}
        for name, instance in self.graph.instances.items():
            written[name] = self._write_manifest(name, instance)
        logger.info("Generated %d manifests in %s", len(written), self.session_path)
        return written

    def build_manifest(self, name: str, instance: AgentInstance) -> dict[str, Any]:
        servers: dict[str, Any] = {}

        for mcp in instance.mcps:
            servers[mcp.name] = mcp.to_descriptor()

        for target in instance.connections:
            servers[target] = self.build_connection_descriptor(
                self.graph.instances[target],
                calling_instance=name,
                calling_instance_id=self.instance_ids[name],
            )

        if not (self.vibe or instance.vibe):
            servers[PERMISSIONS_SERVER] = self.build_permission_descriptor(instance)

        return {
            "instance_id": self.instance_ids[name],
            "instance_name": name,
            "mcpServers": servers,
        }

    def _write_manifest(self, name: str, instance: AgentInstance) -> Path:
        path = self.manifest_path(name)
        path.write_text(json.dumps(self.build_manifest(name, instance), indent=2))
        return path

    def build_connection_descriptor(
        self,
        target: AgentInstance,
        calling_instance: str,
        calling_instance_id: str,
    ) -> dict[str, Any]:
        """Descriptor that re-enters agentswarm to serve ``target``."""
        args = [
            "serve",
            "--name", target.name,
            "--directory", target.directory,
        ]
        for extra in target.additional_directories:
            args += ["--add-dir", extra]
        args += ["--model", target.model]

        if target.prompt:
            args += ["--prompt", target.prompt]
        if target.description:
            args += ["--description", target.description]
        if target.allowed_tools:
            args += ["--allowed-tools", ",".join(target.allowed_tools)]
        if target.disallowed_tools:
            args += ["--disallowed-tools", ",".join(target.disallowed_tools)]
        if target.connections:
            args += ["--connections", ",".join(target.connections)]

        args += [
            "--mcp-config-path", str(self.manifest_path(target.name)),
            "--calling-instance", calling_instance,
            "--calling-instance-id", calling_instance_id,
            "--instance-id", self.instance_ids[target.name],
        ]

        if self.vibe or target.vibe:
            args.append("--vibe")

        session_id = self.backend_session_id(target.name)
        if session_id:
            args += ["--claude-session-id", session_id]

        if target.is_openai:
            args += ["--provider", target.provider]
            if target.temperature is not None:
                args += ["--temperature", str(target.temperature)]
            if target.api_version:
                args += ["--api-version", target.api_version]
            if target.openai_token_env:
                args += ["--openai-token-env", target.openai_token_env]
            if target.base_url:
                args += ["--base-url", target.base_url]
            if target.reasoning_effort:
                args += ["--reasoning-effort", target.reasoning_effort]

        return {"type": MCP_TYPE_STDIO, "command": self.executable, "args": args}

    def build_permission_descriptor(self, instance: AgentInstance) -> dict[str, Any]:
        args = [PERMISSIONS_SERVER]
        if instance.allowed_tools:
            args += ["--allowed-tools", ",".join(instance.allowed_tools)]
        if instance.disallowed_tools:
            args += ["--disallowed-tools", ",".join(instance.disallowed_tools)]
        return {"type": MCP_TYPE_STDIO, "command": self.executable, "args": args}
