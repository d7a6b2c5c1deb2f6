"""Swarm configuration parsing and graph validation.

A swarm declaration is a YAML document::

    version: 1
    swarm:
      name: "Dev team"
      main: lead
      before: ["npm install"]
      instances:
        lead:
          description: "Coordinates the team"
          directory: .
          connections: [worker]
        worker:
          description: "Does the work"
          allowed_tools: [Read, Edit, "Bash(npm:*)"]

``parse`` turns the decoded mapping into an immutable ``InstanceGraph``.
Validation runs in a fixed order so the first defect in a document is
always the one reported.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from ..exceptions import ConfigError, GraphError
from .constants import (
    DEFAULT_DIRECTORY,
    DEFAULT_MODEL,
    MCP_TYPE_SSE,
    MCP_TYPE_STDIO,
    OPENAI_ONLY_FIELDS,
    PROVIDER_CLAUDE,
    PROVIDER_OPENAI,
    SUPPORTED_VERSION,
    VALID_API_VERSIONS,
    VALID_PROVIDERS,
)

logger = logging.getLogger(__name__)

WorktreePolicy = Union[None, bool, str]

TOOL_LIST_FIELDS = ("tools", "allowed_tools", "disallowed_tools")


@dataclass(frozen=True)
class McpIntegration:
    """A static MCP server an instance can reach (stdio or sse)."""

    name: str
    type: str
    command: Optional[str] = None
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    url: Optional[str] = None

    def to_descriptor(self) -> dict[str, Any]:
        """Render the integration as an ``mcpServers`` entry."""
        if self.type == MCP_TYPE_SSE:
            return {"type": MCP_TYPE_SSE, "url": self.url}
        descriptor: dict[str, Any] = {
            "type": MCP_TYPE_STDIO,
            "command": self.command,
            "args": list(self.args),
        }
        if self.env:
            descriptor["env"] = dict(self.env)
        return descriptor


@dataclass(frozen=True)
class AgentInstance:
    """One configured agent role. Immutable once validated."""

    name: str
    description: str
    directories: tuple[str, ...]
    model: str = DEFAULT_MODEL
    connections: tuple[str, ...] = ()
    allowed_tools: tuple[str, ...] = ()
    disallowed_tools: tuple[str, ...] = ()
    mcps: tuple[McpIntegration, ...] = ()
    prompt: Optional[str] = None
    vibe: bool = False
    worktree: WorktreePolicy = None
    provider: str = PROVIDER_CLAUDE
    temperature: Optional[float] = None
    api_version: Optional[str] = None
    openai_token_env: Optional[str] = None
    base_url: Optional[str] = None
    reasoning_effort: Optional[str] = None

    @property
    def directory(self) -> str:
        """Primary working directory."""
        return self.directories[0]

    @property
    def additional_directories(self) -> tuple[str, ...]:
        return self.directories[1:]

    @property
    def is_openai(self) -> bool:
        return self.provider == PROVIDER_OPENAI


@dataclass(frozen=True)
class InstanceGraph:
    """Validated swarm: a rooted, acyclic graph of instances."""

    name: str
    main: str
    instances: dict[str, AgentInstance]
    before: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def main_instance(self) -> AgentInstance:
        return self.instances[self.main]

    @property
    def instance_names(self) -> list[str]:
        return list(self.instances)

    def connections_for(self, name: str) -> tuple[str, ...]:
        return self.instances[name].connections

    def with_instances(self, instances: dict[str, AgentInstance]) -> "InstanceGraph":
        """Return a copy of the graph with remapped instances."""
        return InstanceGraph(
            name=self.name,
            main=self.main,
            instances=instances,
            before=self.before,
            raw=self.raw,
        )


def load(path: Union[str, Path], base_dir: Union[str, Path, None] = None) -> InstanceGraph:
    """Load and validate a swarm configuration file.

    Args:
        path: YAML file to read
        base_dir: Directory relative instance directories resolve against.
            Defaults to the configuration file's directory.
    """
    config_path = Path(path).expanduser().resolve()
    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}") from e

    return parse(raw, base_dir if base_dir is not None else config_path.parent)


def parse(raw: Any, base_dir: Union[str, Path]) -> InstanceGraph:
    """Validate a decoded swarm declaration and build its instance graph.

    Raises:
        ConfigError: The declaration is malformed.
        GraphError: A connection is dangling or the graph has a cycle.
    """
    if not isinstance(raw, dict):
        raise ConfigError("Configuration must be a mapping")

    _validate_version(raw)
    swarm = _validate_swarm(raw)

    base = Path(base_dir).expanduser().resolve()
    instances = {
        name: _parse_instance(str(name), entry, base) for name, entry in swarm["instances"].items()
    }

    _validate_connections(instances)
    _detect_cycles(instances)
    _validate_directories(instances)

    main = str(swarm["main"])
    if instances[main].provider != PROVIDER_CLAUDE:
        raise ConfigError(
            f"Main instance '{main}' must use the '{PROVIDER_CLAUDE}' provider "
            "because it runs interactively"
        )

    before = swarm.get("before") or []
    if not isinstance(before, list) or not all(isinstance(cmd, str) for cmd in before):
        raise ConfigError("Swarm field 'before' must be an array of commands")

    logger.debug("Parsed swarm '%s' with %d instances", swarm["name"], len(instances))
    return InstanceGraph(
        name=str(swarm["name"]),
        main=main,
        instances=instances,
        before=tuple(before),
        raw=raw,
    )


def _validate_version(raw: dict) -> None:
    version = raw.get("version")
    if version is None:
        raise ConfigError("Missing 'version' field in configuration")
    if version != SUPPORTED_VERSION:
        raise ConfigError(
            f"Unsupported version: {version}. Only version {SUPPORTED_VERSION} is supported"
        )


def _validate_swarm(raw: dict) -> dict:
    swarm = raw.get("swarm")
    if not swarm:
        raise ConfigError("Missing 'swarm' field in configuration")
    if not isinstance(swarm, dict):
        raise ConfigError("Field 'swarm' must be a mapping")

    for key in ("name", "instances", "main"):
        if swarm.get(key) is None:
            raise ConfigError(f"Missing '{key}' field in swarm configuration")

    instances = swarm["instances"]
    if not isinstance(instances, dict):
        raise ConfigError("Field 'instances' must be a mapping of instance names")
    if not instances:
        raise ConfigError("No instances defined")

    main = swarm["main"]
    if main not in instances:
        raise ConfigError(f"Main instance '{main}' not found in instances")
    return swarm


def _parse_instance(name: str, entry: Any, base_dir: Path) -> AgentInstance:
    entry = entry or {}
    if not isinstance(entry, dict):
        raise ConfigError(f"Instance '{name}' must be a mapping")

    if not entry.get("description"):
        raise ConfigError(f"Instance '{name}' missing required 'description' field")

    for field_name in TOOL_LIST_FIELDS:
        if field_name in entry and not isinstance(entry[field_name], list):
            raise ConfigError(
                f"Instance '{name}' field '{field_name}' must be an array, "
                f"got {type(entry[field_name]).__name__}"
            )

    provider = entry.get("provider", PROVIDER_CLAUDE)
    if provider not in VALID_PROVIDERS:
        raise ConfigError(
            f"Instance '{name}' has invalid provider '{provider}'. "
            f"Must be one of: {', '.join(VALID_PROVIDERS)}"
        )

    if provider == PROVIDER_CLAUDE:
        for field_name in OPENAI_ONLY_FIELDS:
            if field_name in entry:
                raise ConfigError(
                    f"Instance '{name}' has OpenAI-specific field '{field_name}' "
                    f"but provider is '{PROVIDER_CLAUDE}'"
                )

    api_version = entry.get("api_version")
    if api_version is not None and api_version not in VALID_API_VERSIONS:
        raise ConfigError(
            f"Instance '{name}' has invalid api_version '{api_version}'. "
            f"Must be one of: {', '.join(VALID_API_VERSIONS)}"
        )

    # 'tools' is the older spelling of 'allowed_tools'
    allowed = entry.get("allowed_tools")
    if allowed is None:
        allowed = entry.get("tools") or []

    connections = entry.get("connections") or []
    if isinstance(connections, str):
        connections = [connections]

    temperature = entry.get("temperature")
    if temperature is not None and not isinstance(temperature, (int, float)):
        raise ConfigError(f"Instance '{name}' field 'temperature' must be a number")

    return AgentInstance(
        name=name,
        description=str(entry["description"]),
        directories=_parse_directories(entry.get("directory"), base_dir),
        model=str(entry.get("model") or DEFAULT_MODEL),
        connections=tuple(str(c) for c in connections),
        allowed_tools=tuple(str(t) for t in allowed),
        disallowed_tools=tuple(str(t) for t in entry.get("disallowed_tools") or []),
        mcps=tuple(_parse_mcp(m) for m in entry.get("mcps") or []),
        prompt=entry.get("prompt"),
        vibe=bool(entry.get("vibe", False)),
        worktree=_parse_worktree(name, entry),
        provider=provider,
        temperature=float(temperature) if temperature is not None else None,
        api_version=api_version,
        openai_token_env=entry.get("openai_token_env"),
        base_url=entry.get("base_url"),
        reasoning_effort=entry.get("reasoning_effort"),
    )


def _parse_mcp(mcp: Any) -> McpIntegration:
    if not isinstance(mcp, dict) or not mcp.get("name"):
        raise ConfigError("MCP configuration missing 'name'")

    name = mcp["name"]
    mcp_type = mcp.get("type")
    if mcp_type == MCP_TYPE_STDIO:
        if not mcp.get("command"):
            raise ConfigError(f"MCP '{name}' missing 'command'")
        return McpIntegration(
            name=name,
            type=MCP_TYPE_STDIO,
            command=str(mcp["command"]),
            args=tuple(str(a) for a in mcp.get("args") or []),
            env={str(k): str(v) for k, v in (mcp.get("env") or {}).items()},
        )
    if mcp_type == MCP_TYPE_SSE:
        if not mcp.get("url"):
            raise ConfigError(f"MCP '{name}' missing 'url'")
        return McpIntegration(name=name, type=MCP_TYPE_SSE, url=str(mcp["url"]))

    raise ConfigError(f"Unknown MCP type '{mcp_type}' for '{name}'")


def _parse_worktree(name: str, entry: dict) -> WorktreePolicy:
    if "worktree" not in entry:
        return None
    value = entry["worktree"]
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ConfigError(
        f"Invalid worktree value for instance '{name}': {value!r}. "
        "Must be true, false, or a non-empty string"
    )


def _parse_directories(value: Any, base_dir: Path) -> tuple[str, ...]:
    if value is None:
        value = DEFAULT_DIRECTORY
    entries = value if isinstance(value, list) else [value]
    directories = [str((base_dir / Path(str(d)).expanduser()).resolve()) for d in entries]
    if not directories:
        directories = [str(base_dir)]
    return tuple(directories)


def _validate_connections(instances: dict[str, AgentInstance]) -> None:
    for name, instance in instances.items():
        for target in instance.connections:
            if target not in instances:
                raise GraphError(
                    f"Instance '{name}' has connection to unknown instance '{target}'"
                )


def _detect_cycles(instances: dict[str, AgentInstance]) -> None:
    """Reject any instance that can reach itself through connections.

    One depth-first pass over all instances in declaration order. Finished
    nodes are never re-entered, and the first back edge found names the
    cycle as the slice of the current path from its first occurrence.
    """
    visited: set[str] = set()

    for start in instances:
        if start in visited:
            continue
        path: list[str] = [start]
        on_path = {start}
        stack = [iter(instances[start].connections)]

        while stack:
            target = next(stack[-1], None)
            if target is None:
                stack.pop()
                finished = path.pop()
                on_path.discard(finished)
                visited.add(finished)
                continue
            if target in on_path:
                cycle = path[path.index(target):] + [target]
                raise GraphError(f"Circular dependency detected: {' -> '.join(cycle)}")
            if target in visited:
                continue
            path.append(target)
            on_path.add(target)
            stack.append(iter(instances[target].connections))


def _validate_directories(instances: dict[str, AgentInstance]) -> None:
    for name, instance in instances.items():
        for directory in instance.directories:
            if not Path(directory).is_dir():
                raise ConfigError(f"Directory '{directory}' for instance '{name}' does not exist")


def write_snapshot(graph: InstanceGraph, path: Union[str, Path]) -> None:
    """Persist the raw declaration so a session can be restored from it."""
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(graph.raw, f, sort_keys=False, default_flow_style=False)
