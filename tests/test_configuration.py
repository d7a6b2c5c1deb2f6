"""Tests for swarm configuration parsing and graph validation."""

import pytest
import yaml

from agentswarm.config.configuration import (
    InstanceGraph,
    load,
    parse,
    write_snapshot,
)
from agentswarm.exceptions import ConfigError, GraphError


def _swarm(instances, main="lead", **extra):
    swarm = {"name": "Test Swarm", "main": main, "instances": instances}
    swarm.update(extra)
    return {"version": 1, "swarm": swarm}


class TestLoad:
    """Test loading configuration files from disk."""

    def test_load_minimal(self, write_config, project_dir):
        path = write_config(
            """
version: 1
swarm:
  name: "Dev team"
  main: lead
  instances:
    lead:
      description: "Coordinates the team"
"""
        )
        graph = load(path)

        assert isinstance(graph, InstanceGraph)
        assert graph.name == "Dev team"
        assert graph.main == "lead"
        lead = graph.main_instance
        assert lead.model == "sonnet"
        assert lead.directory == str(project_dir.resolve())
        assert lead.connections == ()
        assert lead.provider == "claude"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Configuration file not found"):
            load(tmp_path / "nope.yml")

    def test_invalid_yaml(self, write_config):
        path = write_config("version: 1\nswarm: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML syntax"):
            load(path)

    def test_relative_directories_use_base_dir(self, tmp_path, write_config):
        other = tmp_path / "elsewhere"
        (other / "sub").mkdir(parents=True)
        path = write_config(
            """
version: 1
swarm:
  name: "Dev team"
  main: lead
  instances:
    lead:
      description: "Lead"
      directory: ./sub
"""
        )
        graph = load(path, base_dir=other)
        assert graph.main_instance.directory == str((other / "sub").resolve())

    def test_snapshot_round_trips(self, write_config, project_dir):
        path = write_config(
            """
version: 1
swarm:
  name: "Dev team"
  main: lead
  instances:
    lead:
      description: "Lead"
      allowed_tools: [Read, "Bash(npm:*)"]
"""
        )
        graph = load(path)
        snapshot = project_dir / "snapshot.yml"
        write_snapshot(graph, snapshot)

        reloaded = load(snapshot)
        assert reloaded == graph
        assert yaml.safe_load(snapshot.read_text())["swarm"]["name"] == "Dev team"


class TestSchemaValidation:
    """Test the ordered document-level checks."""

    def test_not_a_mapping(self, project_dir):
        with pytest.raises(ConfigError, match="must be a mapping"):
            parse(["a", "b"], project_dir)

    def test_missing_version(self, project_dir):
        with pytest.raises(ConfigError, match="Missing 'version' field"):
            parse({"swarm": {}}, project_dir)

    def test_unsupported_version(self, project_dir):
        with pytest.raises(ConfigError, match="Unsupported version: 2"):
            parse({"version": 2, "swarm": {}}, project_dir)

    def test_missing_swarm(self, project_dir):
        with pytest.raises(ConfigError, match="Missing 'swarm' field"):
            parse({"version": 1}, project_dir)

    @pytest.mark.parametrize("key", ["name", "instances", "main"])
    def test_missing_swarm_keys(self, project_dir, key):
        swarm = {"name": "x", "main": "lead", "instances": {"lead": {"description": "d"}}}
        del swarm[key]
        with pytest.raises(ConfigError, match=f"Missing '{key}' field in swarm configuration"):
            parse({"version": 1, "swarm": swarm}, project_dir)

    def test_no_instances(self, project_dir):
        with pytest.raises(ConfigError, match="No instances defined"):
            parse(_swarm({}), project_dir)

    def test_main_not_found(self, project_dir):
        with pytest.raises(ConfigError, match="Main instance 'boss' not found"):
            parse(_swarm({"lead": {"description": "d"}}, main="boss"), project_dir)

    def test_missing_description(self, project_dir):
        with pytest.raises(ConfigError, match="Instance 'lead' missing required 'description' field"):
            parse(_swarm({"lead": {"model": "opus"}}), project_dir)

    def test_tool_field_must_be_list(self, project_dir):
        with pytest.raises(ConfigError, match="field 'allowed_tools' must be an array, got str"):
            parse(_swarm({"lead": {"description": "d", "allowed_tools": "Read"}}), project_dir)

    def test_missing_directory(self, project_dir):
        with pytest.raises(ConfigError, match="does not exist"):
            parse(_swarm({"lead": {"description": "d", "directory": "./missing"}}), project_dir)

    def test_before_must_be_list(self, project_dir):
        with pytest.raises(ConfigError, match="'before' must be an array"):
            parse(_swarm({"lead": {"description": "d"}}, before="npm install"), project_dir)

    def test_first_defect_is_reported(self, project_dir):
        """A dangling connection is reported before a missing directory."""
        instances = {
            "lead": {"description": "d", "connections": ["ghost"], "directory": "./missing"},
        }
        with pytest.raises(GraphError, match="unknown instance 'ghost'"):
            parse(_swarm(instances), project_dir)


class TestInstanceFields:
    """Test per-instance field handling."""

    def test_full_instance(self, project_dir):
        (project_dir / "api").mkdir()
        (project_dir / "shared").mkdir()
        instances = {
            "lead": {
                "description": "Lead",
                "connections": ["api"],
                "prompt": "You lead",
            },
            "api": {
                "description": "Backend",
                "directory": ["./api", "./shared"],
                "model": "opus",
                "allowed_tools": ["Read", "Edit"],
                "disallowed_tools": ["Bash(rm:*)"],
                "vibe": True,
                "worktree": "feature-x",
                "mcps": [
                    {"name": "fs", "type": "stdio", "command": "fs-server", "args": ["--root", "."]},
                    {"name": "remote", "type": "sse", "url": "http://localhost:9000/sse"},
                ],
            },
        }
        graph = parse(_swarm(instances, before=["npm install"]), project_dir)

        api = graph.instances["api"]
        assert api.directory == str((project_dir / "api").resolve())
        assert api.additional_directories == (str((project_dir / "shared").resolve()),)
        assert api.model == "opus"
        assert api.allowed_tools == ("Read", "Edit")
        assert api.disallowed_tools == ("Bash(rm:*)",)
        assert api.vibe is True
        assert api.worktree == "feature-x"
        assert [m.name for m in api.mcps] == ["fs", "remote"]
        assert api.mcps[0].to_descriptor() == {"type": "stdio", "command": "fs-server", "args": ["--root", "."]}
        assert api.mcps[1].to_descriptor() == {"type": "sse", "url": "http://localhost:9000/sse"}
        assert graph.before == ("npm install",)
        assert graph.connections_for("lead") == ("api",)
        assert graph.main_instance.prompt == "You lead"

    def test_tools_is_alias_for_allowed_tools(self, project_dir):
        graph = parse(_swarm({"lead": {"description": "d", "tools": ["Read"]}}), project_dir)
        assert graph.main_instance.allowed_tools == ("Read",)

    def test_single_connection_string(self, project_dir):
        instances = {"lead": {"description": "d", "connections": "worker"}, "worker": {"description": "w"}}
        graph = parse(_swarm(instances), project_dir)
        assert graph.main_instance.connections == ("worker",)

    @pytest.mark.parametrize("value", ["", "   ", 3, ["a"]])
    def test_invalid_worktree_values(self, project_dir, value):
        with pytest.raises(ConfigError, match="Invalid worktree value for instance 'lead'"):
            parse(_swarm({"lead": {"description": "d", "worktree": value}}), project_dir)

    def test_worktree_booleans(self, project_dir):
        instances = {
            "lead": {"description": "d", "worktree": False, "connections": ["worker"]},
            "worker": {"description": "w", "worktree": True},
        }
        graph = parse(_swarm(instances), project_dir)
        assert graph.instances["lead"].worktree is False
        assert graph.instances["worker"].worktree is True

    def test_mcp_missing_name(self, project_dir):
        instances = {"lead": {"description": "d", "mcps": [{"type": "stdio", "command": "x"}]}}
        with pytest.raises(ConfigError, match="MCP configuration missing 'name'"):
            parse(_swarm(instances), project_dir)

    def test_mcp_stdio_requires_command(self, project_dir):
        instances = {"lead": {"description": "d", "mcps": [{"name": "fs", "type": "stdio"}]}}
        with pytest.raises(ConfigError, match="MCP 'fs' missing 'command'"):
            parse(_swarm(instances), project_dir)

    def test_mcp_sse_requires_url(self, project_dir):
        instances = {"lead": {"description": "d", "mcps": [{"name": "remote", "type": "sse"}]}}
        with pytest.raises(ConfigError, match="MCP 'remote' missing 'url'"):
            parse(_swarm(instances), project_dir)

    def test_mcp_unknown_type(self, project_dir):
        instances = {"lead": {"description": "d", "mcps": [{"name": "x", "type": "http"}]}}
        with pytest.raises(ConfigError, match="Unknown MCP type 'http' for 'x'"):
            parse(_swarm(instances), project_dir)


class TestProviders:
    """Test provider-specific validation."""

    def _instances(self, worker):
        return {"lead": {"description": "d", "connections": ["worker"]}, "worker": worker}

    def test_openai_instance(self, project_dir):
        worker = {
            "description": "w",
            "provider": "openai",
            "model": "gpt-4o",
            "temperature": 0.5,
            "api_version": "responses",
            "openai_token_env": "MY_KEY",
            "base_url": "http://localhost:8080/v1",
            "reasoning_effort": "high",
        }
        graph = parse(_swarm(self._instances(worker)), project_dir)
        instance = graph.instances["worker"]

        assert instance.is_openai
        assert instance.temperature == 0.5
        assert instance.api_version == "responses"
        assert instance.openai_token_env == "MY_KEY"
        assert instance.base_url == "http://localhost:8080/v1"
        assert instance.reasoning_effort == "high"

    def test_invalid_provider(self, project_dir):
        worker = {"description": "w", "provider": "gemini"}
        with pytest.raises(ConfigError, match="invalid provider 'gemini'"):
            parse(_swarm(self._instances(worker)), project_dir)

    def test_openai_field_on_claude_instance(self, project_dir):
        worker = {"description": "w", "temperature": 0.2}
        with pytest.raises(ConfigError, match="OpenAI-specific field 'temperature'"):
            parse(_swarm(self._instances(worker)), project_dir)

    def test_invalid_api_version(self, project_dir):
        worker = {"description": "w", "provider": "openai", "api_version": "v2"}
        with pytest.raises(ConfigError, match="invalid api_version 'v2'"):
            parse(_swarm(self._instances(worker)), project_dir)

    def test_main_must_be_claude(self, project_dir):
        instances = {"lead": {"description": "d", "provider": "openai"}}
        with pytest.raises(ConfigError, match="Main instance 'lead' must use the 'claude' provider"):
            parse(_swarm(instances), project_dir)


class TestGraphValidation:
    """Test dangling connections and cycle detection."""

    def test_dangling_connection(self, project_dir):
        instances = {"lead": {"description": "d", "connections": ["ghost"]}}
        with pytest.raises(GraphError, match="Instance 'lead' has connection to unknown instance 'ghost'"):
            parse(_swarm(instances), project_dir)

    def test_self_loop(self, project_dir):
        instances = {"lead": {"description": "d", "connections": ["lead"]}}
        with pytest.raises(GraphError, match="Circular dependency detected: lead -> lead"):
            parse(_swarm(instances), project_dir)

    def test_cycle_reports_path(self, project_dir):
        instances = {
            "lead": {"description": "d", "connections": ["a"]},
            "a": {"description": "d", "connections": ["b"]},
            "b": {"description": "d", "connections": ["c"]},
            "c": {"description": "d", "connections": ["a"]},
        }
        with pytest.raises(GraphError, match="Circular dependency detected: a -> b -> c -> a"):
            parse(_swarm(instances), project_dir)

    def test_diamond_is_not_a_cycle(self, project_dir):
        instances = {
            "lead": {"description": "d", "connections": ["a", "b"]},
            "a": {"description": "d", "connections": ["shared"]},
            "b": {"description": "d", "connections": ["shared"]},
            "shared": {"description": "d"},
        }
        graph = parse(_swarm(instances), project_dir)
        assert graph.instance_names == ["lead", "a", "b", "shared"]

    def test_graph_error_is_config_error(self):
        assert issubclass(GraphError, ConfigError)


def test_with_instances_keeps_graph_fields(project_dir):
    graph = parse(_swarm({"lead": {"description": "d"}}, before=["make"]), project_dir)
    lead = graph.main_instance
    moved = graph.with_instances({"lead": lead})

    assert moved.name == graph.name
    assert moved.before == ("make",)
    assert moved.raw is graph.raw
    assert moved.main_instance == lead
