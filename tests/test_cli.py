"""CLI tests using Typer's CliRunner."""

import json
import os
import time
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from agentswarm import __version__
from agentswarm.main import app, normalize_worktree_flag
from agentswarm.session import paths
from agentswarm.session.metadata import write_metadata
from conftest import strip_ansi

runner = CliRunner()

CONFIG = """\
version: 1
swarm:
  name: "CLI Team"
  main: lead
  instances:
    lead:
      description: "Lead"
      connections: [worker]
    worker:
      description: "Worker"
"""


def _output(result):
    return strip_ansi(result.output)


def _make_session(session_id="20240101_120000", active=False, events=()):
    session = paths.ensure_directory(paths.generate("/work/project", session_id))
    (session / "config.yml").write_text(CONFIG)
    (session / "lead.mcp.json").write_text("{}")
    (session / "worker.mcp.json").write_text("{}")
    (session / "start_directory").write_text("/work/project")
    write_metadata(session, {"session_id": session_id, "start_time": "2024-01-01T12:00:00+00:00"})
    with open(session / "session.log.json", "w") as f:
        for event in events:
            f.write(json.dumps(event) + "\n")
    if active:
        paths.run_dir().mkdir(parents=True, exist_ok=True)
        (paths.run_dir() / session_id).symlink_to(session)
    return session


WORKER_RESULT = {
    "instance": "worker",
    "instance_id": "worker_1",
    "calling_instance": "lead",
    "calling_instance_id": "lead_1",
    "event": {"type": "result", "total_cost_usd": 0.5},
}


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        output = _output(result)
        for command in ("start", "init", "ps", "show", "list-sessions", "watch", "clean", "version"):
            assert command in output

    def test_internal_commands_are_hidden(self):
        result = runner.invoke(app, ["--help"])
        assert "serve" not in _output(result).split()

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"agentswarm version {__version__}" in result.output


class TestInit:
    def test_creates_config(self, project_dir):
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0
        assert "Created agentswarm.yml" in _output(result)
        assert "lead_developer" in (project_dir / "agentswarm.yml").read_text()

    def test_refuses_to_overwrite(self, project_dir):
        (project_dir / "agentswarm.yml").write_text("mine")
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 1
        assert "already exists" in _output(result)
        assert (project_dir / "agentswarm.yml").read_text() == "mine"

    def test_force(self, project_dir):
        (project_dir / "agentswarm.yml").write_text("mine")
        result = runner.invoke(app, ["init", "--force"])
        assert result.exit_code == 0
        assert (project_dir / "agentswarm.yml").read_text() != "mine"

    def test_template_is_a_valid_swarm(self, project_dir):
        from agentswarm.config.configuration import load

        runner.invoke(app, ["init"])
        graph = load(project_dir / "agentswarm.yml")
        assert graph.main == "lead_developer"


class TestPs:
    def test_no_sessions(self):
        result = runner.invoke(app, ["ps"])
        assert result.exit_code == 0
        assert "No active sessions" in _output(result)

    def test_active_session(self):
        _make_session(active=True, events=[WORKER_RESULT])
        _make_session("20240102_090000")
        result = runner.invoke(app, ["ps"])

        output = _output(result)
        assert result.exit_code == 0
        assert "20240101_120000" in output
        assert "20240102_090000" not in output
        assert "CLI Team" in output
        assert "$0.5000" in output

    def test_stale_symlink_is_ignored(self, tmp_path):
        paths.run_dir().mkdir(parents=True)
        (paths.run_dir() / "dead").symlink_to(tmp_path / "gone")
        result = runner.invoke(app, ["ps"])
        assert "No active sessions" in _output(result)


class TestShow:
    def test_missing_session(self):
        result = runner.invoke(app, ["show", "nope"])
        assert result.exit_code == 1
        assert "Session not found: nope" in _output(result)

    def test_hierarchy(self):
        _make_session(events=[WORKER_RESULT])
        result = runner.invoke(app, ["show", "20240101_120000"])

        output = _output(result)
        assert result.exit_code == 0
        assert "Session: 20240101_120000" in output
        assert "Swarm: CLI Team" in output
        assert "Total Cost: $0.5000 (excluding main instance)" in output
        assert "Start Directory: /work/project" in output
        assert "lead [main] (lead_1)" in output
        assert "n/a (interactive)" in output
        assert "worker (worker_1)" in output
        assert "Calls: 1" in output


class TestListSessions:
    def test_empty(self):
        result = runner.invoke(app, ["list-sessions"])
        assert result.exit_code == 0
        assert "No sessions found" in _output(result)

    def test_lists_sessions(self):
        _make_session()
        result = runner.invoke(app, ["list-sessions"])

        output = _output(result)
        assert "work+project/20240101_120000" in output
        assert "Main: lead" in output
        assert "Instances: 2" in output
        assert "agentswarm start --session-id" in output

    def test_limit(self):
        _make_session("20240101_120000")
        _make_session("20240102_120000")
        result = runner.invoke(app, ["list-sessions", "--limit", "1"])
        assert _output(result).count("Swarm: CLI Team") == 1


class TestWatch:
    def test_missing_log(self):
        _make_session()
        result = runner.invoke(app, ["watch", "20240101_120000"])
        assert result.exit_code == 1
        assert "Log file not found" in _output(result)

    def test_prints_tail_then_follows(self):
        session = _make_session()
        (session / "session.log").write_text("".join(f"line {i}\n" for i in range(10)))

        stop = MagicMock()
        stop.wait.side_effect = KeyboardInterrupt
        with patch("agentswarm.commands.sessions.LogTail") as tail_cls, patch(
            "agentswarm.commands.sessions.threading.Event", return_value=stop
        ):
            result = runner.invoke(app, ["watch", "20240101_120000", "-n", "3"])

        assert result.exit_code == 0
        assert result.output == "line 7\nline 8\nline 9\n"
        tail = tail_cls.return_value
        assert tail.position == len("".join(f"line {i}\n" for i in range(10)))
        tail.start.assert_called_once()
        tail.stop.assert_called_once()


class TestClean:
    def test_nothing_to_clean(self):
        result = runner.invoke(app, ["clean"])
        assert result.exit_code == 0
        assert "No cleanup needed" in _output(result)

    def test_removes_stale_symlinks_and_orphaned_worktrees(self, tmp_path):
        paths.run_dir().mkdir(parents=True)
        (paths.run_dir() / "dead").symlink_to(tmp_path / "gone")

        orphan = paths.worktrees_dir() / "19990101_000000"
        (orphan / "repo-abcd1234" / "feature").mkdir(parents=True)
        old = time.time() - 30 * 86_400
        os.utime(orphan, (old, old))

        result = runner.invoke(app, ["clean", "--days", "7"])

        output = _output(result)
        assert result.exit_code == 0
        assert "Cleaned 1 stale symlink" in output
        assert "Cleaned 1 orphaned worktree" in output
        assert not orphan.exists()

    def test_keeps_worktrees_of_existing_sessions(self):
        _make_session()
        kept = paths.worktrees_dir() / "20240101_120000" / "repo-abcd1234" / "feature"
        kept.mkdir(parents=True)
        old = time.time() - 30 * 86_400
        os.utime(kept.parents[1], (old, old))

        runner.invoke(app, ["clean"])
        assert kept.exists()


class TestStart:
    """Test the start command's argument handling."""

    def test_missing_config(self, project_dir):
        result = runner.invoke(app, ["start"])
        assert result.exit_code == 1
        assert "Configuration file not found" in _output(result)

    def test_stream_logs_requires_prompt(self, project_dir):
        result = runner.invoke(app, ["start", "--stream-logs"])
        assert result.exit_code == 1
        assert "--stream-logs can only be used with -p/--prompt" in _output(result)

    def test_invalid_config(self, write_config):
        write_config("version: 2\nswarm: {}\n")
        result = runner.invoke(app, ["start"])
        assert result.exit_code == 1
        assert "Unsupported version: 2" in _output(result)

    @patch("agentswarm.commands.swarm.Orchestrator")
    def test_starts_orchestrator(self, orchestrator_cls, write_config, project_dir):
        write_config(CONFIG, name="team.yml")
        orchestrator_cls.return_value.start.return_value = 4

        result = runner.invoke(app, ["start", "team.yml", "--vibe", "-p", "Ship it", "-w", "feature"])

        assert result.exit_code == 4
        graph = orchestrator_cls.call_args[0][0]
        assert graph.name == "CLI Team"
        assert graph.main_instance.directory == str(project_dir.resolve())
        kwargs = orchestrator_cls.call_args[1]
        assert kwargs["vibe"] is True
        assert kwargs["prompt"] == "Ship it"
        assert kwargs["worktree"] == "feature"

    @patch("agentswarm.commands.swarm.Orchestrator")
    @patch("agentswarm.commands.swarm.restore_session")
    def test_resume_session(self, mock_restore, orchestrator_cls, project_dir):
        restored = MagicMock()
        restored.worktree_name = "shared"
        mock_restore.return_value = restored
        orchestrator_cls.return_value.start.return_value = 0

        result = runner.invoke(app, ["start", "--session-id", "20240101_120000"])

        assert result.exit_code == 0
        mock_restore.assert_called_once_with("20240101_120000")
        kwargs = orchestrator_cls.call_args[1]
        assert kwargs["restore_session_path"] == restored.path
        assert kwargs["worktree"] == "shared"


class TestNormalizeWorktreeFlag:
    @pytest.mark.parametrize(
        "argv, expected",
        [
            (["start", "-w"], ["start", "-w", ""]),
            (["start", "--worktree", "--vibe"], ["start", "--worktree", "", "--vibe"]),
            (["start", "--worktree", "feature"], ["start", "--worktree", "feature"]),
            (["show", "-w"], ["show", "-w"]),
            ([], []),
        ],
    )
    def test_normalize(self, argv, expected):
        assert normalize_worktree_flag(argv) == expected
