"""Tests for the session store: layout, event log, costs, state and restore."""

import json
import os
import threading
from datetime import datetime

import pytest

from agentswarm.exceptions import SessionError
from agentswarm.session import paths
from agentswarm.session.costs import (
    calculate_total_cost,
    format_cost,
    parse_instance_hierarchy,
)
from agentswarm.session.event_log import SessionEventLog, read_events
from agentswarm.session.metadata import read_metadata, update_metadata, write_metadata
from agentswarm.session.restore import restore_session
from agentswarm.session.state import load_instance_states, save_instance_state

CONFIG = """\
version: 1
swarm:
  name: "Restorable"
  main: lead
  instances:
    lead:
      description: "Lead"
      directory: ./app
"""


class TestPaths:
    """Test the on-disk session layout."""

    def test_project_folder_name(self):
        assert paths.project_folder_name("/home/user/project") == "home+user+project"

    def test_session_id_format(self):
        assert paths.new_session_id(datetime(2024, 3, 5, 14, 7, 9)) == "20240305_140709"

    def test_generate(self, swarm_home):
        path = paths.generate("/work/repo", "20240101_120000")
        assert path == swarm_home / "sessions" / "work+repo" / "20240101_120000"

    def test_ensure_directory_writes_gitignore(self, swarm_home):
        session = paths.ensure_directory(paths.generate("/work/repo", "s1"))
        assert session.is_dir()
        assert (swarm_home / ".gitignore").read_text() == "*\n"

    def test_ensure_directory_outside_home(self, swarm_home, tmp_path):
        session = paths.ensure_directory(tmp_path / "custom" / "s1")
        assert session.is_dir()
        assert (swarm_home / ".gitignore").is_file()

    def test_from_env(self, monkeypatch, tmp_path):
        with pytest.raises(SessionError, match="AGENTSWARM_SESSION_PATH not set"):
            paths.from_env()
        monkeypatch.setenv("AGENTSWARM_SESSION_PATH", str(tmp_path))
        assert paths.from_env() == tmp_path

    def test_find_session(self, swarm_home, tmp_path):
        session = paths.ensure_directory(paths.generate("/work/repo", "20240101_120000"))
        (session / "config.yml").write_text(CONFIG)

        assert paths.find_session("20240101_120000") == session
        assert paths.find_session(str(session)) == session.resolve()
        assert paths.find_session("19990101_000000") is None

    def test_find_session_prefers_run_symlink(self, swarm_home, tmp_path):
        session = tmp_path / "elsewhere" / "s42"
        session.mkdir(parents=True)
        (session / "config.yml").write_text(CONFIG)
        paths.run_dir().mkdir(parents=True)
        (paths.run_dir() / "s42").symlink_to(session)

        assert paths.find_session("s42") == session


class TestEventLog:
    """Test the shared JSONL event log."""

    def test_entry_shape(self, tmp_path):
        log = SessionEventLog(tmp_path, "worker", "worker_1", "lead", "lead_1")
        entry = log.append({"type": "assistant", "text": "hi"})

        assert entry["instance"] == "worker"
        assert entry["instance_id"] == "worker_1"
        assert entry["calling_instance"] == "lead"
        assert entry["calling_instance_id"] == "lead_1"
        assert entry["event"] == {"type": "assistant", "text": "hi"}
        datetime.fromisoformat(entry["timestamp"])
        assert read_events(tmp_path / "session.log.json") == [entry]

    def test_request_and_response(self, tmp_path):
        log = SessionEventLog(tmp_path, "worker", "worker_1", "lead", "lead_1")
        request = log.log_request("do it", description="task")["event"]
        response = log.log_response("done", cost_usd=0.5)["event"]

        assert request == {
            "type": "request",
            "from_instance": "lead",
            "from_instance_id": "lead_1",
            "to_instance": "worker",
            "to_instance_id": "worker_1",
            "prompt": "do it",
            "description": "task",
        }
        assert response["type"] == "response"
        assert response["from_instance"] == "worker"
        assert response["to_instance"] == "lead"
        assert response["result"] == "done"
        assert response["cost_usd"] == 0.5

    def test_error(self, tmp_path):
        log = SessionEventLog(tmp_path, "worker", "worker_1", "lead", "lead_1")
        event = log.log_error(ValueError("no luck"))["event"]

        assert event["type"] == "error"
        assert event["from_instance"] == "worker"
        assert event["to_instance_id"] == "lead_1"
        assert event["error"] == {"class": "ValueError", "message": "no luck"}

    def test_concurrent_appends_stay_line_atomic(self, tmp_path):
        log = SessionEventLog(tmp_path, "worker", "worker_1")

        def write_many(n):
            for i in range(50):
                log.append({"type": "tick", "writer": n, "i": i, "pad": "x" * 512})

        threads = [threading.Thread(target=write_many, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        lines = (tmp_path / "session.log.json").read_text().splitlines()
        assert len(lines) == 200
        assert all(json.loads(line)["event"]["type"] == "tick" for line in lines)

    def test_read_events_skips_bad_lines(self, tmp_path):
        path = tmp_path / "session.log.json"
        path.write_text('{"a": 1}\nnot json\n\n{"b": 2}\n')
        assert read_events(path) == [{"a": 1}, {"b": 2}]
        assert read_events(tmp_path / "missing.json") == []


def _entry(instance, instance_id, event, caller=None, caller_id=None):
    return json.dumps(
        {
            "instance": instance,
            "instance_id": instance_id,
            "calling_instance": caller,
            "calling_instance_id": caller_id,
            "timestamp": "2024-01-01T00:00:00+00:00",
            "event": event,
        }
    )


@pytest.fixture
def event_log_file(tmp_path):
    path = tmp_path / "session.log.json"
    path.write_text(
        "\n".join(
            [
                _entry("worker", "worker_1", {"type": "request", "prompt": "go"}, "lead", "lead_1"),
                _entry("worker", "worker_1", {"type": "result", "total_cost_usd": 0.25}, "lead", "lead_1"),
                _entry("helper", "helper_1", {"type": "result", "total_cost_usd": 0.1}, "worker", "worker_1"),
                _entry("worker", "worker_1", {"type": "result", "total_cost_usd": 0.5}, "lead", "lead_1"),
                _entry("reviewer", "reviewer_1", {"type": "result", "result": "ok"}, "lead", "lead_1"),
                "garbage line",
            ]
        )
        + "\n"
    )
    return path


class TestCosts:
    """Test cost totals and the call hierarchy replay."""

    def test_total_cost(self, event_log_file):
        summary = calculate_total_cost(event_log_file)
        assert summary.total_cost == pytest.approx(0.85)
        assert summary.instances_with_cost == {"worker", "helper"}

    def test_missing_log(self, tmp_path):
        assert calculate_total_cost(tmp_path / "none.json").total_cost == 0.0
        assert parse_instance_hierarchy(tmp_path / "none.json") == {}

    def test_hierarchy(self, event_log_file):
        instances = parse_instance_hierarchy(event_log_file)

        assert list(instances) == ["worker", "lead", "helper", "reviewer"]
        worker = instances["worker"]
        assert worker.calls == 2
        assert worker.cost == pytest.approx(0.75)
        assert worker.called_by == {"lead"}
        assert worker.calls_to == {"helper"}

        lead = instances["lead"]
        assert lead.id == "lead_1"
        assert lead.calls == 0
        assert not lead.has_cost_data
        assert lead.calls_to == {"worker", "reviewer"}

        reviewer = instances["reviewer"]
        assert reviewer.calls == 1
        assert not reviewer.has_cost_data

    def test_format_cost(self):
        assert format_cost(1.23456) == "$1.2346"
        assert format_cost(0) == "$0.0000"


class TestStateAndMetadata:
    def test_save_and_load_states(self, tmp_path):
        save_instance_state(tmp_path, "worker", "worker_1", "abc")
        save_instance_state(tmp_path, "worker", "worker_1", "def")
        save_instance_state(tmp_path, "helper", "helper_1", None)
        (tmp_path / "state" / "broken.json").write_text("{")

        states = load_instance_states(tmp_path)
        assert set(states) == {"worker", "helper"}
        assert states["worker"]["claude_session_id"] == "def"
        assert states["worker"]["status"] == "active"
        assert states["helper"]["claude_session_id"] is None

    def test_metadata_round_trip(self, tmp_path):
        assert read_metadata(tmp_path) == {}
        write_metadata(tmp_path, {"session_id": "s1"})
        merged = update_metadata(tmp_path, end_time="later")
        assert merged == {"session_id": "s1", "end_time": "later"}
        assert read_metadata(tmp_path) == merged

    def test_corrupt_metadata_reads_empty(self, tmp_path):
        (tmp_path / "session_metadata.json").write_text("{oops")
        assert read_metadata(tmp_path) == {}


class TestRestore:
    """Test locating and re-deriving a stored session."""

    def _stored_session(self, tmp_path, worktree=None):
        start = tmp_path / "start"
        (start / "app").mkdir(parents=True)
        session = paths.ensure_directory(paths.generate(start, "20240101_120000"))
        (session / "config.yml").write_text(CONFIG)
        (session / "start_directory").write_text(str(start))
        (session / "lead.mcp.json").write_text("{}")
        metadata = {"session_id": "20240101_120000"}
        if worktree:
            metadata["worktree"] = worktree
        write_metadata(session, metadata)
        return session, start

    def test_restore_by_id(self, tmp_path, project_dir):
        session, start = self._stored_session(tmp_path)
        restored = restore_session("20240101_120000")

        assert restored.path == session
        assert restored.session_id == "20240101_120000"
        assert restored.start_directory == start
        assert restored.graph.main_instance.directory == str((start / "app").resolve())
        assert restored.worktree_name is None
        assert os.getcwd() == str(start)

    def test_restore_without_chdir(self, tmp_path, project_dir):
        self._stored_session(tmp_path)
        restore_session("20240101_120000", change_directory=False)
        assert os.getcwd() == str(project_dir)

    def test_worktree_name_from_metadata(self, tmp_path, project_dir):
        self._stored_session(tmp_path, worktree={"enabled": True, "shared_name": "feature"})
        restored = restore_session("20240101_120000", change_directory=False)
        assert restored.worktree_name == "feature"

    def test_unknown_session(self):
        with pytest.raises(SessionError, match="Session not found: nope"):
            restore_session("nope")

    def test_session_without_manifests(self, tmp_path, project_dir):
        session, _ = self._stored_session(tmp_path)
        (session / "lead.mcp.json").unlink()
        with pytest.raises(SessionError, match="No MCP configuration files found"):
            restore_session("20240101_120000")

    def test_start_directory_gone(self, tmp_path, project_dir):
        session, start = self._stored_session(tmp_path)
        (session / "start_directory").write_text(str(tmp_path / "deleted"))
        with pytest.raises(SessionError, match="Original directory no longer exists"):
            restore_session("20240101_120000")
