"""Tests for the coordination engine CLI wrapper."""

import subprocess
from unittest import mock

import pytest

from agent_wake import engine_cli
from agent_wake.engine_cli import (
    AgentInfo,
    DaemonInfo,
    daemon_start,
    daemon_status,
    list_agents,
    parse_agent_list,
    parse_daemon_status,
    select_agent,
)

AGENT_LIST_OUTPUT = """\
ID                ROLE          STATUS    SUPERVISOR    TEAM       MODE
----------------  ------------  --------  ------------  ---------  ---------
coordinator       coordinator   active    -             -          cognitive
backend-dev       developer     idle      coordinator   backend    inbox

Total: 2 agents
"""


@pytest.fixture(autouse=True)
def resolved_binary():
    with mock.patch.dict(engine_cli._resolved, {"agent-engine": "/opt/bin/agent-engine"}):
        yield


def _completed(stdout="", returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


class TestParsing:
    def test_parse_agent_list(self):
        agents = parse_agent_list(AGENT_LIST_OUTPUT)
        assert agents == [
            AgentInfo("coordinator", "coordinator", "active", None, None, "cognitive"),
            AgentInfo("backend-dev", "developer", "idle", "coordinator", "backend", "inbox"),
        ]

    def test_short_rows_are_skipped(self):
        assert parse_agent_list("alpha  dev  active\n") == []

    @pytest.mark.parametrize(
        "output,expected",
        [
            ("Daemon not running\n", DaemonInfo("stopped")),
            ("Daemon pid file is stale\n", DaemonInfo("stale")),
            ("Daemon running (PID 4321)\n", DaemonInfo("running", 4321)),
            ("Daemon running\n", DaemonInfo("running")),
        ],
    )
    def test_parse_daemon_status(self, output, expected):
        assert parse_daemon_status(output) == expected


class TestCommands:
    def test_list_agents_invokes_binary(self):
        with mock.patch("subprocess.run", return_value=_completed(AGENT_LIST_OUTPUT)) as run:
            agents = list_agents("abc123")
        assert [a.id for a in agents] == ["coordinator", "backend-dev"]
        args = run.call_args[0][0]
        assert args == ["/opt/bin/agent-engine", "agent", "list", "--project-hash", "abc123"]

    def test_missing_binary_degrades_to_empty(self):
        with mock.patch("subprocess.run", side_effect=FileNotFoundError):
            assert list_agents("abc123") == []
            assert daemon_status() == DaemonInfo("stopped")
            assert daemon_start() is False

    def test_timeout_degrades(self):
        with mock.patch(
            "subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="x", timeout=5)
        ):
            assert list_agents("abc123") == []

    def test_nonzero_exit_degrades(self):
        with mock.patch("subprocess.run", return_value=_completed("boom", returncode=1)):
            assert select_agent("alpha", "abc123") is False

    def test_select_and_clear(self):
        with mock.patch("subprocess.run", return_value=_completed("ok")) as run:
            assert select_agent("alpha", "abc123") is True
            assert run.call_args[0][0][1:] == [
                "agent",
                "select",
                "alpha",
                "--project-hash",
                "abc123",
            ]
            assert select_agent(None, "abc123") is True
            assert run.call_args[0][0][1:] == ["agent", "select", "--project-hash", "abc123"]

    def test_daemon_start_reports_error_output(self):
        with mock.patch("subprocess.run", return_value=_completed("Error: port in use")):
            assert daemon_start() is False
        with mock.patch("subprocess.run", return_value=_completed("Daemon started")):
            assert daemon_start() is True


def test_resolve_binary_falls_back_to_bare_name(tmp_path):
    with (
        mock.patch.dict(engine_cli._resolved, {}, clear=True),
        mock.patch("shutil.which", return_value=None),
        mock.patch("pathlib.Path.home", return_value=tmp_path),
        mock.patch("pathlib.Path.exists", return_value=False),
    ):
        assert engine_cli.resolve_binary("no-such-engine") == "no-such-engine"
