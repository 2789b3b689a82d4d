# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto
"""Thin wrapper around the coordination engine's command line.

The engine CLI is not ours; its output is parsed defensively. A missing
binary, a non-zero exit, a timeout or unexpected output all degrade to an
empty result or False.
"""

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

DEFAULT_BINARY = "agent-engine"
LIST_TIMEOUT = 5
STATUS_TIMEOUT = 3

_PID_PATTERN = re.compile(r"PID\s+(\d+)")
_COLUMN_SPLIT = re.compile(r"\s{2,}")

_resolved: dict[str, str] = {}


@dataclass(frozen=True)
class AgentInfo:
    id: str
    role: str
    status: str
    supervisor: str | None
    team: str | None
    mode: str


@dataclass(frozen=True)
class DaemonInfo:
    status: str  # running | stopped | stale
    pid: int | None = None


def resolve_binary(name: str = DEFAULT_BINARY) -> str:
    """Locate the engine binary: PATH, ~/.local/bin, /usr/local/bin, else bare name."""
    if name in _resolved:
        return _resolved[name]

    found = shutil.which(name)
    if not found:
        for candidate in (Path.home() / ".local/bin" / name, Path("/usr/local/bin") / name):
            if candidate.exists():
                found = str(candidate)
                break
    _resolved[name] = found or name
    return _resolved[name]


def _run(args: list[str], binary: str, timeout: float) -> str | None:
    try:
        result = subprocess.run(
            [resolve_binary(binary), *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as e:
        log.debug(f"{binary} {' '.join(args)} failed: {e}")
        return None
    if result.returncode != 0:
        log.debug(f"{binary} {' '.join(args)} exited {result.returncode}")
        return None
    return result.stdout


def _dash_to_none(value: str) -> str | None:
    return None if value == "-" else value


def parse_agent_list(output: str) -> list[AgentInfo]:
    """Parse ``agent list`` table output (columns separated by 2+ spaces)."""
    agents = []
    for line in output.splitlines():
        if (
            not line.strip()
            or line.startswith("ID")
            or line.startswith("-")
            or "Total:" in line
        ):
            continue
        parts = _COLUMN_SPLIT.split(line.strip())
        if len(parts) < 6:
            continue
        agents.append(
            AgentInfo(
                id=parts[0],
                role=parts[1],
                status=parts[2],
                supervisor=_dash_to_none(parts[3]),
                team=_dash_to_none(parts[4]),
                mode=parts[5],
            )
        )
    return agents


def list_agents(project_hash: str, binary: str = DEFAULT_BINARY) -> list[AgentInfo]:
    output = _run(["agent", "list", "--project-hash", project_hash], binary, LIST_TIMEOUT)
    if output is None:
        return []
    return parse_agent_list(output)


def select_agent(agent_id: str | None, project_hash: str, binary: str = DEFAULT_BINARY) -> bool:
    """Bind the project session to an agent; None clears the binding."""
    args = ["agent", "select"]
    if agent_id:
        args.append(agent_id)
    args += ["--project-hash", project_hash]
    return _run(args, binary, LIST_TIMEOUT) is not None


def parse_daemon_status(output: str) -> DaemonInfo:
    if "not running" in output:
        return DaemonInfo("stopped")
    if "stale" in output:
        return DaemonInfo("stale")
    match = _PID_PATTERN.search(output)
    return DaemonInfo("running", int(match.group(1)) if match else None)


def daemon_status(binary: str = DEFAULT_BINARY) -> DaemonInfo:
    output = _run(["daemon", "status"], binary, STATUS_TIMEOUT)
    if output is None:
        return DaemonInfo("stopped")
    return parse_daemon_status(output)


def daemon_start(binary: str = DEFAULT_BINARY) -> bool:
    output = _run(["daemon", "start"], binary, LIST_TIMEOUT)
    if output is None:
        return False
    return "error" not in output.lower()
