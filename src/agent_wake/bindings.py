# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto
"""Discover which agents are bound to client sessions in this workspace.

All sources are merged as a union, so several simultaneously open sessions
bound to different agents are all serviced:

1. AGENT_WAKE_AGENT environment override
2. one plaintext file per active session under ``session_agents/``
3. the legacy global ``session_agent`` file
4. ``--agent-id`` arguments of agent-engine MCP servers in ``.mcp.json``
5. the configured static default
"""

import json
import logging
import os
import re
from pathlib import Path

from agent_wake import paths

log = logging.getLogger(__name__)

AGENT_ENV_VAR = "AGENT_WAKE_AGENT"
MCP_CONFIG_FILE = ".mcp.json"
MCP_SERVER_PREFIX = "agent-engine"
_AGENT_ID_ARG = re.compile(r"--agent-id[=\s](\S+)")


def _read_agent_file(path: Path) -> str | None:
    try:
        content = path.read_text().strip()
    except (OSError, UnicodeDecodeError):
        return None
    return content or None


def list_session_agents(data_dir: Path, project_hash: str) -> list[str]:
    """Agent ids bound to active sessions (one file per session)."""
    directory = paths.session_agents_dir(data_dir, project_hash)
    try:
        files = sorted(p for p in directory.iterdir() if p.is_file())
    except OSError:
        return []
    agents = []
    for path in files:
        agent_id = _read_agent_file(path)
        if agent_id and agent_id not in agents:
            agents.append(agent_id)
    return agents


def read_legacy_session_agent(data_dir: Path, project_hash: str) -> str | None:
    return _read_agent_file(paths.legacy_session_agent_path(data_dir, project_hash))


def agent_from_mcp_config(workspace: Path | None) -> str | None:
    """Find ``--agent-id X`` in the args of an agent-engine MCP server entry."""
    if workspace is None:
        return None
    try:
        config = json.loads((Path(workspace) / MCP_CONFIG_FILE).read_text())
    except (OSError, json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(config, dict):
        return None

    servers = config.get("mcpServers") or config.get("servers") or {}
    if not isinstance(servers, dict):
        return None
    for name, server in servers.items():
        if not name.startswith(MCP_SERVER_PREFIX) or not isinstance(server, dict):
            continue
        args = server.get("args") or []
        joined = " ".join(str(a) for a in args)
        match = _AGENT_ID_ARG.search(joined)
        if match:
            return match.group(1)
    return None


def detect_bound_agents(
    data_dir: Path,
    project_hash: str | None,
    workspace: Path | None = None,
    default_agent: str | None = None,
) -> list[str]:
    """Union of all binding sources, in discovery order, without duplicates."""
    found: list[str] = []

    def add(agent_id: str | None) -> None:
        if agent_id and agent_id not in found:
            found.append(agent_id)

    add(os.environ.get(AGENT_ENV_VAR, "").strip())
    if project_hash:
        for agent_id in list_session_agents(data_dir, project_hash):
            add(agent_id)
        add(read_legacy_session_agent(data_dir, project_hash))
    add(agent_from_mcp_config(workspace))
    add(default_agent)
    return found
