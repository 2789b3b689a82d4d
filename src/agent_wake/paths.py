# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto
"""Filesystem layout shared with the coordination engine."""

import hashlib
import os
import sys
from pathlib import Path

PROJECT_HASH_LEN = 12


def data_dir() -> Path:
    """Per-user data directory, overridable with AGENT_WAKE_DATA_DIR."""
    override = os.environ.get("AGENT_WAKE_DATA_DIR")
    if override:
        return Path(override)

    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "agent-wake"
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA") or home / "AppData" / "Roaming") / "agent-wake"
    return Path(os.environ.get("XDG_CONFIG_HOME") or home / ".config") / "agent-wake"


def projects_dir(base: Path) -> Path:
    return base / "projects"


def project_dir(base: Path, project_hash: str) -> Path:
    return projects_dir(base) / project_hash


def wake_signals_dir(base: Path) -> Path:
    return base / "wake_signals"


def engine_pid_path(base: Path) -> Path:
    """Pid file of the coordination engine daemon."""
    return base / "daemon.pid"


def wake_daemon_pid_path(base: Path) -> Path:
    """Pid file of this wake daemon."""
    return base / "wake_daemon.pid"


def status_path(base: Path) -> Path:
    return base / "wake_status.json"


def metrics_path(base: Path) -> Path:
    return base / "metrics.prom"


def session_agents_dir(base: Path, project_hash: str) -> Path:
    """One plaintext file per active client session, each holding an agent id."""
    return project_dir(base, project_hash) / "session_agents"


def legacy_session_agent_path(base: Path, project_hash: str) -> Path:
    return project_dir(base, project_hash) / "session_agent"


def log_dir() -> Path:
    return Path.home() / ".local/share/agent-wake"


def project_hash(canonical_path: str) -> str:
    """SHA-256 of the canonical workspace path, first 12 hex chars."""
    return hashlib.sha256(canonical_path.encode("utf-8")).hexdigest()[:PROJECT_HASH_LEN]


def resolve_project_hash(workspace: Path | str) -> str | None:
    """Hash a workspace folder after resolving symlinks; None if it does not exist."""
    try:
        canonical = os.path.realpath(workspace, strict=True)
    except OSError:
        return None
    return project_hash(canonical)


def control_path(base: Path) -> Path:
    """Runtime toggles (pause, mode, auto-prompt) read by the running daemon."""
    return base / "wake_control.json"
