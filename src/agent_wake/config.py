# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto
"""Configuration for the wake daemon.

Values resolve in order: environment variable, then the JSON config file
(~/.config/agent-wake/config.json), then the built-in default.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from agent_wake import paths

log = logging.getLogger(__name__)

CONFIG_DIR = Path(os.environ.get("AGENT_WAKE_CONFIG_DIR", Path.home() / ".config/agent-wake"))
CONFIG_FILE = Path(os.environ.get("AGENT_WAKE_CONFIG", CONFIG_DIR / "config.json"))

_TRUE_VALUES = ("1", "true", "yes", "on")


def _load_config_file() -> dict:
    """Load the JSON config file. Missing or invalid files yield {}."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        data = json.loads(CONFIG_FILE.read_text())
    except (json.JSONDecodeError, OSError) as e:
        log.warning(f"Failed to load config file {CONFIG_FILE}: {e}")
        return {}
    if not isinstance(data, dict):
        log.warning(f"Ignoring config file {CONFIG_FILE}: top level is not an object")
        return {}
    return data


def _coerce(value: Any, value_type: type) -> Any:
    if value_type is bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_VALUES
    if value_type is list:
        if isinstance(value, list):
            return [str(v) for v in value]
        return [part for part in str(value).split(",") if part]
    return value_type(value)


def _get_config_value(
    env_var: str, path: list[str], default: Any, config: dict, value_type: type = str
) -> Any:
    """Resolve one setting: env var > nested config path > default."""
    raw = os.environ.get(env_var)
    if raw is not None:
        try:
            return _coerce(raw, value_type)
        except ValueError:
            log.warning(f"Invalid value for {env_var}: {raw!r}, using default")
            return default

    node: Any = config
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    if node is None:
        return default
    try:
        return _coerce(node, value_type)
    except (TypeError, ValueError):
        log.warning(f"Invalid config value at {'.'.join(path)}: {node!r}, using default")
        return default


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    workspace: Path | None
    target_signature: str = "claude"
    activity_markers: tuple[str, ...] = ('"stream_event"', '"assistant"')
    poll_interval: float = 1.0
    idle_threshold: float = 3.0
    debounce: float = 10.0
    idle_check_interval: float = 1.0
    max_attempts: int = 3
    max_retry_rounds: int = 5
    retry_backoff: float = 15.0
    cooldown: float = 10.0
    signal_ttl: float = 300.0
    sweep_interval: float = 60.0
    startup_grace: float = 3.0
    auto_prompt: bool = True
    communication_mode: str = "cognitive"
    default_agent: str | None = None
    engine_bin: str = "agent-engine"
    auto_start_engine: bool = True
    target_command: tuple[str, ...] = ()
    log_level: str = "INFO"
    metrics_interval: float = 30.0


def load_settings(config: dict | None = None) -> Settings:
    """Build Settings from env vars, the config file and defaults."""
    if config is None:
        config = _load_config_file()

    def get(env_var, path, default, value_type=str):
        return _get_config_value(env_var, path, default, config, value_type)

    workspace = get("AGENT_WAKE_WORKSPACE", ["workspace"], str(Path.cwd()))
    mode = get("AGENT_WAKE_MODE", ["communication_mode"], "cognitive")
    if mode not in ("cognitive", "inbox"):
        log.warning(f"Unknown communication mode {mode!r}, using cognitive")
        mode = "cognitive"

    return Settings(
        data_dir=paths.data_dir(),
        workspace=Path(workspace) if workspace else None,
        target_signature=get("AGENT_WAKE_TARGET_SIGNATURE", ["target", "signature"], "claude"),
        activity_markers=tuple(
            get(
                "AGENT_WAKE_ACTIVITY_MARKERS",
                ["target", "activity_markers"],
                ['"stream_event"', '"assistant"'],
                list,
            )
        ),
        target_command=tuple(get("AGENT_WAKE_TARGET_COMMAND", ["target", "command"], [], list)),
        poll_interval=get("AGENT_WAKE_POLL_INTERVAL", ["poll_interval"], 1.0, float),
        idle_threshold=get("AGENT_WAKE_IDLE_THRESHOLD", ["delivery", "idle_threshold"], 3.0, float),
        debounce=get("AGENT_WAKE_DEBOUNCE", ["delivery", "debounce"], 10.0, float),
        idle_check_interval=get(
            "AGENT_WAKE_IDLE_CHECK_INTERVAL", ["delivery", "idle_check_interval"], 1.0, float
        ),
        max_attempts=get("AGENT_WAKE_MAX_ATTEMPTS", ["delivery", "max_attempts"], 3, int),
        max_retry_rounds=get(
            "AGENT_WAKE_MAX_RETRY_ROUNDS", ["delivery", "max_retry_rounds"], 5, int
        ),
        retry_backoff=get("AGENT_WAKE_RETRY_BACKOFF", ["delivery", "retry_backoff"], 15.0, float),
        cooldown=get("AGENT_WAKE_COOLDOWN", ["delivery", "cooldown"], 10.0, float),
        signal_ttl=get("AGENT_WAKE_SIGNAL_TTL", ["signals", "ttl"], 300.0, float),
        sweep_interval=get("AGENT_WAKE_SWEEP_INTERVAL", ["signals", "sweep_interval"], 60.0, float),
        startup_grace=get("AGENT_WAKE_STARTUP_GRACE", ["startup_grace"], 3.0, float),
        auto_prompt=get("AGENT_WAKE_AUTO_PROMPT", ["auto_prompt"], True, bool),
        communication_mode=mode,
        default_agent=get("AGENT_WAKE_DEFAULT_AGENT", ["default_agent"], "") or None,
        engine_bin=get("AGENT_WAKE_ENGINE_BIN", ["engine", "binary"], "agent-engine"),
        auto_start_engine=get("AGENT_WAKE_AUTO_START_ENGINE", ["engine", "auto_start"], True, bool),
        log_level=get("AGENT_WAKE_LOG_LEVEL", ["log_level"], "INFO").upper(),
        metrics_interval=get("AGENT_WAKE_METRICS_INTERVAL", ["metrics_interval"], 30.0, float),
    )
