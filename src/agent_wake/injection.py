# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto
"""Stdin injection into agent CLI processes.

Target resolution is PID based: the agent's heartbeat file names the CLI
process it runs in. Without a usable heartbeat, delivery falls back to the
only monitored process, and only when exactly one exists. With several
candidates and no heartbeat nothing is injected, since a wrong guess would
hand one agent's message to another.

Wire protocol: one JSON object per line, in the CLI's stream-json input
format::

    {"type":"user","session_id":"","message":{"role":"user",
     "content":[{"type":"text","text":"..."}]},"parent_tool_use_id":null}
"""

import io
import json
import logging
import time
from collections.abc import Callable
from pathlib import Path

from agent_wake.metrics import metrics
from agent_wake.processes import IdleOracle, ProcessRegistry, is_alive, is_writable

log = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 10.0
HEARTBEAT_FILE = "beat.json"


# =============================================================================
# Payload Building
# =============================================================================


def build_prompt_text(agent_id: str, from_agent: str, message: str, mode: str) -> str:
    """Render the wake prompt for the given communication mode."""
    if mode == "cognitive":
        return (
            f"[automated cognitive wake for {agent_id}] "
            f'You have pending cognitive messages from "{from_agent}" about: "{message}". '
            "Check your cognitive inbox context above and respond to the message. "
            "Use ai_msg_ack to acknowledge after processing."
        )
    return (
        f"[automated inbox wake for {agent_id}] "
        f'You have a message from "{from_agent}": "{message}". '
        "Call msg_inbox to read your pending messages and reply."
    )


def build_payload(text: str) -> str:
    """Serialize text as one newline-terminated stream-json user record."""
    record = {
        "type": "user",
        "session_id": "",
        "message": {
            "role": "user",
            "content": [{"type": "text", "text": text}],
        },
        "parent_tool_use_id": None,
    }
    return json.dumps(record) + "\n"


# =============================================================================
# PID Resolution
# =============================================================================


class PidResolver:
    """Map an agent to the process it lives in."""

    def __init__(self, registry: ProcessRegistry, oracle: IdleOracle, projects_dir: Path):
        self.registry = registry
        self.oracle = oracle
        self.projects_dir = Path(projects_dir)

    def heartbeat_path(self, scope_key: str, agent_id: str) -> Path:
        return self.projects_dir / scope_key / "agents" / agent_id / HEARTBEAT_FILE

    def read_heartbeat_pid(self, scope_key: str | None, agent_id: str) -> int | None:
        if not scope_key:
            return None
        try:
            beat = json.loads(self.heartbeat_path(scope_key, agent_id).read_text())
        except (OSError, json.JSONDecodeError, UnicodeDecodeError):
            return None
        if not isinstance(beat, dict):
            return None
        pid = beat.get("cli_pid") or beat.get("pid")
        if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
            return None
        return pid

    def _usable(self, proc, require_idle: bool) -> bool:
        if not is_alive(proc) or not is_writable(proc):
            return False
        return not require_idle or self.oracle.is_idle(proc.pid)

    def resolve(self, scope_key: str | None, agent_id: str, require_idle: bool = True):
        """Return the agent's target process, or None if it cannot be pinned down."""
        pid = self.read_heartbeat_pid(scope_key, agent_id)
        if pid is not None:
            proc = self.registry.find(pid)
            if proc is not None:
                if self._usable(proc, require_idle):
                    return proc
                log.debug(f"Process {pid} for {agent_id} is busy or closed")
                return None
            log.debug(f"Heartbeat pid {pid} for {agent_id} is not a monitored process")

        candidates = self.registry.candidates()
        if len(candidates) == 1 and self._usable(candidates[0], require_idle):
            return candidates[0]
        if len(candidates) > 1:
            log.debug(
                f"{len(candidates)} candidate processes and no heartbeat for {agent_id}, "
                "not guessing"
            )
        return None


# =============================================================================
# Injection
# =============================================================================


class InjectionEngine:
    """Writes payloads to process stdin, gated by idleness and per-agent debounce."""

    def __init__(
        self,
        oracle: IdleOracle,
        debounce: float = DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.oracle = oracle
        self.debounce = debounce
        self._clock = clock
        self._last_injection: dict[str, float] = {}

    def is_debounced(self, agent_id: str) -> bool:
        last = self._last_injection.get(agent_id)
        if last is None:
            return False
        return self._clock() - last < self.debounce

    def last_injection(self, agent_id: str) -> float | None:
        return self._last_injection.get(agent_id)

    def attempt(self, agent_id: str, proc, payload: str, skip_idle_check: bool = False) -> bool:
        """Single non-blocking injection attempt. Never raises."""
        if self.is_debounced(agent_id):
            log.debug(f"Injection for {agent_id} debounced")
            return False
        if proc is None or not is_alive(proc) or not is_writable(proc):
            return False
        if not skip_idle_check and not self.oracle.is_idle(proc.pid):
            return False

        # Popen(text=True) hands out a text stream
        data = payload if isinstance(proc.stdin, io.TextIOBase) else payload.encode("utf-8")
        try:
            proc.stdin.write(data)
            proc.stdin.flush()
        except (BrokenPipeError, OSError, ValueError, TypeError) as e:
            log.warning(f"Injection into process {proc.pid} for {agent_id} failed: {e}")
            metrics.inc("agent_wake_injections_failed_total")
            return False

        self._last_injection[agent_id] = self._clock()
        metrics.inc("agent_wake_injections_total")
        log.info(f"Injected wake prompt into process {proc.pid} for {agent_id}")
        return True
