# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto
"""Wake signal mailbox.

Each agent has at most one signal file, ``{signals_dir}/{agent_id}.signal``.
The coordination engine overwrites it whenever it wants the agent's
attention (last write wins, no queueing). This module reads it, flips it to
acknowledged after delivery, and sweeps acknowledged files once they are
older than the TTL.

Nothing here raises: unreadable or half-written files are treated as absent.
"""

import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

log = logging.getLogger(__name__)

SIGNAL_SUFFIX = ".signal"
SIGNAL_TTL_SECONDS = 300  # 5 minutes
MODES = ("cognitive", "inbox")


@dataclass(frozen=True)
class WakeSignal:
    agent_id: str
    sender: str
    message: str
    timestamp: str
    mode: str | None = None
    acknowledged: bool = False
    acknowledged_at: str | None = None
    interrupt: bool = False

    @property
    def key(self) -> tuple[str, str]:
        """Identity used to avoid notifying twice for the same signal."""
        return (self.agent_id, self.timestamp)

    @classmethod
    def from_dict(cls, data: dict) -> "WakeSignal":
        mode = data.get("mode")
        return cls(
            agent_id=str(data["agent_id"]),
            sender=str(data.get("from", "unknown")),
            message=str(data.get("message", "")),
            timestamp=str(data["timestamp"]),
            mode=mode if mode in MODES else None,
            acknowledged=bool(data.get("acknowledged", False)),
            acknowledged_at=data.get("acknowledged_at"),
            interrupt=bool(data.get("interrupt", False)),
        )

    def to_dict(self) -> dict:
        data = {
            "agent_id": self.agent_id,
            "from": self.sender,
            "message": self.message,
            "timestamp": self.timestamp,
            "acknowledged": self.acknowledged,
        }
        if self.mode:
            data["mode"] = self.mode
        if self.acknowledged_at:
            data["acknowledged_at"] = self.acknowledged_at
        if self.interrupt:
            data["interrupt"] = True
        return data


def utc_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def parse_iso(value: str) -> float | None:
    """Parse an ISO-8601 timestamp to epoch seconds. Naive values are UTC."""
    try:
        dt = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def atomic_write_json(path: Path, data: dict) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class SignalStore:
    """File-backed, depth-1 mailbox per agent."""

    def __init__(
        self,
        signals_dir: Path,
        ttl_seconds: float = SIGNAL_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.signals_dir = Path(signals_dir)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def path_for(self, agent_id: str) -> Path:
        return self.signals_dir / f"{agent_id}{SIGNAL_SUFFIX}"

    def _read_raw(self, path: Path) -> dict | None:
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError, UnicodeDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def read(self, agent_id: str) -> WakeSignal | None:
        data = self._read_raw(self.path_for(agent_id))
        if data is None:
            return None
        try:
            return WakeSignal.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            log.debug(f"Ignoring malformed wake signal for {agent_id}: {e}")
            return None

    def acknowledge(self, agent_id: str) -> bool:
        """Mark the agent's signal acknowledged. Returns False if nothing was written.

        Not transactional: a producer rewriting the file concurrently may win.
        """
        path = self.path_for(agent_id)
        data = self._read_raw(path)
        if data is None:
            return False
        if data.get("acknowledged") is True and data.get("acknowledged_at"):
            return False
        data["acknowledged"] = True
        data["acknowledged_at"] = utc_iso(self._clock())
        try:
            atomic_write_json(path, data)
        except OSError as e:
            log.debug(f"Failed to acknowledge wake signal for {agent_id}: {e}")
            return False
        return True

    def count_pending(self, agent_id: str) -> int:
        signal = self.read(agent_id)
        return 1 if signal is not None and not signal.acknowledged else 0

    def write(self, signal: WakeSignal) -> Path:
        """Producer-side write, used by the `signal` command and tests."""
        self.signals_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(signal.agent_id)
        atomic_write_json(path, signal.to_dict())
        return path

    def sweep(self, ttl_seconds: float | None = None) -> int:
        """Delete acknowledged signals acknowledged more than ttl seconds ago."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if not self.signals_dir.is_dir():
            return 0

        cutoff = self._clock() - ttl
        deleted = 0
        try:
            candidates = list(self.signals_dir.glob(f"*{SIGNAL_SUFFIX}"))
        except OSError:
            return 0

        for path in candidates:
            data = self._read_raw(path)
            if not data or data.get("acknowledged") is not True:
                continue
            acked_at = parse_iso(data.get("acknowledged_at", ""))
            if acked_at is None or acked_at >= cutoff:
                continue
            try:
                path.unlink()
                deleted += 1
                log.debug(f"Swept acknowledged wake signal {path.name}")
            except OSError:
                continue
        return deleted
