# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto
"""Target process registry and idle detection.

Process owners publish ``subprocess.Popen``-like handles here (anything with
``pid``, ``args``, ``stdin``, ``stdout`` and ``poll()``). Every tick the
supervisor calls ``discover()`` to drop exited processes and pick up new
ones, then ``pump()`` to drain their stdout without blocking.

A process counts as busy only while it emits output containing one of the
activity markers (stream-json generation events). Diagnostic chatter does
not reset the idle clock.
"""

import logging
import os
import selectors
import time
from collections.abc import Callable, Iterable

log = logging.getLogger(__name__)

IDLE_THRESHOLD_SECONDS = 3.0
DEFAULT_SIGNATURE = "claude"
DEFAULT_ACTIVITY_MARKERS = ('"stream_event"', '"assistant"')
READ_CHUNK = 65536

OutputListener = Callable[[int, bytes], None]


def is_alive(proc) -> bool:
    try:
        return proc.poll() is None
    except OSError:
        return False


def is_writable(proc) -> bool:
    stdin = getattr(proc, "stdin", None)
    return stdin is not None and not getattr(stdin, "closed", False)


def command_line(proc) -> str:
    args = getattr(proc, "args", None)
    if args is None:
        return ""
    if isinstance(args, (str, bytes)):
        return os.fsdecode(args)
    return " ".join(os.fsdecode(a) for a in args)


class ProcessRegistry:
    """Published target processes plus their output-activity table."""

    def __init__(
        self,
        signature: str = DEFAULT_SIGNATURE,
        activity_markers: Iterable[str] = DEFAULT_ACTIVITY_MARKERS,
        clock: Callable[[], float] = time.time,
    ):
        self.signature = signature.lower()
        self._markers = tuple(m.encode("utf-8") for m in activity_markers if m)
        self._tail_len = max((len(m) for m in self._markers), default=1) - 1
        self._clock = clock
        self._published: dict[int, object] = {}
        self._monitored: dict[int, object] = {}
        self._activity: dict[int, float] = {}
        self._tails: dict[int, bytes] = {}
        self._listeners: list[OutputListener] = []
        self._selector = selectors.DefaultSelector()

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    def publish(self, proc) -> None:
        if proc.pid is None:
            return
        self._published[proc.pid] = proc
        log.debug(f"Process {proc.pid} published: {command_line(proc)[:80]}")

    def withdraw(self, pid: int) -> None:
        self._published.pop(pid, None)
        self._forget(pid)

    def add_output_listener(self, listener: OutputListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _matches(self, proc) -> bool:
        return self.signature in command_line(proc).lower() and is_writable(proc)

    def discover(self) -> list:
        """Re-enumerate published processes, returning the live candidates."""
        candidates = []
        for pid, proc in list(self._published.items()):
            if not is_alive(proc):
                log.info(f"Target process {pid} exited")
                del self._published[pid]
                self._forget(pid)
                continue
            if not self._matches(proc):
                continue
            self.ensure_monitored(proc)
            candidates.append(proc)
        return candidates

    def ensure_monitored(self, proc) -> None:
        pid = proc.pid
        if pid is None or pid in self._monitored:
            return
        self._monitored[pid] = proc
        self._activity[pid] = self._clock()
        self._tails[pid] = b""

        stdout = getattr(proc, "stdout", None)
        if stdout is None or getattr(stdout, "closed", False):
            return
        try:
            os.set_blocking(stdout.fileno(), False)
            self._selector.register(stdout, selectors.EVENT_READ, data=pid)
        except (OSError, ValueError, KeyError) as e:
            log.debug(f"Cannot watch stdout of {pid}: {e}")

    def _forget(self, pid: int) -> None:
        proc = self._monitored.pop(pid, None)
        self._activity.pop(pid, None)
        self._tails.pop(pid, None)
        stdout = getattr(proc, "stdout", None) if proc is not None else None
        if stdout is not None:
            self._unregister(stdout)

    def _unregister(self, stream) -> None:
        try:
            self._selector.unregister(stream)
        except (KeyError, ValueError, OSError):
            pass

    # ------------------------------------------------------------------
    # Output activity
    # ------------------------------------------------------------------

    def pump(self) -> int:
        """Drain readable stdout streams without blocking. Returns bytes read."""
        if not self._selector.get_map():
            return 0
        total = 0
        try:
            events = self._selector.select(timeout=0)
        except OSError as e:
            log.debug(f"Output poll failed: {e}")
            return 0

        for key, _mask in events:
            pid = key.data
            try:
                chunk = os.read(key.fd, READ_CHUNK)
            except BlockingIOError:
                continue
            except OSError:
                chunk = b""
            if not chunk:
                self._unregister(key.fileobj)
                continue
            total += len(chunk)
            self.record_output(pid, chunk)
        return total

    def record_output(self, pid: int, chunk: bytes) -> None:
        """Feed one stdout chunk; only marker-bearing output counts as activity."""
        if pid not in self._monitored:
            return
        window = self._tails.get(pid, b"") + chunk
        if any(marker in window for marker in self._markers):
            self._activity[pid] = self._clock()
        self._tails[pid] = window[-self._tail_len :] if self._tail_len else b""

        for listener in self._listeners:
            try:
                listener(pid, chunk)
            except Exception as e:
                log.error(f"Output listener error for {pid}: {e}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find(self, pid: int):
        proc = self._monitored.get(pid)
        if proc is None or not is_alive(proc):
            return None
        return proc

    def candidates(self) -> list:
        return [p for p in self._monitored.values() if is_alive(p)]

    def monitored_count(self) -> int:
        return len(self._monitored)

    def last_activity(self, pid: int) -> float | None:
        return self._activity.get(pid)

    def close(self) -> None:
        for pid in list(self._monitored):
            self._forget(pid)
        self._published.clear()
        self._selector.close()


class IdleOracle:
    """Idle means no qualifying output for ``threshold`` seconds."""

    def __init__(
        self,
        registry: ProcessRegistry,
        threshold: float = IDLE_THRESHOLD_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.threshold = threshold
        self._clock = clock

    def is_idle(self, pid: int) -> bool:
        last = self.registry.last_activity(pid)
        if last is None:
            return True
        return self._clock() - last >= self.threshold
