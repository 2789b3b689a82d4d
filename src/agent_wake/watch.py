#!/usr/bin/env python3
# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto
# /// script
# requires-python = ">=3.11"
# dependencies = ["watchdog"]
# ///
"""Agent Wake Dashboard - Real-time view of controllers, signals and delivery."""

import json
import os
import signal
import sys
import time
from pathlib import Path
from threading import Event, Lock

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from agent_wake import paths
from agent_wake.signals import parse_iso

DATA_DIR = paths.data_dir()
SIGNALS_DIR = paths.wake_signals_dir(DATA_DIR)
STATUS_FILE = paths.status_path(DATA_DIR)
METRICS_FILE = paths.metrics_path(DATA_DIR)
WAKE_PID_FILE = paths.wake_daemon_pid_path(DATA_DIR)
ENGINE_PID_FILE = paths.engine_pid_path(DATA_DIR)

# VT100 / POSIX minimum terminal dimensions
MIN_COLS = 80
MIN_LINES = 24

# Synchronization
refresh_event = Event()
display_lock = Lock()


def get_terminal_width() -> int:
    """Get current terminal width, clamped to the VT100/POSIX minimum of 80 columns."""
    try:
        cols = os.get_terminal_size().columns
    except OSError:
        cols = MIN_COLS
    return max(cols, MIN_COLS)


class WakeEventHandler(FileSystemEventHandler):
    """Trigger refresh on signal, status or metrics changes."""

    def on_any_event(self, event):
        if event.event_type not in ["created", "deleted", "modified", "moved"]:
            return

        if event.src_path.endswith((".signal", ".json", ".prom")):
            refresh_event.set()


def clear_screen():
    print("\033[2J\033[H", end="")


def relative_time(timestamp: float) -> str:
    """Convert epoch seconds to relative time string."""
    ago = int(time.time() - timestamp)
    if ago < 0:
        return "just now"
    elif ago < 60:
        return f"{ago}s ago"
    elif ago < 3600:
        return f"{ago // 60}m ago"
    elif ago < 86400:
        return f"{ago // 3600}h ago"
    else:
        return f"{ago // 86400}d ago"


def iso_relative_time(value) -> str:
    ts = parse_iso(value) if isinstance(value, str) else None
    return "?" if ts is None else relative_time(ts)


def load_json(path: Path) -> dict | None:
    """Safely load JSON file."""
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def pid_from_file(path: Path) -> int | None:
    """Return the pid recorded in path if that process is alive."""
    try:
        pid = int(path.read_text().strip())
    except (OSError, ValueError):
        return None
    if pid <= 0:
        return None
    try:
        os.kill(pid, 0)
    except PermissionError:
        return pid
    except OSError:
        return None
    return pid


def print_header(w: int) -> None:
    print("═" * w)
    print("AGENT WAKE DASHBOARD".center(w))
    print("═" * w)
    print()


def print_daemon_status(w: int) -> None:
    print("🔧 DAEMON STATUS")
    print("─" * w)

    wake_pid = pid_from_file(WAKE_PID_FILE)
    if wake_pid:
        print(f"  Wake daemon: RUNNING (PID {wake_pid})")
    else:
        print("  Wake daemon: STOPPED")

    engine_pid = pid_from_file(ENGINE_PID_FILE)
    if engine_pid:
        print(f"  Engine:      RUNNING (PID {engine_pid})")
    else:
        print("  Engine:      STOPPED")
    print()


def print_controllers(w: int) -> None:
    print("📡 AGENT CONTROLLERS")
    print("─" * w)

    status = load_json(STATUS_FILE)
    if not status:
        print("  (no status published)")
        print()
        return

    states = status.get("states") or {}
    if not states:
        print("  (no agents bound)")
    else:
        # Column layout: "  {agent_id} {state}"
        # Fixed chars: 2 (indent) + 1 (space) = 3; state is at most 8 ("cooldown")
        state_w = 8
        id_w = max(8, w - 3 - state_w)
        for agent_id, state in sorted(states.items()):
            print(f"  {agent_id[:id_w]:<{id_w}} {str(state)[:state_w]}")

    summary = (
        f"  Delivery: {'on' if status.get('enabled', True) else 'PAUSED'} │ "
        f"Mode: {status.get('mode', '?')} │ Pending: {status.get('pending', 0)} │ "
        f"Processes: {status.get('monitored_processes', 0)} │ "
        f"Updated: {iso_relative_time(status.get('updated_at'))}"
    )
    print(summary[:w])

    for warning in (status.get("warnings") or [])[-3:]:
        print(f"  ⚠ {warning}"[:w])
    print()


def print_signals(w: int) -> None:
    print("💬 WAKE SIGNALS")
    print("─" * w)

    if not SIGNALS_DIR.exists():
        print("  (no signals directory)")
        print()
        return

    signals = []
    for signal_file in SIGNALS_DIR.glob("*.signal"):
        data = load_json(signal_file)
        if data:
            signals.append(data)

    if not signals:
        print("  (no signals)")
        print()
        return

    signals.sort(key=lambda s: str(s.get("timestamp", "")), reverse=True)

    # Column layout: "  {marker}{interrupt} {agent} ← {from} {message} {time}"
    # Fixed overhead: 2 (indent) + 2 (markers) + 1 + 3 (" ← ") + 2 (spaces) = 10
    # time_str reserve: 10 (worst case "20498d ago")
    time_reserve = 10
    available = w - 10 - time_reserve
    # Proportions: agent ~20%, from ~20%, message ~60%
    agent_w = max(6, available * 20 // 100)
    from_w = max(6, available * 20 // 100)
    msg_w = max(10, available - agent_w - from_w)

    for s in signals[:10]:
        agent_id = str(s.get("agent_id", "?"))[:agent_w]
        sender = str(s.get("from", "?"))[:from_w]
        message = str(s.get("message", "")).replace("\n", " ")[:msg_w]
        marker = " " if s.get("acknowledged") else "●"
        interrupt = "!" if s.get("interrupt") else " "
        when = iso_relative_time(s.get("timestamp"))

        print(
            f"  {marker}{interrupt} {agent_id:<{agent_w}} ← {sender:<{from_w}}"
            f" {message:<{msg_w}} {when}"
        )

    print()


def parse_prom_file(path: Path) -> dict[str, float]:
    """Parse a Prometheus text format file and return metric name → value mapping.

    Skips comment lines (# HELP, # TYPE) and blank lines.
    Returns an empty dict if the file is missing or malformed.
    """
    metrics: dict[str, float] = {}
    try:
        with open(path) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                parts = line.split(None, 1)
                if len(parts) == 2:
                    try:
                        metrics[parts[0]] = float(parts[1])
                    except ValueError:
                        continue
    except OSError:
        pass
    return metrics


# Metric names written by the daemon
_DELIVERY_METRICS = {
    "signals": "agent_wake_signals_total",
    "injections": "agent_wake_injections_total",
    "failed": "agent_wake_injections_failed_total",
    "interrupts": "agent_wake_interrupts_total",
    "retry_rounds": "agent_wake_retry_rounds_total",
    "giveups": "agent_wake_giveups_total",
    "swept": "agent_wake_signals_swept_total",
}


def print_delivery_panel(w: int) -> None:
    """Display delivery counters from the metrics.prom file."""
    print("📈 DELIVERY")
    print("─" * w)

    metrics = parse_prom_file(METRICS_FILE)
    if not metrics:
        print("  (no metrics available)")
        print()
        return

    def value(key: str) -> float | None:
        return metrics.get(_DELIVERY_METRICS[key])

    # Row 1: traffic
    parts = []
    for label, key in (("Signals", "signals"), ("Injected", "injections"), ("Failed", "failed")):
        v = value(key)
        if v is not None:
            parts.append(f"{label}: {int(v):,}")
    if parts:
        print(f"  {' │ '.join(parts)}")

    # Row 2: exceptional paths
    extra = []
    for label, key in (
        ("Interrupts", "interrupts"),
        ("Retry rounds", "retry_rounds"),
        ("Gave up", "giveups"),
        ("Swept", "swept"),
    ):
        v = value(key)
        if v is not None:
            extra.append(f"{label}: {int(v):,}")
    if extra:
        print(f"  {' │ '.join(extra)}")

    print()


def render_dashboard() -> None:
    """Render the full dashboard, adapting to current terminal width."""
    w = get_terminal_width()
    with display_lock:
        clear_screen()
        print_header(w)
        print_daemon_status(w)
        print_controllers(w)
        print_signals(w)
        print_delivery_panel(w)
        print("─" * w)
        print("  Watching for changes... (Ctrl+C to exit)")
        sys.stdout.flush()


def main():
    SIGNALS_DIR.mkdir(parents=True, exist_ok=True)

    observer = Observer()
    handler = WakeEventHandler()
    observer.schedule(handler, str(SIGNALS_DIR), recursive=False)
    # Watch DATA_DIR itself for wake_status.json and metrics.prom changes
    observer.schedule(handler, str(DATA_DIR), recursive=False)
    observer.start()

    # Re-render on terminal resize (SIGWINCH) if supported
    if hasattr(signal, "SIGWINCH"):
        signal.signal(signal.SIGWINCH, lambda *_: refresh_event.set())

    try:
        render_dashboard()

        while True:
            # Wait for filesystem event or timeout (for daemon status updates)
            triggered = refresh_event.wait(timeout=10)
            if triggered:
                refresh_event.clear()
                # Small debounce to batch rapid changes
                time.sleep(0.05)
            render_dashboard()

    except KeyboardInterrupt:
        print("\n  Exiting...")
    finally:
        observer.stop()
        observer.join()


if __name__ == "__main__":
    main()
