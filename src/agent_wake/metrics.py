# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto
"""Prometheus-compatible delivery metrics."""

import threading
import time


class PrometheusMetrics:
    """Thread-safe Prometheus-compatible metrics collector."""

    def __init__(self):
        self._lock = threading.Lock()
        self._start_time = time.time()

        # Counters (only increase)
        self._counters = {
            "agent_wake_signals_total": 0,
            "agent_wake_injections_total": 0,
            "agent_wake_injections_failed_total": 0,
            "agent_wake_attempts_total": 0,
            "agent_wake_retry_rounds_total": 0,
            "agent_wake_giveups_total": 0,
            "agent_wake_interrupts_total": 0,
            "agent_wake_signals_swept_total": 0,
            "agent_wake_ticks_total": 0,
        }

        # Gauges (can increase or decrease)
        self._gauges = {
            "agent_wake_controllers": 0,
            "agent_wake_monitored_processes": 0,
            "agent_wake_pending_signals": 0,
            "agent_wake_engine_alive": 0,
        }

        self._help = {
            "agent_wake_signals_total": "Wake signals observed for the first time",
            "agent_wake_injections_total": "Successful stdin injections",
            "agent_wake_injections_failed_total": "Injections that failed while writing",
            "agent_wake_attempts_total": "Delivery attempts made by controllers",
            "agent_wake_retry_rounds_total": "Delivery rounds that ended in backoff",
            "agent_wake_giveups_total": "Signals force-acknowledged after exhausting retries",
            "agent_wake_interrupts_total": "Interrupt signals injected immediately",
            "agent_wake_signals_swept_total": "Acknowledged signal files deleted by sweep",
            "agent_wake_ticks_total": "Supervisor ticks",
            "agent_wake_controllers": "Current number of agent controllers",
            "agent_wake_monitored_processes": "Current number of monitored target processes",
            "agent_wake_pending_signals": "Unacknowledged wake signals across bound agents",
            "agent_wake_engine_alive": "1 if the coordination engine daemon is alive",
            "agent_wake_start_time_seconds": "Unix timestamp when daemon started",
        }

    def inc(self, name: str, value: int = 1) -> None:
        """Increment a counter."""
        with self._lock:
            if name in self._counters:
                self._counters[name] += value

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge value."""
        with self._lock:
            self._gauges[name] = value

    def get(self, name: str) -> float:
        """Get current value of a metric."""
        with self._lock:
            if name in self._counters:
                return self._counters[name]
            if name in self._gauges:
                return self._gauges[name]
            return 0

    def reset(self) -> None:
        with self._lock:
            for name in self._counters:
                self._counters[name] = 0
            for name in self._gauges:
                self._gauges[name] = 0

    def to_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = []
        with self._lock:
            start_help = self._help["agent_wake_start_time_seconds"]
            lines.append(f"# HELP agent_wake_start_time_seconds {start_help}")
            lines.append("# TYPE agent_wake_start_time_seconds gauge")
            lines.append(f"agent_wake_start_time_seconds {self._start_time}")

            for name, value in self._counters.items():
                if name in self._help:
                    lines.append(f"# HELP {name} {self._help[name]}")
                lines.append(f"# TYPE {name} counter")
                lines.append(f"{name} {value}")

            for name, value in self._gauges.items():
                if name in self._help:
                    lines.append(f"# HELP {name} {self._help[name]}")
                lines.append(f"# TYPE {name} gauge")
                lines.append(f"{name} {value}")

        return "\n".join(lines) + "\n"

    def log_summary(self) -> str:
        """Return a human-readable summary for logging."""
        with self._lock:
            uptime = time.time() - self._start_time
            hours, remainder = divmod(int(uptime), 3600)
            minutes, seconds = divmod(remainder, 60)
            uptime_str = (
                f"{hours}h{minutes}m{seconds}s"
                if hours
                else f"{minutes}m{seconds}s"
                if minutes
                else f"{seconds}s"
            )

            return (
                f"uptime={uptime_str} "
                f"signals={self._counters['agent_wake_signals_total']} "
                f"inj={self._counters['agent_wake_injections_total']}/"
                f"{self._counters['agent_wake_injections_failed_total']} "
                f"giveups={self._counters['agent_wake_giveups_total']} "
                f"swept={self._counters['agent_wake_signals_swept_total']} "
                f"agents={self._gauges['agent_wake_controllers']} "
                f"procs={self._gauges['agent_wake_monitored_processes']}"
            )


metrics = PrometheusMetrics()
