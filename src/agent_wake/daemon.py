#!/usr/bin/env python3
# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (C) 2025 xnoto
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "watchdog",
# ]
# ///
"""Agent Wake Daemon - deliver wake signals into agent CLI stdin.

The coordination engine writes ``wake_signals/{agent}.signal`` when an agent
has a message. This daemon injects a prompt into that agent's CLI process so
it picks the message up, without interrupting a response in progress.

Features:
- Per-agent controllers for every agent bound to a session in the workspace
  (env override, per-session binding files, legacy binding file, .mcp.json,
  static default, all merged)
- PID-targeted delivery via the agent heartbeat, with a single-process fallback
- Idle detection from the target's stream-json output
- Debounce, bounded retry rounds with backoff, forced acknowledgment on give-up
- Interrupt signals bypass idle gating
- Periodic sweep of acknowledged signals
- Status snapshot and Prometheus metrics file for agent-wake-watch

Threading: one polling loop does all the work. The watchdog observer and the
POSIX signal handlers only set events that the loop reacts to.
"""

import argparse
import json
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from agent_wake import engine_cli, paths
from agent_wake.bindings import detect_bound_agents
from agent_wake.config import Settings, load_settings
from agent_wake.controller import AgentController
from agent_wake.injection import InjectionEngine, PidResolver
from agent_wake.metrics import metrics
from agent_wake.processes import IdleOracle, ProcessRegistry
from agent_wake.signals import MODES, SIGNAL_SUFFIX, SignalStore, WakeSignal, atomic_write_json

log = logging.getLogger(__name__)

STATUS_WARNINGS_KEPT = 5
TARGET_STOP_TIMEOUT = 5


# =============================================================================
# Engine Liveness
# =============================================================================


def is_engine_alive(data_dir: Path) -> bool:
    """Probe the engine daemon's pid file with signal 0 (no CLI roundtrip)."""
    try:
        pid = int(paths.engine_pid_path(data_dir).read_text().strip())
    except (OSError, ValueError):
        return False
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except PermissionError:
        return True  # exists, owned by another user
    except OSError:
        return False
    return True


# =============================================================================
# Runtime Control
# =============================================================================


def read_control(data_dir: Path) -> dict:
    """Runtime toggles written by the pause/resume/mode/auto-prompt commands."""
    try:
        data = json.loads(paths.control_path(data_dir).read_text())
    except (OSError, json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def update_control(data_dir: Path, **changes) -> dict:
    control = read_control(data_dir)
    control.update(changes)
    data_dir.mkdir(parents=True, exist_ok=True)
    atomic_write_json(paths.control_path(data_dir), control)
    return control


# =============================================================================
# Supervisor
# =============================================================================


@dataclass
class SupervisorStatus:
    agents: list[str]
    states: dict[str, str]
    pending: int
    engine_alive: bool
    enabled: bool
    mode: str
    auto_prompt: bool
    monitored_processes: int
    project_hash: str | None
    warnings: list[str] = field(default_factory=list)
    updated_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


class ControllerSupervisor:
    """Keeps one AgentController per bound agent and ticks them all."""

    def __init__(
        self,
        settings: Settings,
        registry: ProcessRegistry | None = None,
        clock: Callable[[], float] = time.time,
        on_notify: Callable[[str], None] | None = None,
    ):
        self.settings = settings
        self._clock = clock
        self.project_hash = (
            paths.resolve_project_hash(settings.workspace) if settings.workspace else None
        )
        self.registry = registry or ProcessRegistry(
            settings.target_signature, settings.activity_markers, clock
        )
        self.oracle = IdleOracle(self.registry, settings.idle_threshold, clock)
        self.store = SignalStore(
            paths.wake_signals_dir(settings.data_dir), settings.signal_ttl, clock
        )
        self.resolver = PidResolver(
            self.registry, self.oracle, paths.projects_dir(settings.data_dir)
        )
        self.engine = InjectionEngine(self.oracle, settings.debounce, clock)
        self.controllers: dict[str, AgentController] = {}
        self.mode = settings.communication_mode
        self.auto_prompt = settings.auto_prompt
        self.enabled = True
        self.started_at = clock()
        self.warnings: list[str] = []
        self._on_notify = on_notify

    # -------------------------------------------------------------------------
    # Controller lifecycle
    # -------------------------------------------------------------------------

    def detect_agents(self) -> list[str]:
        return detect_bound_agents(
            self.settings.data_dir,
            self.project_hash,
            self.settings.workspace,
            self.settings.default_agent,
        )

    def _warn(self, message: str) -> None:
        log.warning(message)
        self.warnings = (self.warnings + [message])[-STATUS_WARNINGS_KEPT:]

    def _notify(self, message: str) -> None:
        log.info(message)
        if self._on_notify is not None:
            self._on_notify(message)

    def _new_controller(self, agent_id: str) -> AgentController:
        s = self.settings
        return AgentController(
            agent_id,
            self.project_hash,
            self.store,
            self.resolver,
            self.engine,
            mode=self.mode,
            on_notify=self._notify,
            on_warn=self._warn,
            cooldown=s.cooldown,
            retry_backoff=s.retry_backoff,
            idle_check_interval=s.idle_check_interval,
            max_attempts=s.max_attempts,
            max_retry_rounds=s.max_retry_rounds,
            clock=self._clock,
        )

    def sync_controllers(self, agent_ids: list[str]) -> None:
        """Create controllers for new agents, drop those no longer bound."""
        current = set(agent_ids)
        for agent_id in list(self.controllers):
            if agent_id not in current:
                log.info(f"Agent removed: {agent_id}")
                del self.controllers[agent_id]

        for agent_id in agent_ids:
            if agent_id not in self.controllers:
                log.info(f"Agent discovered: {agent_id}")
                self.controllers[agent_id] = self._new_controller(agent_id)

    def set_mode(self, mode: str) -> None:
        if mode == self.mode:
            return
        log.info(f"Communication mode: {self.mode} -> {mode}")
        self.mode = mode
        for ctrl in self.controllers.values():
            ctrl.set_mode(mode)

    def apply_control(self) -> None:
        """Pick up pause/resume, mode and auto-prompt toggles from the control file."""
        control = read_control(self.settings.data_dir)
        enabled = control.get("enabled")
        if isinstance(enabled, bool) and enabled != self.enabled:
            log.info("Wake delivery resumed" if enabled else "Wake delivery paused")
            self.enabled = enabled
        auto_prompt = control.get("auto_prompt")
        if isinstance(auto_prompt, bool) and auto_prompt != self.auto_prompt:
            log.info(f"Auto-prompt {'on' if auto_prompt else 'off'}")
            self.auto_prompt = auto_prompt
        if control.get("mode") in MODES:
            self.set_mode(control["mode"])

    # -------------------------------------------------------------------------
    # Periodic work
    # -------------------------------------------------------------------------

    def in_startup_grace(self) -> bool:
        return self._clock() - self.started_at < self.settings.startup_grace

    def tick(self) -> SupervisorStatus:
        """One scheduler pass: discover, sync, tick controllers, aggregate."""
        self.registry.discover()
        self.registry.pump()

        self.apply_control()
        agent_ids = self.detect_agents()
        self.sync_controllers(agent_ids)

        if self.enabled and self.controllers and not self.in_startup_grace():
            for agent_id, ctrl in self.controllers.items():
                try:
                    ctrl.tick(self.auto_prompt)
                except Exception as e:
                    log.error(f"Controller error for {agent_id}: {e}")

        metrics.inc("agent_wake_ticks_total")
        return self.status()

    def sweep(self) -> int:
        """Delete old acknowledged signals and bound controller memory."""
        deleted = self.store.sweep()
        if deleted:
            log.info(f"Cleaned up {deleted} old signal(s)")
            metrics.inc("agent_wake_signals_swept_total", deleted)
        for ctrl in self.controllers.values():
            ctrl.cleanup()
        return deleted

    def force_check_all(self) -> bool:
        """Manual inbox check for every bound agent. True if any injection succeeded."""
        if not self.controllers:
            log.warning("Inbox check requested but no agents are bound")
            return False
        any_ok = False
        for ctrl in self.controllers.values():
            if ctrl.force_check():
                any_ok = True
        if not any_ok:
            log.warning("Inbox check: no idle target process found")
        return any_ok

    def status(self) -> SupervisorStatus:
        pending = sum(ctrl.pending_count for ctrl in self.controllers.values())
        engine_alive = is_engine_alive(self.settings.data_dir)

        metrics.set_gauge("agent_wake_controllers", len(self.controllers))
        metrics.set_gauge("agent_wake_monitored_processes", self.registry.monitored_count())
        metrics.set_gauge("agent_wake_pending_signals", pending)
        metrics.set_gauge("agent_wake_engine_alive", 1 if engine_alive else 0)

        return SupervisorStatus(
            agents=list(self.controllers),
            states={agent_id: ctrl.state for agent_id, ctrl in self.controllers.items()},
            pending=pending,
            engine_alive=engine_alive,
            enabled=self.enabled,
            mode=self.mode,
            auto_prompt=self.auto_prompt,
            monitored_processes=self.registry.monitored_count(),
            project_hash=self.project_hash,
            warnings=list(self.warnings),
            updated_at=datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat(),
        )


# =============================================================================
# Target Process
# =============================================================================


class TargetOutputLog:
    """Append target stdout to ~/.local/share/agent-wake/target-<pid>.log."""

    def __init__(self, directory: Path):
        self.directory = directory
        self._files: dict[int, object] = {}

    def __call__(self, pid: int, chunk: bytes) -> None:
        f = self._files.get(pid)
        if f is None:
            self.directory.mkdir(parents=True, exist_ok=True)
            f = open(self.directory / f"target-{pid}.log", "ab")  # noqa: SIM115
            self._files[pid] = f
        f.write(chunk)
        f.flush()

    def close(self) -> None:
        for f in self._files.values():
            f.close()
        self._files.clear()


def spawn_target(command: list[str]) -> subprocess.Popen | None:
    """Launch the agent CLI with piped stdin/stdout so wakes can be injected."""
    log_dir = paths.log_dir()
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        # NOTE: File intentionally not using context manager - must stay open for subprocess
        stderr = open(log_dir / "target-stderr.log", "a")  # noqa: SIM115
        proc = subprocess.Popen(
            command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=stderr,
        )
    except OSError as e:
        log.error(f"Failed to start target {command[0]}: {e}")
        return None
    log.info(f"Started target process (PID {proc.pid}): {' '.join(command)}")
    return proc


def stop_target(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    log.info(f"Stopping target process (PID {proc.pid})...")
    try:
        if proc.stdin:
            proc.stdin.close()
    except OSError:
        pass
    try:
        proc.terminate()
        proc.wait(timeout=TARGET_STOP_TIMEOUT)
    except subprocess.TimeoutExpired:
        log.warning("Target didn't stop gracefully, killing...")
        proc.kill()


# =============================================================================
# Event Handler
# =============================================================================


class SignalFileHandler(FileSystemEventHandler):
    """Wake the poll loop as soon as a signal file is written."""

    def __init__(self, wake_event: threading.Event):
        self.wake_event = wake_event

    def on_any_event(self, event) -> None:
        if event.is_directory:
            return
        if event.event_type not in ("created", "modified", "moved"):
            return
        path = getattr(event, "dest_path", "") or event.src_path
        if str(path).endswith(SIGNAL_SUFFIX):
            self.wake_event.set()


# =============================================================================
# Main Loop
# =============================================================================


def write_status(settings: Settings, status: SupervisorStatus) -> None:
    try:
        atomic_write_json(paths.status_path(settings.data_dir), status.to_dict())
    except OSError as e:
        log.debug(f"Failed to write status file: {e}")


def write_metrics(settings: Settings) -> None:
    try:
        paths.metrics_path(settings.data_dir).write_text(metrics.to_prometheus())
    except OSError as e:
        log.warning(f"Failed to write metrics: {e}")


def ensure_engine_running(settings: Settings) -> None:
    info = engine_cli.daemon_status(settings.engine_bin)
    if info.status == "running":
        return
    log.info("Engine daemon not running, starting...")
    ok = engine_cli.daemon_start(settings.engine_bin)
    log.info("Engine daemon started" if ok else "Failed to start engine daemon")


def run(settings: Settings, command: list[str]) -> int:
    signals_dir = paths.wake_signals_dir(settings.data_dir)
    signals_dir.mkdir(parents=True, exist_ok=True)
    pid_file = paths.wake_daemon_pid_path(settings.data_dir)
    pid_file.write_text(str(os.getpid()))

    supervisor = ControllerSupervisor(settings)
    output_log = TargetOutputLog(paths.log_dir())
    supervisor.registry.add_output_listener(output_log)

    log.info(f"Watching wake signals: {signals_dir}")
    log.info(f"Workspace: {settings.workspace} (project {supervisor.project_hash})")
    log.info(
        f"Mode: {settings.communication_mode}, auto-prompt: {settings.auto_prompt}, "
        f"poll: {settings.poll_interval}s, idle threshold: {settings.idle_threshold}s"
    )

    if settings.auto_start_engine and supervisor.project_hash:
        ensure_engine_running(settings)

    target = None
    if command:
        target = spawn_target(command)
        if target is None:
            pid_file.unlink(missing_ok=True)
            return 1
        supervisor.registry.publish(target)

    shutdown_event = threading.Event()
    wake_event = threading.Event()
    force_check_event = threading.Event()

    observer = Observer()
    observer.schedule(SignalFileHandler(wake_event), str(signals_dir), recursive=False)
    observer.start()

    def shutdown_handler(signum, frame):
        log.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()
        wake_event.set()

    def force_check_handler(signum, frame):
        force_check_event.set()
        wake_event.set()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, force_check_handler)

    last_sweep = time.time()
    last_metrics = time.time()
    exit_code = 0

    try:
        while not shutdown_event.is_set():
            try:
                if force_check_event.is_set():
                    force_check_event.clear()
                    supervisor.force_check_all()

                status = supervisor.tick()
                write_status(settings, status)

                now = time.time()
                if now - last_sweep >= settings.sweep_interval:
                    supervisor.sweep()
                    last_sweep = now
                if now - last_metrics >= settings.metrics_interval:
                    write_metrics(settings)
                    log.info(f"Metrics: {metrics.log_summary()}")
                    last_metrics = now
            except Exception as e:
                log.error(f"Tick error: {e}")

            if target is not None and target.poll() is not None:
                log.info(f"Target process exited with code {target.returncode}")
                exit_code = target.returncode or 0
                break

            wake_event.wait(settings.poll_interval)
            wake_event.clear()
    finally:
        observer.stop()
        observer.join(timeout=2)
        if target is not None:
            stop_target(target)
        supervisor.registry.close()
        output_log.close()
        write_metrics(settings)
        pid_file.unlink(missing_ok=True)
        log.info("Agent wake daemon stopped")
    return exit_code


# =============================================================================
# Commands
# =============================================================================


def running_daemon_pid(data_dir: Path) -> int | None:
    """Pid of the live wake daemon, or None if the pid file is missing or stale."""
    try:
        pid = int(paths.wake_daemon_pid_path(data_dir).read_text().strip())
    except (OSError, ValueError):
        return None
    if pid <= 0:
        return None
    try:
        os.kill(pid, 0)
    except OSError:
        return None

    # Guard against pid reuse after a crash left the file behind
    cmdline = Path(f"/proc/{pid}/cmdline")
    if cmdline.exists():
        try:
            args = cmdline.read_bytes().replace(b"\0", b" ")
        except OSError:
            return None
        if b"agent-wake" not in args and b"agent_wake" not in args:
            log.debug(f"Pid {pid} from stale pid file is not the wake daemon")
            return None
    return pid


def cmd_check(settings: Settings) -> int:
    """Ask the running daemon for a manual inbox check (SIGUSR1)."""
    if not hasattr(signal, "SIGUSR1"):
        print("Inbox check is not supported on this platform", file=sys.stderr)
        return 1
    pid = running_daemon_pid(settings.data_dir)
    if pid is None:
        print("Agent wake daemon is not running", file=sys.stderr)
        return 1
    try:
        os.kill(pid, signal.SIGUSR1)
    except OSError as e:
        print(f"Failed to signal daemon (PID {pid}): {e}", file=sys.stderr)
        return 1
    print(f"Inbox check requested (PID {pid})")
    return 0


def cmd_control(settings: Settings, **changes) -> int:
    """Write runtime toggles; the running daemon applies them on its next tick."""
    try:
        control = update_control(settings.data_dir, **changes)
    except OSError as e:
        print(f"Failed to write control file: {e}", file=sys.stderr)
        return 1
    enabled = control.get("enabled", True)
    print(f"Wake delivery: {'enabled' if enabled else 'paused'}")
    print(f"Communication: {control.get('mode', settings.communication_mode)}")
    print(f"Auto-prompt: {'on' if control.get('auto_prompt', settings.auto_prompt) else 'off'}")
    return 0


def cmd_status(settings: Settings) -> int:
    try:
        status = json.loads(paths.status_path(settings.data_dir).read_text())
    except (OSError, json.JSONDecodeError, UnicodeDecodeError):
        status = {}
    if not isinstance(status, dict):
        status = {}
    engine = "running" if is_engine_alive(settings.data_dir) else "stopped"
    print("Agent Wake Status")
    print("---")
    agents = status.get("agents") or []
    print(f"Agents: {', '.join(agents) if agents else 'none'}")
    for agent_id, state in (status.get("states") or {}).items():
        print(f"  {agent_id}: {state}")
    print(f"Project: {status.get('project_hash') or 'unknown'}")
    print(f"Engine daemon: {engine}")
    print(f"Delivery: {'enabled' if status.get('enabled', True) else 'paused'}")
    print(f"Communication: {status.get('mode', settings.communication_mode)}")
    print(f"Pending signals: {status.get('pending', 0)}")
    print(f"Data dir: {settings.data_dir}")
    return 0


def cmd_agents(settings: Settings) -> int:
    project_hash = paths.resolve_project_hash(settings.workspace) if settings.workspace else None
    if not project_hash:
        print("No workspace detected", file=sys.stderr)
        return 1
    agents = engine_cli.list_agents(project_hash, settings.engine_bin)
    if not agents:
        print("No agents registered")
        return 0
    for a in agents:
        supervisor = f"  supervisor={a.supervisor}" if a.supervisor else ""
        print(f"{a.id:<20} {a.role} ({a.mode}){supervisor}")
    return 0


def cmd_select(settings: Settings, agent_id: str | None) -> int:
    project_hash = paths.resolve_project_hash(settings.workspace) if settings.workspace else None
    if not project_hash:
        print("No workspace detected", file=sys.stderr)
        return 1
    if not engine_cli.select_agent(agent_id, project_hash, settings.engine_bin):
        print("Agent selection failed", file=sys.stderr)
        return 1
    print(f"Agent set to {agent_id}" if agent_id else "Agent binding cleared")
    return 0


def cmd_signal(settings: Settings, args: argparse.Namespace) -> int:
    """Write a wake signal by hand, as the engine would."""
    store = SignalStore(paths.wake_signals_dir(settings.data_dir))
    wake = WakeSignal(
        agent_id=args.agent_id,
        sender=args.sender,
        message=args.message,
        timestamp=datetime.now(timezone.utc).isoformat(),
        mode=args.mode,
        interrupt=args.interrupt,
    )
    try:
        path = store.write(wake)
    except OSError as e:
        print(f"Failed to write signal: {e}", file=sys.stderr)
        return 1
    print(f"Wrote {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-wake-daemon",
        description="Deliver wake signals into agent CLI stdin.",
    )
    sub = parser.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="run the delivery loop (default)")
    run_p.add_argument(
        "target", nargs=argparse.REMAINDER, help="agent CLI command to spawn, after --"
    )
    sub.add_parser("check", help="ask the running daemon for a manual inbox check")
    sub.add_parser("status", help="show the last published daemon status")
    sub.add_parser("agents", help="list agents registered with the engine")
    select_p = sub.add_parser("select", help="bind this workspace session to an agent")
    select_p.add_argument("agent_id")
    sub.add_parser("clear", help="clear the workspace agent binding")
    sub.add_parser("pause", help="pause wake delivery in the running daemon")
    sub.add_parser("resume", help="resume wake delivery in the running daemon")
    mode_p = sub.add_parser("mode", help="set the default communication mode")
    mode_p.add_argument("mode", choices=list(MODES))
    auto_p = sub.add_parser("auto-prompt", help="turn automatic wake injection on or off")
    auto_p.add_argument("state", choices=["on", "off"])

    signal_p = sub.add_parser("signal", help="write a wake signal for an agent")
    signal_p.add_argument("agent_id")
    signal_p.add_argument("message")
    signal_p.add_argument("--from", dest="sender", default="user")
    signal_p.add_argument("--mode", choices=["cognitive", "inbox"], default=None)
    signal_p.add_argument("--interrupt", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "check":
        return cmd_check(settings)
    if args.command == "status":
        return cmd_status(settings)
    if args.command == "agents":
        return cmd_agents(settings)
    if args.command == "select":
        return cmd_select(settings, args.agent_id)
    if args.command == "clear":
        return cmd_select(settings, None)
    if args.command == "signal":
        return cmd_signal(settings, args)
    if args.command == "pause":
        return cmd_control(settings, enabled=False)
    if args.command == "resume":
        return cmd_control(settings, enabled=True)
    if args.command == "mode":
        return cmd_control(settings, mode=args.mode)
    if args.command == "auto-prompt":
        return cmd_control(settings, auto_prompt=args.state == "on")

    command = list(getattr(args, "target", None) or [])
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        command = list(settings.target_command)
    return run(settings, command)


if __name__ == "__main__":
    sys.exit(main())
