# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto
"""Per-agent wake controller.

Each bound agent gets its own state machine, advanced by ``tick()``. A tick
never waits: waiting for the process to go idle or for a cooldown to expire
is just the state the controller is in until a later tick.

States:
    idle      watching the mailbox for a new signal
    pending   holding a signal, trying to inject it (one attempt per interval)
    cooldown  timed pause after a delivery, or backoff between retry rounds

After ``max_retry_rounds`` rounds of ``max_attempts`` failed attempts the
signal is force-acknowledged, one warning is emitted, and the controller
returns to idle.
"""

import logging
import time
from collections.abc import Callable

from agent_wake.injection import InjectionEngine, PidResolver, build_payload, build_prompt_text
from agent_wake.metrics import metrics
from agent_wake.signals import SignalStore, WakeSignal

log = logging.getLogger(__name__)

IDLE = "idle"
PENDING = "pending"
COOLDOWN = "cooldown"

COOLDOWN_SECONDS = 10.0
RETRY_BACKOFF_SECONDS = 15.0
IDLE_CHECK_INTERVAL_SECONDS = 1.0
MAX_ATTEMPTS = 3
MAX_RETRY_ROUNDS = 5
PROCESSED_KEYS_LIMIT = 100

MANUAL_CHECK_SENDER = "user"
MANUAL_CHECK_MESSAGE = "Manual inbox check requested"


class AgentController:
    def __init__(
        self,
        agent_id: str,
        scope_key: str | None,
        store: SignalStore,
        resolver: PidResolver,
        engine: InjectionEngine,
        *,
        mode: str = "cognitive",
        on_notify: Callable[[str], None] | None = None,
        on_warn: Callable[[str], None] | None = None,
        cooldown: float = COOLDOWN_SECONDS,
        retry_backoff: float = RETRY_BACKOFF_SECONDS,
        idle_check_interval: float = IDLE_CHECK_INTERVAL_SECONDS,
        max_attempts: int = MAX_ATTEMPTS,
        max_retry_rounds: int = MAX_RETRY_ROUNDS,
        clock: Callable[[], float] = time.time,
    ):
        self.agent_id = agent_id
        self.scope_key = scope_key
        self.store = store
        self.resolver = resolver
        self.engine = engine
        self.communication_mode = mode
        self.on_notify = on_notify or log.info
        self.on_warn = on_warn or log.warning
        self.cooldown = cooldown
        self.retry_backoff = retry_backoff
        self.idle_check_interval = idle_check_interval
        self.max_attempts = max_attempts
        self.max_retry_rounds = max_retry_rounds
        self._clock = clock

        self.state = IDLE
        self.current_signal: WakeSignal | None = None
        self.attempts = 0
        self.retry_rounds = 0
        self.last_attempt_time = 0.0
        self.cooldown_until = 0.0
        self.processed_signal_keys: set[tuple[str, str]] = set()

    def set_mode(self, mode: str) -> None:
        self.communication_mode = mode

    @property
    def pending_count(self) -> int:
        return self.store.count_pending(self.agent_id)

    def tick(self, auto_prompt: bool) -> None:
        """Advance the state machine one step. Never blocks."""
        if self.state == IDLE:
            self._check_for_signal(auto_prompt)
        elif self.state == PENDING:
            self._try_inject_now()
        elif self.state == COOLDOWN:
            if self._clock() >= self.cooldown_until:
                self.state = PENDING if self.current_signal is not None else IDLE

    def force_check(self) -> bool:
        """Inject a manual inbox check outside the mailbox flow."""
        text = build_prompt_text(
            self.agent_id, MANUAL_CHECK_SENDER, MANUAL_CHECK_MESSAGE, self.communication_mode
        )
        proc = self.resolver.resolve(self.scope_key, self.agent_id)
        ok = self.engine.attempt(self.agent_id, proc, build_payload(text))
        if ok:
            log.info(f"Manual inbox check injected for {self.agent_id}")
            self._enter_cooldown(self.cooldown)
        return ok

    def cleanup(self) -> None:
        """Bound the dedupe set; it only needs to cover recently seen signals."""
        if len(self.processed_signal_keys) > PROCESSED_KEYS_LIMIT:
            self.processed_signal_keys.clear()

    # =========================================================================
    # State machine
    # =========================================================================

    def _is_new(self, signal: WakeSignal | None) -> bool:
        return (
            signal is not None
            and not signal.acknowledged
            and signal.key not in self.processed_signal_keys
        )

    def _observe(self, signal: WakeSignal) -> None:
        self.processed_signal_keys.add(signal.key)
        metrics.inc("agent_wake_signals_total")
        log.info(f"Wake signal for {self.agent_id} from {signal.sender}")
        self.on_notify(f"Message for {self.agent_id} from {signal.sender}")

    def _check_for_signal(self, auto_prompt: bool) -> None:
        signal = self.store.read(self.agent_id)
        if not self._is_new(signal):
            return
        self._observe(signal)

        if not auto_prompt:
            self.store.acknowledge(self.agent_id)
            return

        if signal.interrupt:
            proc = self.resolver.resolve(self.scope_key, self.agent_id, require_idle=False)
            if self.engine.attempt(
                self.agent_id, proc, self._payload_for(signal), skip_idle_check=True
            ):
                log.info(f"Interrupt injected for {self.agent_id}")
                metrics.inc("agent_wake_interrupts_total")
                self.store.acknowledge(self.agent_id)
                self._enter_cooldown(self.cooldown)
                return
            log.debug(f"Interrupt for {self.agent_id} not delivered, queueing normally")

        self._hold(signal)

    def _hold(self, signal: WakeSignal) -> None:
        self.current_signal = signal
        self.attempts = 0
        self.retry_rounds = 0
        self.state = PENDING

    def _refresh_current(self) -> bool:
        """Prefer the freshest mailbox content. Returns False if delivery is moot."""
        latest = self.store.read(self.agent_id)
        if latest is None:
            return True
        if latest.acknowledged:
            log.info(f"Mailbox for {self.agent_id} acknowledged elsewhere, dropping pending signal")
            return False
        if latest.key != self.current_signal.key and self._is_new(latest):
            log.info(f"Newer wake signal for {self.agent_id} replaces pending one")
            self._observe(latest)
            self._hold(latest)
        return True

    def _payload_for(self, signal: WakeSignal) -> str:
        mode = signal.mode or self.communication_mode
        return build_payload(build_prompt_text(self.agent_id, signal.sender, signal.message, mode))

    def _try_inject_now(self) -> None:
        if self.current_signal is None:
            self.state = IDLE
            return

        now = self._clock()
        if now - self.last_attempt_time < self.idle_check_interval:
            return
        self.last_attempt_time = now

        if not self._refresh_current():
            self.current_signal = None
            self.retry_rounds = 0
            self.state = IDLE
            return

        signal = self.current_signal
        metrics.inc("agent_wake_attempts_total")
        proc = self.resolver.resolve(
            self.scope_key, self.agent_id, require_idle=not signal.interrupt
        )
        ok = self.engine.attempt(
            self.agent_id, proc, self._payload_for(signal), skip_idle_check=signal.interrupt
        )

        if ok:
            log.info(f"Injected wake for {self.agent_id}")
            self.store.acknowledge(self.agent_id)
            self.current_signal = None
            self.retry_rounds = 0
            self._enter_cooldown(self.cooldown)
            return

        self.attempts += 1
        if self.attempts < self.max_attempts:
            return

        self.retry_rounds += 1
        self.attempts = 0
        if self.retry_rounds < self.max_retry_rounds:
            metrics.inc("agent_wake_retry_rounds_total")
            log.info(
                f"Injection round {self.retry_rounds} failed for {self.agent_id}, "
                f"retrying in {self.retry_backoff:g}s"
            )
            self._enter_cooldown(self.retry_backoff)
            return

        self._give_up()

    def _give_up(self) -> None:
        rounds = self.retry_rounds
        self.store.acknowledge(self.agent_id)
        self.current_signal = None
        self.retry_rounds = 0
        self.attempts = 0
        self.state = IDLE
        metrics.inc("agent_wake_giveups_total")
        self.on_warn(
            f"Could not deliver wake signal to {self.agent_id} after {rounds} rounds; "
            "signal acknowledged without delivery"
        )

    def _enter_cooldown(self, duration: float) -> None:
        self.state = COOLDOWN
        self.cooldown_until = self._clock() + duration
