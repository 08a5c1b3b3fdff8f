"""Per-round stimulus/response state machine and its driver.

``transition`` is a pure function over an immutable ``TrialMachine`` value; it
returns the next value plus a tuple of effects (timers to schedule or cancel,
a session to finalize). ``TrialEngine`` owns the mutable edges: it executes
those effects against a ``TrialClock`` and a ``SessionStore``.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime

from .clock import Clock, StimulusDelaySampler, TimerHandle, TimerPhase, TrialClock
from .config import ReactionConfig
from .models import Attempt, FailReason, GameType, Session, Statistics, TrialState, utc_now
from .session_stats import SessionAggregator, format_time_ms, round_half_up
from .store import SessionStore, StoreError
from .validation import ReactionValidator

logger = logging.getLogger(__name__)


# Events


@dataclass(frozen=True, slots=True)
class Start:
    pass


@dataclass(frozen=True, slots=True)
class Tap:
    now_s: float
    at: datetime


@dataclass(frozen=True, slots=True)
class TimerFired:
    phase: TimerPhase
    now_s: float
    at: datetime


@dataclass(frozen=True, slots=True)
class Pause:
    pass


@dataclass(frozen=True, slots=True)
class Resume:
    pass


@dataclass(frozen=True, slots=True)
class Abort:
    pass


@dataclass(frozen=True, slots=True)
class Stop:
    pass


TrialEvent = Start | Tap | TimerFired | Pause | Resume | Abort | Stop


# Effects


@dataclass(frozen=True, slots=True)
class ScheduleTimer:
    phase: TimerPhase
    delay_ms: int


@dataclass(frozen=True, slots=True)
class ScheduleStimulus:
    """Schedule the stimulus after a freshly drawn random delay."""


@dataclass(frozen=True, slots=True)
class CancelTimer:
    phase: TimerPhase


@dataclass(frozen=True, slots=True)
class CancelAllTimers:
    pass


@dataclass(frozen=True, slots=True)
class FinalizeSession:
    is_completed: bool
    is_failed: bool
    fail_reason: FailReason | None


TrialEffect = ScheduleTimer | ScheduleStimulus | CancelTimer | CancelAllTimers | FinalizeSession


_RUNNING_STATES = frozenset(
    {
        TrialState.COUNTDOWN,
        TrialState.WAITING,
        TrialState.READY,
        TrialState.TAP_DETECTED,
        TrialState.FAILED,
        TrialState.ROUND_COMPLETE,
    }
)


@dataclass(frozen=True, slots=True)
class TrialMachine:
    state: TrialState = TrialState.IDLE
    attempts: tuple[Attempt, ...] = ()
    ready_at_s: float | None = None
    paused: bool = False
    finished: bool = False
    aborted: bool = False
    last_fail_reason: FailReason | None = None

    @property
    def is_running(self) -> bool:
        return not self.finished and self.state in _RUNNING_STATES

    @property
    def valid_attempts(self) -> int:
        return sum(1 for a in self.attempts if a.is_valid)


_NO_EFFECTS: tuple[TrialEffect, ...] = ()


def transition(
    machine: TrialMachine,
    event: TrialEvent,
    *,
    config: ReactionConfig,
    validator: ReactionValidator,
) -> tuple[TrialMachine, tuple[TrialEffect, ...]]:
    """Apply one event. Events that do not apply to the current state are no-ops."""

    if machine.finished:
        return machine, _NO_EFFECTS

    if isinstance(event, Start):
        return _start(machine, config)
    if isinstance(event, Tap):
        return _tap(machine, event, config, validator)
    if isinstance(event, TimerFired):
        return _timer_fired(machine, event, config)
    if isinstance(event, Pause):
        if not machine.is_running or machine.paused:
            return machine, _NO_EFFECTS
        return replace(machine, paused=True), (CancelAllTimers(),)
    if isinstance(event, Resume):
        return _resume(machine, config)
    if isinstance(event, Abort):
        if not machine.is_running:
            return machine, _NO_EFFECTS
        return (
            replace(machine, state=TrialState.FAILED, finished=True, aborted=True, paused=False),
            (
                CancelAllTimers(),
                FinalizeSession(is_completed=False, is_failed=True, fail_reason=machine.last_fail_reason),
            ),
        )
    if isinstance(event, Stop):
        if not machine.is_running:
            return machine, _NO_EFFECTS
        return _complete(machine, exhausted=len(machine.attempts) >= config.total_rounds)
    raise TypeError(f"unknown trial event: {event!r}")


def _start(machine: TrialMachine, config: ReactionConfig) -> tuple[TrialMachine, tuple[TrialEffect, ...]]:
    if machine.state is not TrialState.IDLE:
        return machine, _NO_EFFECTS
    return (
        TrialMachine(state=TrialState.COUNTDOWN),
        (ScheduleTimer(TimerPhase.COUNTDOWN, config.countdown_ms),),
    )


def _tap(
    machine: TrialMachine,
    event: Tap,
    config: ReactionConfig,
    validator: ReactionValidator,
) -> tuple[TrialMachine, tuple[TrialEffect, ...]]:
    if machine.paused:
        return machine, _NO_EFFECTS
    if machine.state is TrialState.IDLE:
        return _start(machine, config)

    number = len(machine.attempts) + 1
    if machine.state is TrialState.WAITING:
        # Early is binary: no partial credit for being close to the stimulus.
        attempt = Attempt(attempt_number=number, reaction_time_ms=0, is_valid=False, timestamp=event.at)
        return (
            replace(
                machine,
                state=TrialState.FAILED,
                attempts=machine.attempts + (attempt,),
                last_fail_reason=FailReason.EARLY_TAP,
            ),
            (CancelTimer(TimerPhase.STIMULUS), ScheduleTimer(TimerPhase.DISPLAY, config.result_display_ms)),
        )

    if machine.state is TrialState.READY:
        if machine.ready_at_s is None:
            return machine, _NO_EFFECTS
        elapsed_ms = max(0, round_half_up((event.now_s - machine.ready_at_s) * 1000.0))
        if elapsed_ms > config.ready_timeout_ms:
            # The response window closed before this tap was seen.
            return _time_out(machine, event.at, config)
        attempt = Attempt(
            attempt_number=number,
            reaction_time_ms=elapsed_ms,
            is_valid=validator.is_valid(elapsed_ms),
            timestamp=event.at,
        )
        return (
            replace(
                machine,
                state=TrialState.TAP_DETECTED,
                attempts=machine.attempts + (attempt,),
                ready_at_s=None,
            ),
            (CancelTimer(TimerPhase.TIMEOUT), ScheduleTimer(TimerPhase.DISPLAY, config.result_display_ms)),
        )

    # COUNTDOWN, feedback states and ROUND_COMPLETE ignore taps.
    return machine, _NO_EFFECTS


def _timer_fired(
    machine: TrialMachine,
    event: TimerFired,
    config: ReactionConfig,
) -> tuple[TrialMachine, tuple[TrialEffect, ...]]:
    if machine.paused:
        return machine, _NO_EFFECTS

    state, phase = machine.state, event.phase
    if state is TrialState.COUNTDOWN and phase is TimerPhase.COUNTDOWN:
        return replace(machine, state=TrialState.WAITING), (ScheduleStimulus(),)

    if state is TrialState.WAITING and phase is TimerPhase.STIMULUS:
        return (
            replace(machine, state=TrialState.READY, ready_at_s=event.now_s),
            (ScheduleTimer(TimerPhase.TIMEOUT, config.ready_timeout_ms),),
        )

    if state is TrialState.READY and phase is TimerPhase.TIMEOUT:
        return _time_out(machine, event.at, config)

    if state in (TrialState.TAP_DETECTED, TrialState.FAILED) and phase is TimerPhase.DISPLAY:
        if len(machine.attempts) >= config.total_rounds:
            return _complete(machine, exhausted=True)
        return (
            replace(machine, state=TrialState.ROUND_COMPLETE),
            (ScheduleTimer(TimerPhase.ROUND_DELAY, config.round_delay_ms),),
        )

    if state is TrialState.ROUND_COMPLETE and phase is TimerPhase.ROUND_DELAY:
        return replace(machine, state=TrialState.WAITING, ready_at_s=None), (ScheduleStimulus(),)

    # Superseded timer.
    return machine, _NO_EFFECTS


def _time_out(
    machine: TrialMachine,
    at: datetime,
    config: ReactionConfig,
) -> tuple[TrialMachine, tuple[TrialEffect, ...]]:
    attempt = Attempt(
        attempt_number=len(machine.attempts) + 1,
        reaction_time_ms=config.ready_timeout_ms,
        is_valid=False,
        timestamp=at,
    )
    return (
        replace(
            machine,
            state=TrialState.FAILED,
            attempts=machine.attempts + (attempt,),
            ready_at_s=None,
            last_fail_reason=FailReason.TIMEOUT,
        ),
        (
            CancelTimer(TimerPhase.STIMULUS),
            CancelTimer(TimerPhase.TIMEOUT),
            ScheduleTimer(TimerPhase.DISPLAY, config.result_display_ms),
        ),
    )


def _resume(machine: TrialMachine, config: ReactionConfig) -> tuple[TrialMachine, tuple[TrialEffect, ...]]:
    if not machine.paused:
        return machine, _NO_EFFECTS
    resumed = replace(machine, paused=False)
    state = machine.state
    if state in (TrialState.WAITING, TrialState.READY):
        # A half-shown stimulus is discarded; the round restarts its wait.
        return replace(resumed, state=TrialState.WAITING, ready_at_s=None), (ScheduleStimulus(),)
    if state is TrialState.COUNTDOWN:
        return resumed, (ScheduleTimer(TimerPhase.COUNTDOWN, config.countdown_ms),)
    if state in (TrialState.TAP_DETECTED, TrialState.FAILED):
        return resumed, (ScheduleTimer(TimerPhase.DISPLAY, config.result_display_ms),)
    return resumed, (ScheduleTimer(TimerPhase.ROUND_DELAY, config.round_delay_ms),)


def _complete(machine: TrialMachine, *, exhausted: bool) -> tuple[TrialMachine, tuple[TrialEffect, ...]]:
    failed = machine.valid_attempts == 0
    return (
        replace(
            machine,
            state=TrialState.FAILED if failed else TrialState.GAME_COMPLETE,
            finished=True,
            paused=False,
            ready_at_s=None,
        ),
        (
            CancelAllTimers(),
            FinalizeSession(
                is_completed=exhausted,
                is_failed=failed,
                fail_reason=machine.last_fail_reason if failed else None,
            ),
        ),
    )


def new_session_id(at: datetime) -> str:
    alphabet = "abcdefghijklmnopqrstuvwxyz0123456789"
    token = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"session_{int(at.timestamp() * 1000)}_{token}"


@dataclass(frozen=True, slots=True)
class TrialSnapshot:
    """View model for the UI (pure data)."""

    state: TrialState
    paused: bool
    prompt: str
    round_number: int
    total_rounds: int
    recorded_attempts: int
    progress_pct: float
    stimulus_visible: bool
    last_attempt: Attempt | None


class TrialEngine:
    """Drives one tap-test session.

    - Time is entirely via the injected Clock; timers fire from ``update()``.
    - Deterministic stimulus delays when a seed is given.
    - The session is finalized, and saved, at most once.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        config: ReactionConfig | None = None,
        store: SessionStore | None = None,
        user_id: str = "local",
        game_type: GameType = GameType.TAP_TEST,
        seed: int | None = None,
        validator: ReactionValidator | None = None,
        wall_clock: Callable[[], datetime] = utc_now,
        session_id_factory: Callable[[datetime], str] = new_session_id,
    ) -> None:
        self._config = config or ReactionConfig()
        self._clock = clock
        self._timers = TrialClock(clock)
        self._sampler = StimulusDelaySampler(
            min_ms=self._config.min_wait_ms,
            max_ms=self._config.max_wait_ms,
            seed=seed,
        )
        self._validator = validator or ReactionValidator.from_config(self._config)
        self._store = store
        self._user_id = user_id
        self._game_type = game_type
        self._wall_clock = wall_clock
        self._session_id_factory = session_id_factory

        self._machine = TrialMachine()
        self._finalized = False
        self._session: Session | None = None
        self._persisted = False
        self._last_stimulus_delay_ms: int | None = None

    @property
    def config(self) -> ReactionConfig:
        return self._config

    @property
    def state(self) -> TrialState:
        return self._machine.state

    @property
    def machine(self) -> TrialMachine:
        return self._machine

    @property
    def paused(self) -> bool:
        return self._machine.paused

    @property
    def finished(self) -> bool:
        return self._machine.finished

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def persisted(self) -> bool:
        return self._persisted

    @property
    def last_stimulus_delay_ms(self) -> int | None:
        return self._last_stimulus_delay_ms

    @property
    def timers(self) -> TrialClock:
        return self._timers

    def attempts(self) -> list[Attempt]:
        return list(self._machine.attempts)

    def statistics(self) -> Statistics:
        return SessionAggregator.aggregate(self._machine.attempts)

    def can_exit(self) -> bool:
        return self._machine.state is TrialState.IDLE or self._machine.finished

    def start(self) -> None:
        self._dispatch(Start())

    def tap(self) -> None:
        # Overdue timers fire first so a late tap cannot beat its own timeout.
        self._timers.update()
        self._dispatch(Tap(now_s=self._clock.now(), at=self._wall_clock()))

    def pause(self) -> None:
        self._dispatch(Pause())

    def resume(self) -> None:
        self._dispatch(Resume())

    def abort(self) -> Session | None:
        self._dispatch(Abort())
        return self._session

    def stop(self) -> Session | None:
        self._dispatch(Stop())
        return self._session

    def complete_game(self) -> Session | None:
        """Manual completion path; safe to call after the timers already finished."""
        if not self._machine.finished:
            self._dispatch(Stop())
        return self._session

    def update(self) -> None:
        self._timers.update()

    def snapshot(self) -> TrialSnapshot:
        m = self._machine
        total = self._config.total_rounds
        recorded = len(m.attempts)
        return TrialSnapshot(
            state=m.state,
            paused=m.paused,
            prompt=self.current_prompt(),
            round_number=min(total, recorded + (0 if m.state is TrialState.IDLE or m.finished else 1)),
            total_rounds=total,
            recorded_attempts=recorded,
            progress_pct=(recorded / total) * 100.0,
            stimulus_visible=m.state is TrialState.READY and not m.paused,
            last_attempt=m.attempts[-1] if m.attempts else None,
        )

    def current_prompt(self) -> str:
        m = self._machine
        if m.paused:
            return "Paused. Press P to continue."
        state = m.state
        if state is TrialState.IDLE:
            return "Tap to start."
        if state is TrialState.COUNTDOWN:
            return "Get ready..."
        if state is TrialState.WAITING:
            return "Wait for green..."
        if state is TrialState.READY:
            return "TAP NOW!"
        if state is TrialState.TAP_DETECTED:
            last = m.attempts[-1]
            if last.is_valid:
                return f"Great! {format_time_ms(last.reaction_time_ms)}"
            return "Too early!"
        if state is TrialState.ROUND_COMPLETE:
            return f"Round {len(m.attempts) + 1} coming up..."
        if state is TrialState.GAME_COMPLETE:
            return "Game complete!"
        if m.finished:
            return "Session aborted." if m.aborted else "No valid reactions this time."
        if m.last_fail_reason is FailReason.TIMEOUT:
            return "Too slow!"
        return "Too early!"

    def _dispatch(self, event: TrialEvent) -> None:
        machine, effects = transition(
            self._machine,
            event,
            config=self._config,
            validator=self._validator,
        )
        self._machine = machine
        for effect in effects:
            self._apply(effect)

    def _apply(self, effect: TrialEffect) -> None:
        if isinstance(effect, ScheduleTimer):
            self._timers.schedule_after(effect.phase, effect.delay_ms, self._on_timer)
        elif isinstance(effect, ScheduleStimulus):
            delay = self._sampler.next_delay_ms()
            self._last_stimulus_delay_ms = delay
            self._timers.schedule_after(TimerPhase.STIMULUS, delay, self._on_timer)
        elif isinstance(effect, CancelTimer):
            self._timers.cancel_phase(effect.phase)
        elif isinstance(effect, CancelAllTimers):
            self._timers.cancel_all()
        elif isinstance(effect, FinalizeSession):
            self._finalize(effect)
        else:
            raise TypeError(f"unknown trial effect: {effect!r}")

    def _on_timer(self, handle: TimerHandle) -> None:
        self._dispatch(TimerFired(phase=handle.phase, now_s=self._clock.now(), at=self._wall_clock()))

    def _finalize(self, effect: FinalizeSession) -> None:
        if self._finalized:
            logger.debug("session already finalized; ignoring duplicate completion")
            return
        self._finalized = True

        at = self._wall_clock()
        attempts = self._machine.attempts
        session = Session(
            id=self._session_id_factory(at),
            game_type=self._game_type,
            user_id=self._user_id,
            timestamp=at,
            attempts=attempts,
            statistics=SessionAggregator.aggregate(attempts),
            is_completed=effect.is_completed,
            is_failed=effect.is_failed,
            fail_reason=effect.fail_reason,
        )
        self._session = session
        logger.info(
            "session %s finished: completed=%s failed=%s valid=%d/%d",
            session.id,
            session.is_completed,
            session.is_failed,
            session.statistics.valid_attempts,
            session.statistics.total_attempts,
        )

        if self._store is None:
            return
        try:
            self._session = self._store.save_session(session)
        except StoreError:
            logger.warning("could not persist session %s; keeping it in memory only", session.id, exc_info=True)
            return
        self._persisted = True


def build_tap_test(
    *,
    clock: Clock,
    seed: int | None = None,
    config: ReactionConfig | None = None,
    store: SessionStore | None = None,
    user_id: str = "local",
) -> TrialEngine:
    return TrialEngine(clock=clock, config=config, store=store, user_id=user_id, seed=seed)
