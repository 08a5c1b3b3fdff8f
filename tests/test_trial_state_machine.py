from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from quickreflex.clock import TimerPhase
from quickreflex.config import ReactionConfig
from quickreflex.models import Attempt, FailReason, TrialState
from quickreflex.trial import (
    Abort,
    CancelAllTimers,
    CancelTimer,
    FinalizeSession,
    Pause,
    Resume,
    ScheduleStimulus,
    ScheduleTimer,
    Start,
    Stop,
    Tap,
    TimerFired,
    TrialMachine,
    transition,
)
from quickreflex.validation import ReactionValidator

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
CFG = ReactionConfig()
VALIDATOR = ReactionValidator.from_config(CFG)


def step(machine: TrialMachine, event: object, config: ReactionConfig = CFG):
    return transition(machine, event, config=config, validator=VALIDATOR)  # type: ignore[arg-type]


def fired(phase: TimerPhase, now_s: float = 0.0) -> TimerFired:
    return TimerFired(phase=phase, now_s=now_s, at=T0)


def tap(now_s: float) -> Tap:
    return Tap(now_s=now_s, at=T0)


def test_start_enters_countdown() -> None:
    m, effects = step(TrialMachine(), Start())
    assert m.state is TrialState.COUNTDOWN
    assert effects == (ScheduleTimer(TimerPhase.COUNTDOWN, 3000),)


def test_tap_while_idle_starts_the_game() -> None:
    m, effects = step(TrialMachine(), tap(0.0))
    assert m.state is TrialState.COUNTDOWN
    assert m.attempts == ()
    assert effects == (ScheduleTimer(TimerPhase.COUNTDOWN, 3000),)


def test_countdown_then_stimulus_arms_timeout() -> None:
    m, _ = step(TrialMachine(), Start())
    m, effects = step(m, fired(TimerPhase.COUNTDOWN))
    assert m.state is TrialState.WAITING
    assert effects == (ScheduleStimulus(),)

    m, effects = step(m, fired(TimerPhase.STIMULUS, now_s=5.0))
    assert m.state is TrialState.READY
    assert m.ready_at_s == 5.0
    assert effects == (ScheduleTimer(TimerPhase.TIMEOUT, 2000),)


def test_tap_during_countdown_is_ignored() -> None:
    m, _ = step(TrialMachine(), Start())
    m2, effects = step(m, tap(0.5))
    assert m2 == m
    assert effects == ()


def test_early_tap_records_invalid_zero_attempt() -> None:
    m = TrialMachine(state=TrialState.WAITING)
    m, effects = step(m, tap(1.0))
    assert m.state is TrialState.FAILED
    assert m.last_fail_reason is FailReason.EARLY_TAP
    assert m.attempts == (Attempt(1, 0, False, T0),)
    assert effects == (CancelTimer(TimerPhase.STIMULUS), ScheduleTimer(TimerPhase.DISPLAY, 800))


def test_tap_in_ready_measures_elapsed_ms() -> None:
    m = TrialMachine(state=TrialState.READY, ready_at_s=10.0)
    m, effects = step(m, tap(10.251))
    assert m.state is TrialState.TAP_DETECTED
    assert m.attempts[0].reaction_time_ms == 251
    assert m.attempts[0].is_valid is True
    assert m.ready_at_s is None
    assert effects == (CancelTimer(TimerPhase.TIMEOUT), ScheduleTimer(TimerPhase.DISPLAY, 800))


def test_implausibly_fast_tap_is_kept_but_invalid() -> None:
    m = TrialMachine(state=TrialState.READY, ready_at_s=10.0)
    m, _ = step(m, tap(10.05))
    assert m.state is TrialState.TAP_DETECTED
    assert m.attempts[0].reaction_time_ms == 50
    assert m.attempts[0].is_valid is False


def test_timeout_records_invalid_attempt_at_timeout_value() -> None:
    m = TrialMachine(state=TrialState.READY, ready_at_s=0.0)
    m, effects = step(m, fired(TimerPhase.TIMEOUT, now_s=2.0))
    assert m.state is TrialState.FAILED
    assert m.last_fail_reason is FailReason.TIMEOUT
    assert m.attempts[0] == Attempt(1, 2000, False, T0)
    assert ScheduleTimer(TimerPhase.DISPLAY, 800) in effects


def test_display_advances_to_round_complete_then_waiting() -> None:
    m = TrialMachine(state=TrialState.TAP_DETECTED, attempts=(Attempt(1, 250, True, T0),))
    m, effects = step(m, fired(TimerPhase.DISPLAY))
    assert m.state is TrialState.ROUND_COMPLETE
    assert effects == (ScheduleTimer(TimerPhase.ROUND_DELAY, 500),)

    m, effects = step(m, fired(TimerPhase.ROUND_DELAY))
    assert m.state is TrialState.WAITING
    assert effects == (ScheduleStimulus(),)


def test_last_display_completes_the_game() -> None:
    attempts = tuple(Attempt(i, 250, True, T0) for i in range(1, 4))
    m = TrialMachine(state=TrialState.TAP_DETECTED, attempts=attempts)
    m, effects = step(m, fired(TimerPhase.DISPLAY))
    assert m.state is TrialState.GAME_COMPLETE
    assert m.finished is True
    assert effects == (
        CancelAllTimers(),
        FinalizeSession(is_completed=True, is_failed=False, fail_reason=None),
    )


def test_all_invalid_rounds_fail_the_session() -> None:
    attempts = (
        Attempt(1, 0, False, T0),
        Attempt(2, 2000, False, T0),
        Attempt(3, 0, False, T0),
    )
    m = TrialMachine(state=TrialState.FAILED, attempts=attempts, last_fail_reason=FailReason.EARLY_TAP)
    m, effects = step(m, fired(TimerPhase.DISPLAY))
    assert m.state is TrialState.FAILED
    assert m.finished is True
    assert FinalizeSession(is_completed=True, is_failed=True, fail_reason=FailReason.EARLY_TAP) in effects


def test_superseded_timer_is_a_no_op() -> None:
    m = TrialMachine(state=TrialState.TAP_DETECTED, attempts=(Attempt(1, 250, True, T0),))
    m2, effects = step(m, fired(TimerPhase.TIMEOUT))
    assert m2 == m
    assert effects == ()


def test_pause_cancels_timers_and_blocks_input() -> None:
    m = TrialMachine(state=TrialState.WAITING)
    m, effects = step(m, Pause())
    assert m.paused is True
    assert effects == (CancelAllTimers(),)

    m2, effects = step(m, tap(1.0))
    assert m2 == m
    assert effects == ()
    m2, effects = step(m, fired(TimerPhase.STIMULUS))
    assert m2 == m


def test_resume_from_ready_restarts_the_wait() -> None:
    m = TrialMachine(state=TrialState.READY, ready_at_s=3.0, paused=True)
    m, effects = step(m, Resume())
    assert m.paused is False
    assert m.state is TrialState.WAITING
    assert m.ready_at_s is None
    assert effects == (ScheduleStimulus(),)


def test_resume_reschedules_the_current_phase_timer() -> None:
    cases = [
        (TrialState.COUNTDOWN, ScheduleTimer(TimerPhase.COUNTDOWN, 3000)),
        (TrialState.TAP_DETECTED, ScheduleTimer(TimerPhase.DISPLAY, 800)),
        (TrialState.FAILED, ScheduleTimer(TimerPhase.DISPLAY, 800)),
        (TrialState.ROUND_COMPLETE, ScheduleTimer(TimerPhase.ROUND_DELAY, 500)),
    ]
    for state, expected in cases:
        m, effects = step(TrialMachine(state=state, paused=True), Resume())
        assert m.state is state
        assert effects == (expected,)


def test_abort_fails_without_completion() -> None:
    m = TrialMachine(state=TrialState.WAITING, attempts=(Attempt(1, 250, True, T0),))
    m, effects = step(m, Abort())
    assert m.finished is True
    assert m.aborted is True
    assert m.state is TrialState.FAILED
    assert effects[-1] == FinalizeSession(is_completed=False, is_failed=True, fail_reason=None)


def test_stop_before_rounds_are_used_is_not_completed() -> None:
    m = TrialMachine(state=TrialState.ROUND_COMPLETE, attempts=(Attempt(1, 250, True, T0),))
    m, effects = step(m, Stop())
    assert m.state is TrialState.GAME_COMPLETE
    assert effects[-1] == FinalizeSession(is_completed=False, is_failed=False, fail_reason=None)


def test_finished_machine_ignores_everything() -> None:
    m = TrialMachine(state=TrialState.GAME_COMPLETE, finished=True)
    for event in (Start(), tap(1.0), Pause(), Resume(), Abort(), Stop(), fired(TimerPhase.DISPLAY)):
        m2, effects = step(m, event)
        assert m2 == m
        assert effects == ()


def test_idle_ignores_abort_stop_and_pause() -> None:
    m = TrialMachine()
    for event in (Abort(), Stop(), Pause(), Resume()):
        m2, effects = step(m, event)
        assert m2 == m
        assert effects == ()


def test_round_count_follows_config() -> None:
    one_round = replace(CFG, total_rounds=1)
    m = TrialMachine(state=TrialState.TAP_DETECTED, attempts=(Attempt(1, 300, True, T0),))
    m, _ = step(m, fired(TimerPhase.DISPLAY), config=one_round)
    assert m.state is TrialState.GAME_COMPLETE


def test_tap_past_the_response_window_is_a_timeout() -> None:
    cfg = replace(CFG, ready_timeout_ms=1000)
    m = TrialMachine(state=TrialState.READY, ready_at_s=10.0)
    m, effects = step(m, tap(11.5), config=cfg)
    assert m.state is TrialState.FAILED
    assert m.last_fail_reason is FailReason.TIMEOUT
    assert m.attempts == (Attempt(1, 1000, False, T0),)
    assert CancelTimer(TimerPhase.TIMEOUT) in effects
    assert ScheduleTimer(TimerPhase.DISPLAY, 800) in effects


def test_tap_exactly_at_the_deadline_still_counts() -> None:
    m = TrialMachine(state=TrialState.READY, ready_at_s=10.0)
    m, _ = step(m, tap(12.0))
    assert m.state is TrialState.TAP_DETECTED
    assert m.attempts[0].reaction_time_ms == 2000
    assert m.attempts[0].is_valid is True


def test_ready_without_stimulus_time_ignores_tap() -> None:
    m = TrialMachine(state=TrialState.READY, ready_at_s=None)
    m2, effects = step(m, tap(1.0))
    assert m2 == m
    assert effects == ()
