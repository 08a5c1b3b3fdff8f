from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class TimerPhase(StrEnum):
    COUNTDOWN = "countdown"
    STIMULUS = "stimulus"
    TIMEOUT = "timeout"
    DISPLAY = "display"
    ROUND_DELAY = "round_delay"


@dataclass(frozen=True, slots=True)
class TimerHandle:
    phase: TimerPhase
    generation: int


@dataclass(slots=True)
class _PendingTimer:
    handle: TimerHandle
    due_s: float
    callback: Callable[[TimerHandle], None]


class TrialClock:
    """Owns every delayed callback of a running trial.

    - One pending timer per phase; scheduling a phase replaces its old timer.
    - Timers fire cooperatively from ``update()``, in due order.
    - A callback only runs while its handle is the current one for its phase.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._pending: dict[TimerPhase, _PendingTimer] = {}
        self._generation = 0
        self._suspended: tuple[TimerPhase, ...] = ()

    @property
    def suspended_phases(self) -> tuple[TimerPhase, ...]:
        """Phases that were pending when ``cancel_all`` last ran."""
        return self._suspended

    def schedule_after(
        self,
        phase: TimerPhase,
        delay_ms: float,
        callback: Callable[[TimerHandle], None],
    ) -> TimerHandle:
        if delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        self._generation += 1
        handle = TimerHandle(phase=phase, generation=self._generation)
        self._pending[phase] = _PendingTimer(
            handle=handle,
            due_s=self._clock.now() + float(delay_ms) / 1000.0,
            callback=callback,
        )
        return handle

    def cancel(self, handle: TimerHandle) -> bool:
        if not self.is_current(handle):
            return False
        del self._pending[handle.phase]
        return True

    def cancel_phase(self, phase: TimerPhase) -> None:
        self._pending.pop(phase, None)

    def cancel_all(self) -> tuple[TimerPhase, ...]:
        phases = tuple(self._pending)
        self._pending.clear()
        self._suspended = phases
        return phases

    def is_current(self, handle: TimerHandle) -> bool:
        pending = self._pending.get(handle.phase)
        return pending is not None and pending.handle == handle

    def pending_phases(self) -> tuple[TimerPhase, ...]:
        return tuple(self._pending)

    def remaining_ms(self, phase: TimerPhase) -> float | None:
        pending = self._pending.get(phase)
        if pending is None:
            return None
        return max(0.0, (pending.due_s - self._clock.now()) * 1000.0)

    def update(self) -> int:
        """Fire every due timer. Returns the number of callbacks run."""

        fired = 0
        now = self._clock.now()
        due = sorted(
            (p for p in self._pending.values() if p.due_s <= now),
            key=lambda p: (p.due_s, p.handle.generation),
        )
        for timer in due:
            # An earlier callback in this pass may have cancelled or replaced it.
            if not self.is_current(timer.handle):
                continue
            del self._pending[timer.handle.phase]
            timer.callback(timer.handle)
            fired += 1
        return fired


class StimulusDelaySampler:
    """Uniform integer delays in ``[min_ms, max_ms]`` from a seeded stream."""

    def __init__(self, *, min_ms: int, max_ms: int, seed: int | None = None) -> None:
        if min_ms > max_ms:
            raise ValueError("min_ms must be <= max_ms")
        self._min_ms = int(min_ms)
        self._max_ms = int(max_ms)
        self._rng = random.Random(seed)

    def next_delay_ms(self) -> int:
        return self._rng.randint(self._min_ms, self._max_ms)
