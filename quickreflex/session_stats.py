from __future__ import annotations

import math
from collections.abc import Sequence
from enum import StrEnum

from .models import Attempt, Statistics


def round_half_up(x: float) -> int:
    # Matches the rounding players see on the result screen (2.5 -> 3, -2.5 -> -2).
    return int(math.floor(x + 0.5))


class SessionAggregator:
    """Builds per-session Statistics from a finished Attempt list."""

    @staticmethod
    def aggregate(attempts: Sequence[Attempt]) -> Statistics:
        times = [a.reaction_time_ms for a in attempts if a.is_valid]
        if not times:
            return Statistics(
                average_time_ms=0,
                best_time_ms=0,
                worst_time_ms=0,
                total_attempts=len(attempts),
                valid_attempts=0,
            )
        return Statistics(
            average_time_ms=round_half_up(sum(times) / len(times)),
            best_time_ms=min(times),
            worst_time_ms=max(times),
            total_attempts=len(attempts),
            valid_attempts=len(times),
        )

    @staticmethod
    def is_failed(statistics: Statistics) -> bool:
        return statistics.valid_attempts == 0


def aggregate(attempts: Sequence[Attempt]) -> Statistics:
    return SessionAggregator.aggregate(attempts)


def accuracy_pct(statistics: Statistics) -> int:
    if statistics.total_attempts == 0:
        return 0
    return round_half_up(statistics.valid_attempts * 100 / statistics.total_attempts)


class PerformanceRating(StrEnum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    AVERAGE = "AVERAGE"
    SLOW = "SLOW"
    NO_DATA = "NO_DATA"


def performance_rating(average_time_ms: float, *, has_valid_attempts: bool = True) -> PerformanceRating:
    if not has_valid_attempts or average_time_ms <= 0:
        return PerformanceRating.NO_DATA
    if average_time_ms <= 200:
        return PerformanceRating.EXCELLENT
    if average_time_ms <= 300:
        return PerformanceRating.GOOD
    if average_time_ms <= 500:
        return PerformanceRating.AVERAGE
    return PerformanceRating.SLOW


def format_time_ms(milliseconds: float) -> str:
    return f"{round_half_up(milliseconds)}ms"
