"""Cross-session analysis: improvement trend, consistency and insight tags.

Every function here is pure. Session lists are expected most-recent-first,
the order ``SessionStore.recent_sessions`` returns.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from .models import Attempt, Session
from .session_stats import round_half_up

TREND_WINDOW = 5
TREND_DEAD_ZONE_PCT = 5.0
EXCELLENT_AVERAGE_MS = 250
NEEDS_PRACTICE_AVERAGE_MS = 500


class TrendDirection(StrEnum):
    IMPROVING = "IMPROVING"
    STABLE = "STABLE"
    DECLINING = "DECLINING"


class ConsistencyRating(StrEnum):
    VERY_CONSISTENT = "VERY_CONSISTENT"
    CONSISTENT = "CONSISTENT"
    MODERATE = "MODERATE"
    INCONSISTENT = "INCONSISTENT"


class InsightKey(StrEnum):
    PLAY_MORE = "playMore"
    IMPROVED = "improved"
    DECLINED = "declined"
    STABLE = "stable"
    CONSISTENT = "consistent"
    INCONSISTENT = "inconsistent"
    EXCELLENT = "excellent"
    NEEDS_PRACTICE = "needsPractice"


@dataclass(frozen=True, slots=True)
class Trend:
    direction: TrendDirection
    percentage: int


@dataclass(frozen=True, slots=True)
class Consistency:
    score: int
    rating: ConsistencyRating


@dataclass(frozen=True, slots=True)
class Insight:
    key: InsightKey
    params: dict[str, int] | None = None


@dataclass(frozen=True, slots=True)
class HistorySummary:
    total_games: int
    completed_games: int
    average_reaction_ms: int
    best_reaction_ms: int
    worst_reaction_ms: int
    success_rate_pct: int


def _successful(sessions: Sequence[Session]) -> list[Session]:
    return [s for s in sessions if s.is_completed and not s.is_failed]


class HistoryAnalyzer:
    @staticmethod
    def trend(sessions: Sequence[Session]) -> Trend:
        recent = [s for s in _successful(sessions) if s.statistics.average_time_ms > 0]
        recent = recent[:TREND_WINDOW]
        recent.reverse()  # oldest -> newest
        if len(recent) < 2:
            return Trend(TrendDirection.STABLE, 0)

        first = recent[0].statistics.average_time_ms
        last = recent[-1].statistics.average_time_ms
        if first == 0 or last == 0:
            return Trend(TrendDirection.STABLE, 0)

        pct = ((first - last) / first) * 100.0
        if abs(pct) < TREND_DEAD_ZONE_PCT:
            return Trend(TrendDirection.STABLE, round_half_up(pct))
        if pct > 0:
            return Trend(TrendDirection.IMPROVING, round_half_up(pct))
        return Trend(TrendDirection.DECLINING, round_half_up(abs(pct)))

    @staticmethod
    def consistency(attempts: Sequence[Attempt]) -> Consistency:
        times = [a.reaction_time_ms for a in attempts if a.is_valid]
        if len(times) < 2:
            return Consistency(0, ConsistencyRating.INCONSISTENT)

        mean = sum(times) / len(times)
        if mean <= 0:
            return Consistency(0, ConsistencyRating.INCONSISTENT)
        variance = sum((t - mean) ** 2 for t in times) / len(times)
        raw = max(0.0, 100.0 - (math.sqrt(variance) / mean) * 100.0)

        if raw >= 80:
            rating = ConsistencyRating.VERY_CONSISTENT
        elif raw >= 60:
            rating = ConsistencyRating.CONSISTENT
        elif raw >= 40:
            rating = ConsistencyRating.MODERATE
        else:
            rating = ConsistencyRating.INCONSISTENT
        return Consistency(round_half_up(raw), rating)

    @classmethod
    def insights(cls, sessions: Sequence[Session]) -> list[Insight]:
        completed = _successful(sessions)
        if not completed:
            return [Insight(InsightKey.PLAY_MORE)]

        out: list[Insight] = []
        trend = cls.trend(completed)
        if trend.direction is TrendDirection.IMPROVING:
            out.append(Insight(InsightKey.IMPROVED, {"percentage": trend.percentage}))
        elif trend.direction is TrendDirection.DECLINING:
            out.append(Insight(InsightKey.DECLINED, {"percentage": trend.percentage}))
        else:
            out.append(Insight(InsightKey.STABLE))

        latest = completed[0]
        rating = cls.consistency(latest.attempts).rating
        if rating is ConsistencyRating.VERY_CONSISTENT:
            out.append(Insight(InsightKey.CONSISTENT))
        elif rating is ConsistencyRating.INCONSISTENT:
            out.append(Insight(InsightKey.INCONSISTENT))

        avg = latest.statistics.average_time_ms
        if avg > 0:
            if avg < EXCELLENT_AVERAGE_MS:
                out.append(Insight(InsightKey.EXCELLENT))
            elif avg > NEEDS_PRACTICE_AVERAGE_MS:
                out.append(Insight(InsightKey.NEEDS_PRACTICE))
        return out

    @staticmethod
    def summary(sessions: Sequence[Session]) -> HistorySummary:
        completed = _successful(sessions)
        if not completed:
            return HistorySummary(
                total_games=len(sessions),
                completed_games=0,
                average_reaction_ms=0,
                best_reaction_ms=0,
                worst_reaction_ms=0,
                success_rate_pct=0,
            )
        averages = [s.statistics.average_time_ms for s in completed]
        return HistorySummary(
            total_games=len(sessions),
            completed_games=len(completed),
            average_reaction_ms=round_half_up(sum(averages) / len(averages)),
            best_reaction_ms=min(s.statistics.best_time_ms for s in completed),
            worst_reaction_ms=max(s.statistics.worst_time_ms for s in completed),
            success_rate_pct=round_half_up(len(completed) * 100 / len(sessions)),
        )
