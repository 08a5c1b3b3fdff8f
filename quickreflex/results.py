from __future__ import annotations

import logging
from dataclasses import dataclass

from .history import HistoryAnalyzer, Insight
from .models import Session, SubmitScoreRequest
from .session_stats import PerformanceRating, accuracy_pct, performance_rating
from .store import SessionStore, StoreError

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10


@dataclass(frozen=True, slots=True)
class ResultReport:
    """Everything the results view shows for one finished session.

    History-derived fields are ``None``/empty when the store could not be
    read; the session's own numbers are always present.
    """

    session: Session
    accuracy_pct: int
    rating: PerformanceRating
    personal_best_ms: int | None
    is_new_record: bool
    previous_average_ms: int | None
    insights: tuple[Insight, ...]
    history_available: bool


def submission_request(session: Session, *, games_played: int = 1) -> SubmitScoreRequest:
    stats = session.statistics
    return SubmitScoreRequest(
        best_time_ms=stats.best_time_ms,
        average_time_ms=stats.average_time_ms,
        games_played=games_played,
        accuracy_pct=accuracy_pct(stats),
        attempts=session.attempts,
        statistics=stats,
    )


def should_submit(session: Session) -> bool:
    return not session.is_failed and session.statistics.valid_attempts > 0


def build_result_report(session: Session, store: SessionStore | None) -> ResultReport:
    """Compare a just-finished session against the stored history.

    Expects ``session`` to be already saved, so it is the newest entry of
    ``recent_sessions`` and may itself be the stored personal best.
    """

    stats = session.statistics
    base = dict(
        session=session,
        accuracy_pct=accuracy_pct(stats),
        rating=performance_rating(stats.average_time_ms, has_valid_attempts=stats.valid_attempts > 0),
    )
    if store is None:
        return ResultReport(
            **base,
            personal_best_ms=None,
            is_new_record=False,
            previous_average_ms=None,
            insights=tuple(HistoryAnalyzer.insights([session])),
            history_available=False,
        )

    try:
        best = store.best_session()
        recent = store.recent_sessions(HISTORY_WINDOW)
    except StoreError:
        logger.warning("session history unavailable; showing this session only", exc_info=True)
        return ResultReport(
            **base,
            personal_best_ms=None,
            is_new_record=False,
            previous_average_ms=None,
            insights=tuple(HistoryAnalyzer.insights([session])),
            history_available=False,
        )

    previous = [s for s in recent if s.id != session.id]
    had_success_before = any(s.is_completed and not s.is_failed for s in previous)
    is_new_record = (
        should_submit(session)
        and had_success_before
        and best is not None
        and best.id == session.id
    )
    history = [session, *previous][:HISTORY_WINDOW]

    return ResultReport(
        **base,
        personal_best_ms=None if best is None else best.statistics.best_time_ms,
        is_new_record=is_new_record,
        previous_average_ms=previous[0].statistics.average_time_ms if previous else None,
        insights=tuple(HistoryAnalyzer.insights(history)),
        history_available=True,
    )
