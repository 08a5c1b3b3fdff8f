from __future__ import annotations

from datetime import datetime, timedelta, timezone

from quickreflex.history import InsightKey
from quickreflex.models import Attempt, GameType, Session
from quickreflex.results import build_result_report, should_submit, submission_request
from quickreflex.session_stats import PerformanceRating, aggregate
from quickreflex.store import InMemorySessionStore, StoreError

T0 = datetime(2024, 8, 1, tzinfo=timezone.utc)


def make_session(
    n: int,
    times: list[int],
    *,
    failed: bool = False,
) -> Session:
    attempts = tuple(Attempt(i + 1, ms, ms > 0, T0) for i, ms in enumerate(times))
    return Session(
        id=f"session_{n}",
        game_type=GameType.TAP_TEST,
        user_id="local",
        timestamp=T0 + timedelta(minutes=n),
        attempts=attempts,
        statistics=aggregate(attempts),
        is_completed=True,
        is_failed=failed,
    )


class BrokenStore:
    def save_session(self, session: Session) -> Session:
        raise StoreError("locked")

    def recent_sessions(self, limit: int = 10) -> list[Session]:
        raise StoreError("locked")

    def best_session(self) -> Session | None:
        raise StoreError("locked")


def test_submission_request_from_session() -> None:
    session = make_session(1, [250, 0, 300])
    req = submission_request(session, games_played=2)
    assert req.best_time_ms == 250
    assert req.average_time_ms == 275
    assert req.accuracy_pct == 67
    assert req.games_played == 2
    assert req.attempts == session.attempts
    assert should_submit(session) is True
    assert should_submit(make_session(2, [0], failed=True)) is False


def test_first_session_is_not_a_new_record() -> None:
    store = InMemorySessionStore()
    session = store.save_session(make_session(1, [220, 240]))

    report = build_result_report(session, store)
    assert report.history_available is True
    assert report.personal_best_ms == 220
    assert report.is_new_record is False
    assert report.previous_average_ms is None
    assert report.rating is PerformanceRating.GOOD
    assert report.accuracy_pct == 100


def test_beating_the_stored_best_is_a_new_record() -> None:
    store = InMemorySessionStore()
    store.save_session(make_session(1, [300, 320]))
    session = store.save_session(make_session(2, [200, 210]))

    report = build_result_report(session, store)
    assert report.is_new_record is True
    assert report.personal_best_ms == 200
    assert report.previous_average_ms == 310
    assert InsightKey.IMPROVED in [i.key for i in report.insights]


def test_slower_session_keeps_old_record() -> None:
    store = InMemorySessionStore()
    store.save_session(make_session(1, [200]))
    session = store.save_session(make_session(2, [260]))

    report = build_result_report(session, store)
    assert report.is_new_record is False
    assert report.personal_best_ms == 200


def test_report_without_history() -> None:
    session = make_session(1, [180, 190])
    for store in (None, BrokenStore()):
        report = build_result_report(session, store)  # type: ignore[arg-type]
        assert report.history_available is False
        assert report.personal_best_ms is None
        assert report.is_new_record is False
        assert report.rating is PerformanceRating.EXCELLENT
        assert InsightKey.EXCELLENT in [i.key for i in report.insights]


def test_failed_session_report() -> None:
    store = InMemorySessionStore()
    session = store.save_session(make_session(1, [0, 0], failed=True))
    report = build_result_report(session, store)
    assert report.rating is PerformanceRating.NO_DATA
    assert report.accuracy_pct == 0
    assert [i.key for i in report.insights] == [InsightKey.PLAY_MORE]
