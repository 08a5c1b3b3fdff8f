from __future__ import annotations

import json
import urllib.error
from datetime import datetime, timezone
from io import BytesIO
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from quickreflex.leaderboard import LocalLeaderboard
from quickreflex.models import Attempt, GameType, PlayerIdentity, Statistics, SubmitScoreRequest
from quickreflex.transport import (
    HttpLeaderboardTransport,
    LocalLeaderboardTransport,
    TransportError,
    entry_from_json,
    submit_request_to_json,
)

URLOPEN = "quickreflex.transport.urllib.request.urlopen"
T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)
ME = PlayerIdentity("user-1", "Speedy", opted_in=True)


def _response(payload: Any) -> MagicMock:
    mock_response = MagicMock()
    mock_response.read.return_value = json.dumps(payload).encode("utf-8")
    mock_response.__enter__ = lambda s: s
    mock_response.__exit__ = MagicMock(return_value=False)
    return mock_response


def _request() -> SubmitScoreRequest:
    attempts = (Attempt(1, 240, True, T0),)
    return SubmitScoreRequest(
        best_time_ms=240,
        average_time_ms=240,
        games_played=1,
        accuracy_pct=100,
        attempts=attempts,
        statistics=Statistics(240, 240, 240, 1, 1),
    )


def _entry_json(rank: int, best: float) -> dict[str, Any]:
    return {
        "id": f"u{rank}_TAP_TEST",
        "userId": f"u{rank}",
        "nickname": f"U{rank}",
        "gameType": "TAP_TEST",
        "bestTime": best,
        "averageTime": best + 40,
        "gamesPlayed": 12,
        "accuracy": 90,
        "timestamp": 1717200000000,
        "rank": rank,
    }


def test_submit_payload_uses_camel_case_fields() -> None:
    body = submit_request_to_json(GameType.TAP_TEST, ME, _request(), sent_at=T0)
    assert body["userId"] == "user-1"
    assert body["gameType"] == "TAP_TEST"
    assert body["bestTime"] == 240
    assert body["accuracy"] == 100
    assert body["sessionData"]["attempts"][0] == {
        "attemptNumber": 1,
        "reactionTime": 240,
        "isValid": True,
        "timestamp": int(T0.timestamp() * 1000),
    }
    assert body["sessionData"]["statistics"]["validAttempts"] == 1


def test_entry_from_json() -> None:
    e = entry_from_json(_entry_json(1, 201.5))
    assert e.user_id == "u1"
    assert e.game_type is GameType.TAP_TEST
    assert e.best_time_ms == 201.5
    assert e.rank == 1
    assert e.timestamp == datetime(2024, 6, 1, tzinfo=timezone.utc)


def test_submit_score_posts_json_and_parses_outcome() -> None:
    transport = HttpLeaderboardTransport("https://example.test/")
    with patch(URLOPEN, return_value=_response({"success": True, "rank": 7, "isNewRecord": True})) as urlopen:
        outcome = transport.submit_score(GameType.TAP_TEST, ME, _request())

    assert (outcome.success, outcome.rank, outcome.is_new_record) == (True, 7, True)
    req = urlopen.call_args.args[0]
    assert req.full_url == "https://example.test/v1/leaderboard/submit"
    assert req.get_method() == "POST"
    assert json.loads(req.data)["nickname"] == "Speedy"


def test_get_leaderboard_builds_query_and_parses_entries() -> None:
    payload = {
        "entries": [_entry_json(1, 190), _entry_json(2, 220)],
        "userStats": {
            "userId": "user-1",
            "nickname": "Speedy",
            "bestRank": 2,
            "currentRank": 2,
            "totalGamesPlayed": 4,
            "bestTime": 220,
            "averageTime": 260,
            "accuracy": 88,
        },
        "totalUsers": 2,
        "lastUpdated": 1717200000000,
    }
    transport = HttpLeaderboardTransport("https://example.test")
    with patch(URLOPEN, return_value=_response(payload)) as urlopen:
        resp = transport.get_leaderboard(GameType.TAP_TEST, 50, user_id="user-1")

    url = urlopen.call_args.args[0].full_url
    assert url.startswith("https://example.test/v1/leaderboard?")
    assert "gameType=TAP_TEST" in url
    assert "limit=50" in url
    assert "userId=user-1" in url
    assert [e.rank for e in resp.entries] == [1, 2]
    assert resp.user_stats is not None
    assert resp.user_stats.best_rank == 2
    assert resp.total_users == 2
    assert resp.is_synthetic is False


def test_http_error_becomes_transport_error() -> None:
    http_error = urllib.error.HTTPError(
        url="https://example.test/v1/leaderboard/submit",
        code=500,
        msg="Server Error",
        hdrs=None,
        fp=BytesIO(b'{"error":"boom"}'),
    )
    transport = HttpLeaderboardTransport("https://example.test")
    with patch(URLOPEN, side_effect=http_error):
        with pytest.raises(TransportError):
            transport.submit_score(GameType.TAP_TEST, ME, _request())


def test_unreachable_and_malformed_responses_raise() -> None:
    transport = HttpLeaderboardTransport("https://example.test")
    with patch(URLOPEN, side_effect=urllib.error.URLError("no route")):
        with pytest.raises(TransportError):
            transport.get_leaderboard(GameType.TAP_TEST)

    with patch(URLOPEN, return_value=_response({"entries": "nope"})):
        with pytest.raises(TransportError):
            transport.get_leaderboard(GameType.TAP_TEST)

    with patch(URLOPEN, return_value=_response({"rank": 1})):
        with pytest.raises(TransportError):
            transport.submit_score(GameType.TAP_TEST, ME, _request())


def test_health_check_reports_false_when_down() -> None:
    transport = HttpLeaderboardTransport("https://example.test")
    with patch(URLOPEN, return_value=_response({"status": "ok"})):
        assert transport.health_check() is True
    with patch(URLOPEN, side_effect=TimeoutError()):
        assert transport.health_check() is False


def test_local_transport_serves_board_and_can_go_offline() -> None:
    transport = LocalLeaderboardTransport(LocalLeaderboard())
    outcome = transport.submit_score(GameType.TAP_TEST, ME, _request())
    assert outcome.success is True
    assert outcome.rank == 1

    resp = transport.get_leaderboard(GameType.TAP_TEST, user_id="user-1")
    assert [e.user_id for e in resp.entries] == ["user-1"]
    assert resp.user_stats is not None

    transport.available = False
    assert transport.health_check() is False
    with pytest.raises(TransportError):
        transport.get_leaderboard(GameType.TAP_TEST)
