"""Leaderboard transports.

``HttpLeaderboardTransport`` speaks JSON to the remote leaderboard API;
``LocalLeaderboardTransport`` answers the same calls from an in-process
``LocalLeaderboard``. Both raise ``TransportError`` for anything that is not
a well-formed answer.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime, timezone
from typing import Any, Protocol

from .leaderboard import LocalLeaderboard
from .models import (
    Attempt,
    GameType,
    LeaderboardEntry,
    LeaderboardResponse,
    PlayerIdentity,
    Statistics,
    SubmitOutcome,
    SubmitScoreRequest,
    UserLeaderboardStats,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.sprinttap.com"
API_VERSION = "v1"


class TransportError(Exception):
    """Raised when the leaderboard backend is unreachable or answers badly."""


class LeaderboardTransport(Protocol):
    def submit_score(
        self,
        game_type: GameType,
        identity: PlayerIdentity,
        request: SubmitScoreRequest,
    ) -> SubmitOutcome: ...

    def get_leaderboard(
        self,
        game_type: GameType,
        limit: int = 100,
        *,
        user_id: str | None = None,
    ) -> LeaderboardResponse: ...

    def health_check(self) -> bool: ...


def _epoch_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _from_epoch_ms(value: object) -> datetime:
    return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)


def _attempt_to_json(a: Attempt) -> dict[str, Any]:
    return {
        "attemptNumber": a.attempt_number,
        "reactionTime": a.reaction_time_ms,
        "isValid": a.is_valid,
        "timestamp": _epoch_ms(a.timestamp),
    }


def _statistics_to_json(s: Statistics) -> dict[str, Any]:
    return {
        "averageTime": s.average_time_ms,
        "bestTime": s.best_time_ms,
        "worstTime": s.worst_time_ms,
        "totalAttempts": s.total_attempts,
        "validAttempts": s.valid_attempts,
    }


def submit_request_to_json(
    game_type: GameType,
    identity: PlayerIdentity,
    request: SubmitScoreRequest,
    *,
    sent_at: datetime,
) -> dict[str, Any]:
    return {
        "userId": identity.user_id,
        "nickname": identity.nickname,
        "gameType": game_type.value,
        "bestTime": request.best_time_ms,
        "averageTime": request.average_time_ms,
        "gamesPlayed": request.games_played,
        "accuracy": request.accuracy_pct,
        "sessionData": {
            "attempts": [_attempt_to_json(a) for a in request.attempts],
            "statistics": None if request.statistics is None else _statistics_to_json(request.statistics),
            "timestamp": _epoch_ms(sent_at),
        },
    }


def entry_from_json(data: dict[str, Any]) -> LeaderboardEntry:
    rank = data.get("rank")
    return LeaderboardEntry(
        id=str(data["id"]),
        user_id=str(data["userId"]),
        nickname=str(data["nickname"]),
        game_type=GameType(data["gameType"]),
        best_time_ms=float(data["bestTime"]),
        average_time_ms=float(data["averageTime"]),
        games_played=int(data["gamesPlayed"]),
        accuracy_pct=int(data["accuracy"]),
        timestamp=_from_epoch_ms(data["timestamp"]),
        rank=None if rank is None else int(rank),
    )


def user_stats_from_json(data: dict[str, Any] | None) -> UserLeaderboardStats | None:
    if not data:
        return None
    current = data.get("currentRank")
    return UserLeaderboardStats(
        user_id=str(data["userId"]),
        nickname=str(data["nickname"]),
        best_rank=int(data["bestRank"]),
        current_rank=None if current is None else int(current),
        total_games_played=int(data["totalGamesPlayed"]),
        best_time_ms=float(data["bestTime"]),
        average_time_ms=float(data["averageTime"]),
        accuracy_pct=int(data["accuracy"]),
    )


class HttpLeaderboardTransport:
    def __init__(self, base_url: str = DEFAULT_BASE_URL, *, timeout_s: float = 5.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = max(0.5, float(timeout_s))

    def _url(self, endpoint: str, params: dict[str, str] | None = None) -> str:
        url = f"{self._base_url}/{API_VERSION}/{endpoint}"
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        return url

    def _call(self, url: str, *, method: str = "GET", body: dict[str, Any] | None = None) -> Any:
        data = None if body is None else json.dumps(body).encode("utf-8")
        req = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            method=method,
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout_s) as resp:
                raw = resp.read().decode("utf-8") or "{}"
                return json.loads(raw)
        except urllib.error.HTTPError as exc:
            raise TransportError(f"leaderboard returned HTTP {exc.code} for {url}") from exc
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise TransportError(f"leaderboard unreachable at {url}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise TransportError(f"leaderboard sent invalid JSON for {url}") from exc

    def submit_score(
        self,
        game_type: GameType,
        identity: PlayerIdentity,
        request: SubmitScoreRequest,
    ) -> SubmitOutcome:
        body = submit_request_to_json(game_type, identity, request, sent_at=datetime.now(timezone.utc))
        payload = self._call(self._url("leaderboard/submit"), method="POST", body=body)
        if not isinstance(payload, dict) or "success" not in payload:
            raise TransportError("leaderboard submit response is missing 'success'")
        rank = payload.get("rank", payload.get("newRank"))
        return SubmitOutcome(
            success=bool(payload["success"]),
            rank=None if rank is None else int(rank),
            is_new_record=bool(payload.get("isNewRecord", False)),
        )

    def get_leaderboard(
        self,
        game_type: GameType,
        limit: int = 100,
        *,
        user_id: str | None = None,
    ) -> LeaderboardResponse:
        params = {"gameType": game_type.value, "limit": str(int(limit))}
        if user_id:
            params["userId"] = user_id
        payload = self._call(self._url("leaderboard", params))
        try:
            return LeaderboardResponse(
                entries=tuple(entry_from_json(e) for e in payload["entries"]),
                user_stats=user_stats_from_json(payload.get("userStats")),
                total_users=int(payload["totalUsers"]),
                last_updated=_from_epoch_ms(payload["lastUpdated"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TransportError(f"malformed leaderboard response: {exc}") from exc

    def health_check(self) -> bool:
        try:
            self._call(self._url("health"))
        except TransportError:
            logger.warning("leaderboard health check failed", exc_info=True)
            return False
        return True


class LocalLeaderboardTransport:
    """Serves leaderboard calls from memory; useful offline and in tests."""

    def __init__(self, board: LocalLeaderboard | None = None, *, available: bool = True) -> None:
        self._board = board or LocalLeaderboard()
        self.available = available

    @property
    def board(self) -> LocalLeaderboard:
        return self._board

    def _require_available(self) -> None:
        if not self.available:
            raise TransportError("local leaderboard is switched off")

    def submit_score(
        self,
        game_type: GameType,
        identity: PlayerIdentity,
        request: SubmitScoreRequest,
    ) -> SubmitOutcome:
        self._require_available()
        return self._board.submit(identity, game_type, request)

    def get_leaderboard(
        self,
        game_type: GameType,
        limit: int = 100,
        *,
        user_id: str | None = None,
    ) -> LeaderboardResponse:
        self._require_available()
        return self._board.leaderboard(game_type, limit=limit, user_id=user_id)

    def health_check(self) -> bool:
        return self.available
