"""Leaderboard ranking: rank computation, personal-best submission policy and
re-ranking under alternate sort keys.

Rank is always a view artifact. Ties on ``best_time_ms`` all receive
"count of strictly better entries + 1" with no secondary tie-break.
"""

from __future__ import annotations

import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import StrEnum

from .models import (
    GameType,
    LeaderboardEntry,
    LeaderboardResponse,
    LeaderboardSource,
    PlayerIdentity,
    SubmitOutcome,
    SubmitScoreRequest,
    UserLeaderboardStats,
    utc_now,
)

TOP_N = 100
SYNTHETIC_ENTRY_COUNT = 10
SYNTHETIC_TOTAL_USERS = 1500


class LeaderboardSortKey(StrEnum):
    BEST_SPEED = "BEST_SPEED"
    BEST_AVERAGE = "BEST_AVERAGE"
    MOST_GAMES = "MOST_GAMES"


class LeaderboardError(Exception):
    """Raised when a player cannot take part in the leaderboard."""


@dataclass(frozen=True, slots=True)
class SubmitDecision:
    accepted: bool
    rank: int | None
    is_new_record: bool


def entry_id(user_id: str, game_type: GameType) -> str:
    return f"{user_id}_{game_type.value}"


class RankingEngine:
    @staticmethod
    def rank(game_type: GameType, candidate_best_ms: float, entries: Iterable[LeaderboardEntry]) -> int:
        better = sum(1 for e in entries if e.game_type is game_type and e.best_time_ms < candidate_best_ms)
        return better + 1

    @staticmethod
    def find(
        entries: Iterable[LeaderboardEntry], *, user_id: str, game_type: GameType
    ) -> LeaderboardEntry | None:
        for e in entries:
            if e.user_id == user_id and e.game_type is game_type:
                return e
        return None

    @classmethod
    def submit(cls, entry: LeaderboardEntry, existing: Sequence[LeaderboardEntry]) -> SubmitDecision:
        """Accept only a first entry or a strict personal-best improvement.

        A rejected entry still reports the rank of the stored best, never the
        candidate's.
        """

        stored = cls.find(existing, user_id=entry.user_id, game_type=entry.game_type)
        if stored is None or entry.best_time_ms < stored.best_time_ms:
            others = [e for e in existing if e is not stored]
            return SubmitDecision(
                accepted=True,
                rank=cls.rank(entry.game_type, entry.best_time_ms, others),
                is_new_record=True,
            )
        return SubmitDecision(
            accepted=False,
            rank=cls.rank(stored.game_type, stored.best_time_ms, existing),
            is_new_record=False,
        )

    @staticmethod
    def resort(entries: Iterable[LeaderboardEntry], key: LeaderboardSortKey) -> list[LeaderboardEntry]:
        items = list(entries)
        if key is LeaderboardSortKey.BEST_SPEED:
            items.sort(key=lambda e: e.best_time_ms)
        elif key is LeaderboardSortKey.BEST_AVERAGE:
            items.sort(key=lambda e: e.average_time_ms)
        elif key is LeaderboardSortKey.MOST_GAMES:
            items.sort(key=lambda e: e.games_played, reverse=True)
        else:
            raise ValueError(f"unknown sort key: {key!r}")
        return [e.with_rank(i + 1) for i, e in enumerate(items)]

    @classmethod
    def qualifies(
        cls,
        game_type: GameType,
        best_ms: float,
        entries: Iterable[LeaderboardEntry],
        *,
        top_n: int = TOP_N,
    ) -> tuple[bool, int]:
        estimated = cls.rank(game_type, best_ms, entries)
        return estimated <= top_n, estimated


class LocalLeaderboard:
    """In-process leaderboard storage: one entry per (user, game type)."""

    def __init__(self, entries: Iterable[LeaderboardEntry] = ()) -> None:
        self._entries: dict[tuple[str, GameType], LeaderboardEntry] = {}
        self._stats: dict[tuple[str, GameType], UserLeaderboardStats] = {}
        for e in entries:
            self._entries[(e.user_id, e.game_type)] = e.with_rank(None)

    def entries(self, game_type: GameType | None = None) -> list[LeaderboardEntry]:
        return [e for e in self._entries.values() if game_type is None or e.game_type is game_type]

    def submit(
        self,
        identity: PlayerIdentity,
        game_type: GameType,
        request: SubmitScoreRequest,
        *,
        now: datetime | None = None,
    ) -> SubmitOutcome:
        if not identity.opted_in or not identity.nickname:
            raise LeaderboardError("player has not opted in to the leaderboard or has no nickname")

        now = now or utc_now()
        key = (identity.user_id, game_type)
        previous_stats = self._stats.get(key)
        if previous_stats is not None:
            games_before = previous_stats.total_games_played
        else:
            stored = self._entries.get(key)
            games_before = 0 if stored is None else stored.games_played
        games_total = request.games_played + games_before
        candidate = LeaderboardEntry(
            id=entry_id(identity.user_id, game_type),
            user_id=identity.user_id,
            nickname=identity.nickname,
            game_type=game_type,
            best_time_ms=request.best_time_ms,
            average_time_ms=request.average_time_ms,
            games_played=games_total,
            accuracy_pct=request.accuracy_pct,
            timestamp=now,
        )
        decision = RankingEngine.submit(candidate, self.entries(game_type))
        if not decision.accepted:
            return SubmitOutcome(success=False, rank=decision.rank, is_new_record=False)

        self._entries[key] = candidate
        current_rank = RankingEngine.rank(game_type, candidate.best_time_ms, self.entries(game_type))
        self._stats[key] = UserLeaderboardStats(
            user_id=identity.user_id,
            nickname=identity.nickname,
            best_rank=current_rank if previous_stats is None else min(previous_stats.best_rank, current_rank),
            current_rank=current_rank,
            total_games_played=games_total,
            best_time_ms=candidate.best_time_ms,
            average_time_ms=candidate.average_time_ms,
            accuracy_pct=candidate.accuracy_pct,
        )
        return SubmitOutcome(success=True, rank=current_rank, is_new_record=True)

    def user_stats(self, game_type: GameType, user_id: str) -> UserLeaderboardStats | None:
        stats = self._stats.get((user_id, game_type))
        if stats is None:
            return None
        return replace(stats, current_rank=RankingEngine.rank(game_type, stats.best_time_ms, self.entries(game_type)))

    def leaderboard(
        self,
        game_type: GameType,
        *,
        limit: int = TOP_N,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> LeaderboardResponse:
        pool = self.entries(game_type)
        ranked = RankingEngine.resort(pool, LeaderboardSortKey.BEST_SPEED)[: max(0, limit)]
        return LeaderboardResponse(
            entries=tuple(ranked),
            user_stats=None if user_id is None else self.user_stats(game_type, user_id),
            total_users=len(pool),
            last_updated=now or utc_now(),
        )


def synthetic_leaderboard(
    game_type: GameType,
    *,
    identity: PlayerIdentity | None = None,
    seed: int = 0,
    now: datetime | None = None,
) -> LeaderboardResponse:
    """Offline stand-in with the same shape as a remote response.

    Ten entries, ranks 1..10 by construction; values jitter with ``seed`` but
    the shape never changes.
    """

    rng = random.Random(seed)
    now = now or utc_now()
    entries = tuple(
        LeaderboardEntry(
            id=f"mock-{i}",
            user_id=f"user-{i}",
            nickname=f"Player {i + 1}",
            game_type=game_type,
            best_time_ms=200 + i * 50 + rng.uniform(0, 49),
            average_time_ms=250 + i * 60 + rng.uniform(0, 59),
            games_played=rng.randint(10, 59),
            accuracy_pct=rng.randint(70, 99),
            timestamp=now - timedelta(days=i),
            rank=i + 1,
        )
        for i in range(SYNTHETIC_ENTRY_COUNT)
    )
    user_stats = None
    if identity is not None and identity.nickname:
        user_stats = UserLeaderboardStats(
            user_id=identity.user_id,
            nickname=identity.nickname,
            best_rank=15,
            current_rank=25,
            total_games_played=45,
            best_time_ms=380,
            average_time_ms=420,
            accuracy_pct=82,
        )
    return LeaderboardResponse(
        entries=entries,
        user_stats=user_stats,
        total_users=SYNTHETIC_TOTAL_USERS,
        last_updated=now,
        source=LeaderboardSource.SYNTHETIC,
    )
