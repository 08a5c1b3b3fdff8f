from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import StrEnum


class TrialState(StrEnum):
    IDLE = "IDLE"
    COUNTDOWN = "COUNTDOWN"
    WAITING = "WAITING"
    READY = "READY"
    TAP_DETECTED = "TAP_DETECTED"
    ROUND_COMPLETE = "ROUND_COMPLETE"
    GAME_COMPLETE = "GAME_COMPLETE"
    FAILED = "FAILED"


class GameType(StrEnum):
    TAP_TEST = "TAP_TEST"
    AUDIO_TEST = "AUDIO_TEST"
    GO_NO_GO_TEST = "GO_NO_GO_TEST"


class FailReason(StrEnum):
    EARLY_TAP = "EARLY_TAP"
    TIMEOUT = "TIMEOUT"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Attempt:
    attempt_number: int
    reaction_time_ms: int
    is_valid: bool
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class Statistics:
    average_time_ms: int
    best_time_ms: int
    worst_time_ms: int
    total_attempts: int
    valid_attempts: int


@dataclass(frozen=True, slots=True)
class Session:
    id: str
    game_type: GameType
    user_id: str
    timestamp: datetime
    attempts: tuple[Attempt, ...]
    statistics: Statistics
    is_completed: bool
    is_failed: bool
    fail_reason: FailReason | None = None


@dataclass(frozen=True, slots=True)
class PlayerIdentity:
    user_id: str
    nickname: str | None = None
    opted_in: bool = False


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    id: str
    user_id: str
    nickname: str
    game_type: GameType
    best_time_ms: float
    average_time_ms: float
    games_played: int
    accuracy_pct: int
    timestamp: datetime
    rank: int | None = None

    def with_rank(self, rank: int | None) -> "LeaderboardEntry":
        return replace(self, rank=rank)


@dataclass(frozen=True, slots=True)
class UserLeaderboardStats:
    user_id: str
    nickname: str
    best_rank: int
    current_rank: int | None  # None when outside the fetched window
    total_games_played: int
    best_time_ms: float
    average_time_ms: float
    accuracy_pct: int


class LeaderboardSource(StrEnum):
    REMOTE = "remote"
    SYNTHETIC = "synthetic"


@dataclass(frozen=True, slots=True)
class LeaderboardResponse:
    entries: tuple[LeaderboardEntry, ...]
    user_stats: UserLeaderboardStats | None
    total_users: int
    last_updated: datetime
    source: LeaderboardSource = LeaderboardSource.REMOTE

    @property
    def is_synthetic(self) -> bool:
        return self.source is LeaderboardSource.SYNTHETIC


@dataclass(frozen=True, slots=True)
class SubmitScoreRequest:
    best_time_ms: float
    average_time_ms: float
    games_played: int
    accuracy_pct: int
    attempts: tuple[Attempt, ...] = ()
    statistics: Statistics | None = None


@dataclass(frozen=True, slots=True)
class SubmitOutcome:
    """Result of a leaderboard submission as seen by the caller.

    ``error`` is set when the transport failed; the other fields then carry
    their neutral values.
    """

    success: bool
    rank: int | None
    is_new_record: bool
    error: str | None = None
