from __future__ import annotations

import re
from dataclasses import dataclass

from .config import ReactionConfig
from .models import Attempt

NICKNAME_MIN_LEN = 2
NICKNAME_MAX_LEN = 20
_NICKNAME_FORBIDDEN = re.compile(r"[<>\"'&]")
_SESSION_ID = re.compile(r"^session_\d+_[a-zA-Z0-9]{9}$")


@dataclass(frozen=True, slots=True)
class ReactionValidator:
    """Flags reaction times outside the plausible human window.

    An implausible time (e.g. a stall while the app was backgrounded) keeps
    its Attempt; only ``is_valid`` is cleared.
    """

    min_ms: int = 100
    max_ms: int = 2000

    def __post_init__(self) -> None:
        if self.min_ms > self.max_ms:
            raise ValueError("min_ms must be <= max_ms")

    @classmethod
    def from_config(cls, config: ReactionConfig) -> "ReactionValidator":
        return cls(min_ms=config.human_min_reaction_ms, max_ms=config.human_max_reaction_ms)

    def is_valid(self, reaction_time_ms: float) -> bool:
        return self.min_ms <= reaction_time_ms <= self.max_ms


def is_well_formed_attempt(attempt: Attempt) -> bool:
    return attempt.attempt_number > 0 and attempt.reaction_time_ms >= 0


@dataclass(frozen=True, slots=True)
class NicknameCheck:
    is_valid: bool
    error: str | None = None


def check_nickname(nickname: str | None) -> NicknameCheck:
    trimmed = (nickname or "").strip()
    if not trimmed:
        return NicknameCheck(False, "validation.nicknameRequired")
    if len(trimmed) < NICKNAME_MIN_LEN:
        return NicknameCheck(False, "validation.nicknameTooShort")
    if len(trimmed) > NICKNAME_MAX_LEN:
        return NicknameCheck(False, "validation.nicknameTooLong")
    if _NICKNAME_FORBIDDEN.search(trimmed):
        return NicknameCheck(False, "validation.nicknameInvalidChars")
    return NicknameCheck(True)


def sanitize_nickname(nickname: str) -> str:
    return nickname.strip()[:NICKNAME_MAX_LEN]


def is_valid_session_id(session_id: str) -> bool:
    return _SESSION_ID.match(session_id) is not None
