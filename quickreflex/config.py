from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

CONFIG_PATH_ENV = "QUICKREFLEX_CONFIG_PATH"
DB_PATH_ENV = "QUICKREFLEX_DB_PATH"


@dataclass(frozen=True, slots=True)
class ReactionConfig:
    """Timing and validity knobs for one tap-test session (all in ms)."""

    total_rounds: int = 3
    min_wait_ms: int = 1000
    max_wait_ms: int = 3000
    countdown_ms: int = 3000
    ready_timeout_ms: int = 2000
    round_delay_ms: int = 500
    result_display_ms: int = 800

    human_min_reaction_ms: int = 100
    human_max_reaction_ms: int = 2000

    def __post_init__(self) -> None:
        if self.total_rounds < 1:
            raise ValueError("total_rounds must be >= 1")
        if self.min_wait_ms < 0:
            raise ValueError("min_wait_ms must be >= 0")
        if self.min_wait_ms > self.max_wait_ms:
            raise ValueError("min_wait_ms must be <= max_wait_ms")
        for name in ("countdown_ms", "round_delay_ms", "result_display_ms"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.ready_timeout_ms <= 0:
            raise ValueError("ready_timeout_ms must be > 0")
        if self.human_min_reaction_ms < 0:
            raise ValueError("human_min_reaction_ms must be >= 0")
        if self.human_min_reaction_ms > self.human_max_reaction_ms:
            raise ValueError("human_min_reaction_ms must be <= human_max_reaction_ms")

    @classmethod
    def from_dict(cls, data: object) -> "ReactionConfig":
        if not isinstance(data, dict):
            raise ValueError("config must be a JSON object")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown config keys: {', '.join(unknown)}")
        values: dict[str, int] = {}
        for key, raw in data.items():
            if isinstance(raw, bool) or not isinstance(raw, int):
                raise ValueError(f"{key} must be an integer")
            values[key] = raw
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(path: Path | None = None) -> ReactionConfig:
    """Load config overrides from a JSON file.

    Falls back to ``$QUICKREFLEX_CONFIG_PATH``; with neither, or when the file
    does not exist, the defaults are returned.
    """

    if path is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        if not env_path:
            return ReactionConfig()
        path = Path(env_path).expanduser()
    if not path.exists():
        return ReactionConfig()
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return ReactionConfig.from_dict(data)


def default_db_path() -> Path:
    env_path = os.environ.get(DB_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".quickreflex" / "sessions.sqlite3"
