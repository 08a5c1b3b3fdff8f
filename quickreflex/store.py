from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from .models import Attempt, FailReason, GameType, Session, Statistics

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
MAX_STORED_SESSIONS = 50


class StoreError(Exception):
    """Raised when the session store cannot be read or written."""


class SessionStore(Protocol):
    def save_session(self, session: Session) -> Session:
        """Persist a finished session and return the stored copy."""
        ...

    def recent_sessions(self, limit: int = 10) -> list[Session]:
        """Most-recent-first."""
        ...

    def best_session(self) -> Session | None:
        """Completed, non-failed session with the lowest best time."""
        ...


def _pick_best(sessions: list[Session]) -> Session | None:
    best: Session | None = None
    # Oldest first so the earlier session keeps a tied record.
    for s in reversed(sessions):
        if not s.is_completed or s.is_failed:
            continue
        if best is None or s.statistics.best_time_ms < best.statistics.best_time_ms:
            best = s
    return best


class InMemorySessionStore:
    """Process-local store; also the stand-in when no database is configured."""

    def __init__(self, *, max_sessions: int = MAX_STORED_SESSIONS) -> None:
        self._sessions: list[Session] = []
        self._max_sessions = max_sessions

    def save_session(self, session: Session) -> Session:
        self._sessions.insert(0, session)
        del self._sessions[self._max_sessions :]
        return session

    def recent_sessions(self, limit: int = 10) -> list[Session]:
        return list(self._sessions[: max(0, limit)])

    def best_session(self) -> Session | None:
        return _pick_best(self._sessions)


def open_db(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session (
                seq INTEGER PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                game_type TEXT NOT NULL,
                user_id TEXT NOT NULL,
                created_at_utc TEXT NOT NULL,
                is_completed INTEGER NOT NULL,
                is_failed INTEGER NOT NULL,
                fail_reason TEXT,
                average_time_ms INTEGER NOT NULL,
                best_time_ms INTEGER NOT NULL,
                worst_time_ms INTEGER NOT NULL,
                total_attempts INTEGER NOT NULL,
                valid_attempts INTEGER NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS attempt (
                session_seq INTEGER NOT NULL REFERENCES session(seq) ON DELETE CASCADE,
                attempt_number INTEGER NOT NULL,
                reaction_time_ms INTEGER NOT NULL,
                is_valid INTEGER NOT NULL,
                recorded_at_utc TEXT NOT NULL,
                PRIMARY KEY (session_seq, attempt_number)
            );
            """
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


def _to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


class SqliteSessionStore:
    """Session history in a local sqlite file: session -> attempt."""

    def __init__(self, path: Path, *, max_sessions: int = MAX_STORED_SESSIONS) -> None:
        self._path = Path(path)
        self._max_sessions = max_sessions

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        try:
            return open_db(self._path)
        except (sqlite3.Error, OSError) as exc:
            raise StoreError(f"cannot open session store at {self._path}: {exc}") from exc

    def save_session(self, session: Session) -> Session:
        conn = self._connect()
        try:
            with conn:
                self._insert(conn, session)
                self._prune(conn)
        except sqlite3.Error as exc:
            raise StoreError(f"cannot save session {session.id}: {exc}") from exc
        finally:
            conn.close()
        logger.debug("stored session %s in %s", session.id, self._path)
        return session

    def recent_sessions(self, limit: int = 10) -> list[Session]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM session ORDER BY seq DESC LIMIT ?",
                (max(0, int(limit)),),
            ).fetchall()
            return [self._load(conn, row) for row in rows]
        except sqlite3.Error as exc:
            raise StoreError(f"cannot read sessions: {exc}") from exc
        finally:
            conn.close()

    def best_session(self) -> Session | None:
        conn = self._connect()
        try:
            row = conn.execute(
                """
                SELECT * FROM session
                WHERE is_completed = 1 AND is_failed = 0
                ORDER BY best_time_ms ASC, seq ASC
                LIMIT 1
                """
            ).fetchone()
            return None if row is None else self._load(conn, row)
        except sqlite3.Error as exc:
            raise StoreError(f"cannot read best session: {exc}") from exc
        finally:
            conn.close()

    @staticmethod
    def _insert(conn: sqlite3.Connection, session: Session) -> None:
        stats = session.statistics
        cur = conn.execute(
            """
            INSERT INTO session(
                id, game_type, user_id, created_at_utc,
                is_completed, is_failed, fail_reason,
                average_time_ms, best_time_ms, worst_time_ms,
                total_attempts, valid_attempts
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session.id,
                str(session.game_type.value),
                session.user_id,
                _to_iso(session.timestamp),
                1 if session.is_completed else 0,
                1 if session.is_failed else 0,
                None if session.fail_reason is None else str(session.fail_reason.value),
                int(stats.average_time_ms),
                int(stats.best_time_ms),
                int(stats.worst_time_ms),
                int(stats.total_attempts),
                int(stats.valid_attempts),
            ),
        )
        seq = int(cur.lastrowid)
        for a in session.attempts:
            conn.execute(
                """
                INSERT INTO attempt(session_seq, attempt_number, reaction_time_ms, is_valid, recorded_at_utc)
                VALUES (?, ?, ?, ?, ?)
                """,
                (seq, int(a.attempt_number), int(a.reaction_time_ms), 1 if a.is_valid else 0, _to_iso(a.timestamp)),
            )

    def _prune(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            DELETE FROM session WHERE seq NOT IN (
                SELECT seq FROM session ORDER BY seq DESC LIMIT ?
            )
            """,
            (self._max_sessions,),
        )

    @staticmethod
    def _load(conn: sqlite3.Connection, row: tuple) -> Session:
        (
            seq,
            session_id,
            game_type,
            user_id,
            created_at,
            is_completed,
            is_failed,
            fail_reason,
            average_ms,
            best_ms,
            worst_ms,
            total,
            valid,
        ) = row
        attempts = tuple(
            Attempt(
                attempt_number=int(n),
                reaction_time_ms=int(rt),
                is_valid=bool(ok),
                timestamp=datetime.fromisoformat(at),
            )
            for n, rt, ok, at in conn.execute(
                """
                SELECT attempt_number, reaction_time_ms, is_valid, recorded_at_utc
                FROM attempt WHERE session_seq = ? ORDER BY attempt_number
                """,
                (seq,),
            )
        )
        return Session(
            id=str(session_id),
            game_type=GameType(game_type),
            user_id=str(user_id),
            timestamp=datetime.fromisoformat(created_at),
            attempts=attempts,
            statistics=Statistics(
                average_time_ms=int(average_ms),
                best_time_ms=int(best_ms),
                worst_time_ms=int(worst_ms),
                total_attempts=int(total),
                valid_attempts=int(valid),
            ),
            is_completed=bool(is_completed),
            is_failed=bool(is_failed),
            fail_reason=None if fail_reason is None else FailReason(fail_reason),
        )
