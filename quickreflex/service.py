from __future__ import annotations

import logging
from dataclasses import replace

from .leaderboard import LeaderboardError, LeaderboardSortKey, RankingEngine, synthetic_leaderboard
from .models import GameType, LeaderboardResponse, PlayerIdentity, Session, SubmitOutcome
from .results import should_submit, submission_request
from .transport import LeaderboardTransport, TransportError

logger = logging.getLogger(__name__)


class LeaderboardService:
    """Caller-side leaderboard access with a synthetic fallback.

    Reads degrade to ``synthetic_leaderboard`` (``source=SYNTHETIC``) when the
    transport is down. Submissions never raise for collaborator failures;
    they come back as a ``SubmitOutcome`` with ``error`` set.
    """

    def __init__(
        self,
        transport: LeaderboardTransport,
        *,
        identity: PlayerIdentity,
        synthetic_seed: int = 0,
    ) -> None:
        self._transport = transport
        self._identity = identity
        self._synthetic_seed = synthetic_seed

    @property
    def identity(self) -> PlayerIdentity:
        return self._identity

    def load(
        self,
        game_type: GameType,
        *,
        sort_key: LeaderboardSortKey = LeaderboardSortKey.BEST_SPEED,
        limit: int = 100,
    ) -> LeaderboardResponse:
        data: LeaderboardResponse | None = None
        if self._transport.health_check():
            try:
                data = self._transport.get_leaderboard(game_type, limit, user_id=self._identity.user_id)
            except TransportError:
                logger.warning("leaderboard fetch failed; using synthetic data", exc_info=True)
        else:
            logger.info("leaderboard offline; using synthetic data")

        if data is None:
            data = synthetic_leaderboard(game_type, identity=self._identity, seed=self._synthetic_seed)
        return replace(data, entries=tuple(RankingEngine.resort(data.entries, sort_key)))

    def submit_session(self, session: Session, *, games_played: int = 1) -> SubmitOutcome:
        if not should_submit(session):
            return SubmitOutcome(success=False, rank=None, is_new_record=False, error="session_failed")
        if not self._identity.opted_in or not self._identity.nickname:
            return SubmitOutcome(success=False, rank=None, is_new_record=False, error="not_opted_in")

        request = submission_request(session, games_played=games_played)
        try:
            return self._transport.submit_score(session.game_type, self._identity, request)
        except (TransportError, LeaderboardError) as exc:
            logger.warning("score submission for session %s failed: %s", session.id, exc)
            return SubmitOutcome(success=False, rank=None, is_new_record=False, error=str(exc))
