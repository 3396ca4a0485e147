"""Candidate selection: the ordered, scored partner pool for one user."""

import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime

from scheduled_matching.matching.scoring import Scorer, login_recency_score
from scheduled_matching.models import MatchUser, ScheduledMatchingConfig
from scheduled_matching.storage.user_store import UserStore
from scheduled_matching.utils.timeutil import utcnow

logger = logging.getLogger("scheduled_matching.matching.candidates")


class UserProcessingTimeout(Exception):
    """Raised when one user's processing runs past its deadline."""


@dataclass(frozen=True)
class Candidate:
    user_id: str
    score: float
    story: str = ""

    def to_dict(self) -> dict:
        return {"userId": self.user_id, "score": self.score}


def preferences_compatible(user: MatchUser, other: MatchUser) -> bool:
    """Both users' gender preferences, where set, must accept the other."""
    if user.seeking_gender and other.gender != user.seeking_gender:
        return False
    if other.seeking_gender and user.gender != other.seeking_gender:
        return False
    return True


def rank_key(candidate: Candidate) -> tuple[float, str]:
    """Highest score first; exact ties broken by candidate id."""
    return (-candidate.score, candidate.user_id)


class CandidateSelector:
    def __init__(self, user_store: UserStore, scorer: Scorer = login_recency_score, pool_limit: int = 20):
        self._user_store = user_store
        self._scorer = scorer
        self._pool_limit = pool_limit

    def select(
        self,
        user: MatchUser,
        config: ScheduledMatchingConfig,
        deadline: float | None = None,
        now: datetime | None = None,
    ) -> Iterator[Candidate]:
        """Lazily build the pool; nothing is fetched until the first item is requested.

        ``deadline`` is a ``time.monotonic()`` instant checked before each score.
        ``now`` anchors the login window and scoring; the batch passes its own clock.
        """
        now = now or utcnow()
        rows = self._user_store.candidates_for(user, config.login_window_days, config.include_unknown_rank, now)

        scored: list[Candidate] = []
        for candidate in rows:
            if deadline is not None and time.monotonic() > deadline:
                raise UserProcessingTimeout(
                    f"timed out scoring candidates for {user.id} ({len(scored)}/{len(rows)} scored)"
                )
            if candidate.id == user.id or not preferences_compatible(user, candidate):
                continue
            score, story = self._scorer(user, candidate, now)
            scored.append(Candidate(candidate.id, float(score), story))

        scored.sort(key=rank_key)
        logger.debug("Pool for %s: %d scored, keeping %d", user.id, len(scored), self._pool_limit)
        yield from scored[: self._pool_limit]
