"""Match assignment: pick one partner from a candidate pool, or say why not."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from scheduled_matching.matching.candidates import Candidate, rank_key
from scheduled_matching.matching.guards import DuplicateGuard
from scheduled_matching.models import DetailStatus


@dataclass
class Assignment:
    status: DetailStatus
    pool: list[Candidate] = field(default_factory=list)
    partner: Candidate | None = None


class MatchAssigner:
    def __init__(self, guard: DuplicateGuard):
        self.guard = guard

    def assign(self, db: Session, user_id: str, pool: Iterable[Candidate], now: datetime) -> Assignment:
        """
        ``no_candidates``: the pool was empty before any filtering.
        ``filter_exhausted``: every candidate was rejected by the duplicate guard.
        """
        candidates = list(pool)
        if not candidates:
            return Assignment(DetailStatus.NO_CANDIDATES)

        blocked = self.guard.blocked_partner_ids(db, user_id, now)
        survivors = [c for c in candidates if c.user_id != user_id and c.user_id not in blocked]
        if not survivors:
            return Assignment(DetailStatus.FILTER_EXHAUSTED, pool=candidates)

        best = min(survivors, key=rank_key)
        return Assignment(DetailStatus.SUCCESS, pool=candidates, partner=best)
