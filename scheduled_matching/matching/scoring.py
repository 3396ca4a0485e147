"""Pluggable candidate scoring.

A scorer maps ``(user, candidate, now)`` to ``(score, story)``. The platform's
compatibility model lives in the recommendation backend and is plugged in by
the deployment; ``login_recency_score`` is a placeholder that only prefers
recently active candidates.
"""

from collections.abc import Callable
from datetime import datetime

from scheduled_matching.models import MatchUser
from scheduled_matching.utils.timeutil import ensure_utc, utcnow

Scorer = Callable[[MatchUser, MatchUser, datetime], tuple[float, str]]


def login_recency_score(user: MatchUser, candidate: MatchUser, now: datetime | None = None) -> tuple[float, str]:
    """Score in (0, 1]: 1.0 for a candidate active right now, decaying per idle day."""
    last_login = ensure_utc(candidate.last_login_at)
    if last_login is None:
        return 0.0, "No recent activity"

    now = now or utcnow()
    idle_days = max((now - last_login).total_seconds() / 86400, 0.0)
    score = round(1.0 / (1.0 + idle_days), 3)
    return score, f"Active {int(idle_days)} day(s) ago"
