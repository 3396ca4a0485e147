"""Duplicate / cool-down guard shared by batch assignment and manual overrides."""

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from scheduled_matching.storage import match_store


class DuplicateGuard:
    """Rejects a pair that was already matched within ``window_days``."""

    def __init__(self, window_days: int):
        self.window_days = window_days

    @property
    def enabled(self) -> bool:
        return self.window_days > 0

    def window_start(self, now: datetime) -> datetime:
        return now - timedelta(days=self.window_days)

    def blocked_partner_ids(self, db: Session, user_id: str, now: datetime) -> set[str]:
        if not self.enabled:
            return set()
        return match_store.partner_ids_since(db, user_id, self.window_start(now))

    def is_blocked(self, db: Session, user_a: str, user_b: str, now: datetime) -> bool:
        if not self.enabled:
            return False
        return match_store.has_pair_since(db, user_a, user_b, self.window_start(now))
