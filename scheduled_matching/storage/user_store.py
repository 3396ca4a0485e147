"""User store: eligibility and candidate lookups against platform user data.

The platform's user / preference service owns these rows; this module only
reads them.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session, sessionmaker

from scheduled_matching.models import MatchUser

logger = logging.getLogger("scheduled_matching.user_store")

UNKNOWN_RANK = "UNKNOWN"


class UserStore(ABC):
    """Read interface the batch and manual paths depend on."""

    @abstractmethod
    def eligible_user_ids(
        self, country: str, login_window_days: int, include_unknown_rank: bool, now: datetime
    ) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    def candidates_for(
        self, user: MatchUser, login_window_days: int, include_unknown_rank: bool, now: datetime
    ) -> list[MatchUser]:
        raise NotImplementedError

    @abstractmethod
    def get_users(self, user_ids: list[str]) -> dict[str, MatchUser]:
        raise NotImplementedError

    def get_user(self, user_id: str) -> MatchUser | None:
        return self.get_users([user_id]).get(user_id)


class SqlUserStore(UserStore):
    """UserStore backed by the ``match_users`` table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def _eligible(
        db: Session, country: str, login_window_days: int, include_unknown_rank: bool, now: datetime
    ) -> Query:
        since = now - timedelta(days=login_window_days)
        query = db.query(MatchUser).filter(
            MatchUser.country == country,
            MatchUser.status == "active",
            MatchUser.last_login_at.isnot(None),
            MatchUser.last_login_at >= since,
        )
        if not include_unknown_rank:
            query = query.filter(MatchUser.rank.isnot(None), MatchUser.rank != UNKNOWN_RANK)
        return query

    def eligible_user_ids(
        self, country: str, login_window_days: int, include_unknown_rank: bool, now: datetime
    ) -> list[str]:
        db = self._session_factory()
        try:
            rows = (
                self._eligible(db, country, login_window_days, include_unknown_rank, now)
                .with_entities(MatchUser.id)
                .order_by(MatchUser.id)
                .all()
            )
            return [row.id for row in rows]
        finally:
            db.close()

    def candidates_for(
        self, user: MatchUser, login_window_days: int, include_unknown_rank: bool, now: datetime
    ) -> list[MatchUser]:
        db = self._session_factory()
        try:
            query = self._eligible(db, user.country, login_window_days, include_unknown_rank, now).filter(
                MatchUser.id != user.id
            )
            if user.seeking_gender:
                query = query.filter(MatchUser.gender == user.seeking_gender)
            query = query.filter(
                or_(MatchUser.seeking_gender.is_(None), MatchUser.seeking_gender == user.gender)
            )
            return query.order_by(MatchUser.id).all()
        finally:
            db.close()

    def get_users(self, user_ids: list[str]) -> dict[str, MatchUser]:
        if not user_ids:
            return {}
        db = self._session_factory()
        try:
            rows = db.query(MatchUser).filter(MatchUser.id.in_(list(user_ids))).all()
            return {row.id: row for row in rows}
        finally:
            db.close()
