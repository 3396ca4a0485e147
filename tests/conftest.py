"""Shared fixtures: a file-backed SQLite database per test plus user seeding."""

from datetime import timedelta

import pytest

from scheduled_matching.config import AppConfig
from scheduled_matching.coordinator import BatchCoordinator
from scheduled_matching.matching.assigner import MatchAssigner
from scheduled_matching.matching.candidates import CandidateSelector
from scheduled_matching.matching.guards import DuplicateGuard
from scheduled_matching.models import Base, MatchUser, make_engine, make_session_factory
from scheduled_matching.registry import ScheduleRegistry
from scheduled_matching.storage.ledger import BatchLedger
from scheduled_matching.storage.user_store import SqlUserStore
from scheduled_matching.utils.timeutil import utcnow


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def add_user(session_factory):
    """Insert a MatchUser. Defaults describe an eligible KR user."""

    def _add(
        user_id,
        gender="MALE",
        seeking_gender="auto",
        country="KR",
        rank="A",
        status="active",
        days_since_login=1,
        name=None,
        university=None,
    ):
        if seeking_gender == "auto":
            seeking_gender = "FEMALE" if gender == "MALE" else "MALE"
        user = MatchUser(
            id=user_id,
            name=name or f"User {user_id}",
            country=country,
            gender=gender,
            seeking_gender=seeking_gender,
            rank=rank,
            status=status,
            university=university,
            last_login_at=None if days_since_login is None else utcnow() - timedelta(days=days_since_login),
        )
        db = session_factory()
        try:
            db.add(user)
            db.commit()
        finally:
            db.close()
        return user

    return _add


@pytest.fixture
def registry(session_factory):
    registry = ScheduleRegistry(session_factory, AppConfig().countries)
    registry.seed_defaults()
    return registry


@pytest.fixture
def ledger(session_factory):
    return BatchLedger(session_factory)


@pytest.fixture
def user_store(session_factory):
    return SqlUserStore(session_factory)


@pytest.fixture
def make_coordinator(session_factory, registry, ledger, user_store):
    def _make(selector=None, ledger_override=None, user_timeout_seconds=30.0, duplicate_window_days=30, clock=utcnow):
        return BatchCoordinator(
            session_factory,
            registry,
            ledger_override or ledger,
            user_store,
            selector or CandidateSelector(user_store),
            MatchAssigner(DuplicateGuard(duplicate_window_days)),
            user_timeout_seconds=user_timeout_seconds,
            clock=clock,
        )

    return _make
