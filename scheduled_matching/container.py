"""Wires the services together for the web app and the CLI."""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.orm import sessionmaker

from scheduled_matching.config import AppConfig
from scheduled_matching.coordinator import BatchCoordinator
from scheduled_matching.job_status import JobStatusTracker
from scheduled_matching.manual_matching import ManualOverrideService
from scheduled_matching.matching.assigner import MatchAssigner
from scheduled_matching.matching.candidates import CandidateSelector
from scheduled_matching.matching.guards import DuplicateGuard
from scheduled_matching.models import Base, SessionLocal, make_engine, make_session_factory
from scheduled_matching.models.base import DATABASE_URL
from scheduled_matching.registry import ScheduleRegistry
from scheduled_matching.scheduler import SchedulerDriver
from scheduled_matching.storage.ledger import BatchLedger
from scheduled_matching.storage.user_store import SqlUserStore, UserStore

INTERRUPTED_MESSAGE = "interrupted: process restarted"


@dataclass
class Services:
    config: AppConfig
    session_factory: sessionmaker
    registry: ScheduleRegistry
    ledger: BatchLedger
    user_store: UserStore
    coordinator: BatchCoordinator
    manual: ManualOverrideService
    driver: SchedulerDriver
    job_status: JobStatusTracker


def session_factory_for(database_url: str | None = None) -> sessionmaker:
    if not database_url or database_url == DATABASE_URL:
        return SessionLocal
    url = database_url
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return make_session_factory(make_engine(url))


def build_services(config: AppConfig | None = None, session_factory: sessionmaker | None = None) -> Services:
    config = config or AppConfig()
    session_factory = session_factory or session_factory_for(config.database_url)

    registry = ScheduleRegistry(session_factory, config.countries)
    ledger = BatchLedger(session_factory)
    user_store = SqlUserStore(session_factory)
    guard = DuplicateGuard(config.matching.duplicate_window_days)

    coordinator = BatchCoordinator(
        session_factory,
        registry,
        ledger,
        user_store,
        CandidateSelector(user_store, pool_limit=config.matching.candidate_pool_limit),
        MatchAssigner(guard),
        user_timeout_seconds=config.matching.user_timeout_seconds,
    )
    manual = ManualOverrideService(session_factory, user_store, guard, config.matching)
    driver = SchedulerDriver(registry, coordinator, manual_service=manual, config=config.scheduler)

    return Services(
        config=config,
        session_factory=session_factory,
        registry=registry,
        ledger=ledger,
        user_store=user_store,
        coordinator=coordinator,
        manual=manual,
        driver=driver,
        job_status=JobStatusTracker(registry, ledger, driver),
    )


def init_database(services: Services, actor: str = "system") -> None:
    """Create tables and seed default configs for countries that have none."""
    engine = services.session_factory.kw["bind"]
    database = engine.url.database
    if engine.url.get_backend_name() == "sqlite" and database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=engine)
    services.registry.seed_defaults(actor=actor)


def recover_interrupted(services: Services) -> int:
    """Fail batches a previous process left 'running'. Call before anything is started."""
    return services.ledger.fail_stale_running(INTERRUPTED_MESSAGE)
