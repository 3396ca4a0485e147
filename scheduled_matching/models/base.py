"""SQLAlchemy engine and session setup."""

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL", "sqlite:///data/scheduled_matching.db")
    # Hosted Postgres URLs use postgres:// but SQLAlchemy 2.x requires postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def make_engine(url: str) -> Engine:
    kwargs: dict = {"pool_pre_ping": True, "echo": False}
    if url.startswith("sqlite"):
        # Batches run on scheduler and request threads
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


DATABASE_URL = _get_database_url()

engine = make_engine(DATABASE_URL)

SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass
