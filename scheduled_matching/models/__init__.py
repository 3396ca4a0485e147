"""ORM models for scheduled matching batches and manual overrides."""

from .base import Base, SessionLocal, engine, make_engine, make_session_factory
from .batch_detail import BatchDetail
from .batch_history import BatchHistory
from .enums import (
    BatchStatus,
    Country,
    DetailStatus,
    ManualMatchingStatus,
    ManualMatchType,
    MatchPriority,
    MatchSource,
    Trigger,
)
from .manual_matching import ManualMatching, ManualMatchingLog
from .match_record import MatchRecord
from .match_user import MatchUser
from .schedule_config import ScheduledMatchingConfig

__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "make_engine",
    "make_session_factory",
    "ScheduledMatchingConfig",
    "BatchHistory",
    "BatchDetail",
    "ManualMatching",
    "ManualMatchingLog",
    "MatchRecord",
    "MatchUser",
    "BatchStatus",
    "Country",
    "DetailStatus",
    "ManualMatchingStatus",
    "ManualMatchType",
    "MatchPriority",
    "MatchSource",
    "Trigger",
]
