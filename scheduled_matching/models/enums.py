"""Closed vocabularies shared by the ORM, services and API."""

from enum import Enum


class Country(str, Enum):
    KR = "KR"
    JP = "JP"


class BatchStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not BatchStatus.RUNNING


class DetailStatus(str, Enum):
    SUCCESS = "success"
    NO_CANDIDATES = "no_candidates"
    FILTER_EXHAUSTED = "filter_exhausted"
    ERROR = "error"


class Trigger(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class ManualMatchType(str, Enum):
    CS_SUPPORT = "cs_support"
    TEST = "test"
    PROMOTION = "promotion"
    RECOVERY = "recovery"
    VIP = "vip"
    OTHER = "other"


class MatchPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ManualMatchingStatus(str, Enum):
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class MatchSource(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
