"""Derived per-country job status: registration plus last/next execution."""

import logging
from dataclasses import dataclass
from datetime import datetime

from scheduled_matching.models import Country
from scheduled_matching.registry import ScheduleRegistry, normalize_country
from scheduled_matching.storage.ledger import BatchLedger
from scheduled_matching.utils.cron import next_fire_time
from scheduled_matching.utils.timeutil import ensure_utc

logger = logging.getLogger("scheduled_matching.job_status")


@dataclass
class JobStatus:
    country: str
    is_registered: bool
    last_execution: datetime | None = None
    next_execution: datetime | None = None


class JobStatusTracker:
    """Computes JobStatus on every read; nothing here is stored."""

    def __init__(self, registry: ScheduleRegistry, ledger: BatchLedger, driver=None):
        self._registry = registry
        self._ledger = ledger
        self._driver = driver

    def get(self, country) -> JobStatus:
        code = normalize_country(country)
        config = self._registry.find(code)
        latest = self._ledger.latest_for_country(code)

        next_execution = None
        if config is not None and config.is_enabled:
            try:
                next_execution = next_fire_time(config.cron_expression, config.timezone)
            except ValueError as e:
                logger.warning("[country:%s] Stored schedule does not parse: %s", code, e)

        return JobStatus(
            country=code,
            is_registered=self._driver.is_registered(code) if self._driver is not None else False,
            last_execution=ensure_utc(latest.started_at) if latest else None,
            next_execution=next_execution,
        )

    def list(self) -> list[JobStatus]:
        return [self.get(country) for country in Country]
