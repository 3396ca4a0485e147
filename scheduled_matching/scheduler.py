"""APScheduler setup: one cron job per enabled country config."""

import logging
import threading
import traceback

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from scheduled_matching.config import SchedulerConfig
from scheduled_matching.coordinator import BatchCoordinator
from scheduled_matching.errors import AlreadyRunningError
from scheduled_matching.models import ScheduledMatchingConfig, Trigger
from scheduled_matching.registry import ScheduleRegistry, normalize_country
from scheduled_matching.utils.cron import build_trigger
from scheduled_matching.utils.timeutil import utcnow

logger = logging.getLogger("scheduled_matching.scheduler")

MANUAL_DISPATCH_JOB_ID = "manual_matching_dispatch"


def _job_listener(event):
    """Log scheduler job events for debugging."""
    if event.exception:
        logger.error("Scheduled job %s FAILED: %s", event.job_id, event.exception)
        logger.error("Traceback: %s", event.traceback)
    elif hasattr(event, "job_id"):
        if event.code == EVENT_JOB_MISSED:
            logger.warning("Scheduled job %s MISSED its fire time", event.job_id)
        else:
            logger.debug("Scheduled job %s executed successfully", event.job_id)


def _job_id(country: str) -> str:
    return f"scheduled_matching_{country}"


class SchedulerDriver:
    """Keeps APScheduler jobs in step with the registry and fires batches."""

    def __init__(
        self,
        registry: ScheduleRegistry,
        coordinator: BatchCoordinator,
        manual_service=None,
        config: SchedulerConfig | None = None,
    ):
        self._registry = registry
        self._coordinator = coordinator
        self._manual_service = manual_service
        self._config = config or SchedulerConfig()
        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        self._sync_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if self._scheduler.running:
            return
        if self._manual_service is not None:
            self._scheduler.add_job(
                self._dispatch_manual,
                trigger=IntervalTrigger(seconds=self._config.manual_dispatch_interval_seconds),
                id=MANUAL_DISPATCH_JOB_ID,
                name="Due manual matchings",
                coalesce=True,
                max_instances=1,
                replace_existing=True,
            )
        self._scheduler.start()
        logger.info("APScheduler started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("APScheduler stopped")

    # -- registration -----------------------------------------------------------

    def sync(self, config: ScheduledMatchingConfig) -> None:
        """Add, update, or remove a country's job. Safe to call repeatedly."""
        job_id = _job_id(config.country)
        with self._sync_lock:
            existing = self._scheduler.get_job(job_id)

            if not config.is_enabled:
                if existing:
                    self._scheduler.remove_job(job_id)
                    logger.info("[country:%s] Disabled, schedule removed", config.country)
                return

            trigger = build_trigger(config.cron_expression, config.timezone)
            if existing:
                # repr() includes the timezone; str() does not
                if repr(existing.trigger) == repr(trigger):
                    return
                self._scheduler.remove_job(job_id)

            self._scheduler.add_job(
                self._fire,
                trigger=trigger,
                args=[config.country],
                id=job_id,
                name=f"Scheduled matching for {config.country}",
                misfire_grace_time=self._config.misfire_grace_time,
                coalesce=True,
                max_instances=1,
                replace_existing=True,
            )
            logger.info(
                "[country:%s] Scheduled '%s' (%s): %s",
                config.country, config.cron_expression, config.timezone, trigger,
            )

    def register_all(self) -> int:
        """Sync every stored config. Returns how many are enabled."""
        enabled = 0
        for config in self._registry.list():
            try:
                self.sync(config)
            except ValueError as e:
                logger.error("[country:%s] Not scheduled, stored schedule is invalid: %s", config.country, e)
                continue
            enabled += 1 if config.is_enabled else 0
        return enabled

    def is_registered(self, country: str) -> bool:
        return self._scheduler.get_job(_job_id(normalize_country(country))) is not None

    # -- execution --------------------------------------------------------------

    def trigger_manual(self, country: str, triggered_by: str | None = None, background: bool = True) -> dict:
        """Start a batch now. The guard runs synchronously so AlreadyRunningError reaches the caller."""
        code = normalize_country(country)
        triggered_at = utcnow()
        batch = self._coordinator.start(code, Trigger.MANUAL, triggered_by)

        if background:
            thread = threading.Thread(
                target=self._execute_in_background, args=(batch.id,), daemon=True, name=f"batch-{code}"
            )
            thread.start()
        else:
            self._coordinator.execute(batch.id)

        return {
            "success": True,
            "message": f"Matching batch started for {code}",
            "country": code,
            "triggeredAt": triggered_at,
            "batchId": batch.id,
        }

    def _execute_in_background(self, batch_id: str) -> None:
        try:
            self._coordinator.execute(batch_id)
        except Exception as e:
            logger.error("[batch:%s] Manual run thread crashed: %s", batch_id, e, exc_info=True)

    def _fire(self, country: str) -> None:
        """Job function for cron fires; adds entry/exit logging."""
        logger.info("=== SCHEDULER FIRING batch for %s ===", country)
        config = self._registry.find(country)
        if config is None or not config.is_enabled:
            logger.info("[country:%s] Config missing or disabled, skipping fire", country)
            return
        try:
            batch = self._coordinator.run(country, Trigger.SCHEDULED, "scheduler")
            logger.info("=== SCHEDULER COMPLETED batch %s for %s: %s ===", batch.id, country, batch.status)
        except AlreadyRunningError as e:
            logger.warning("[country:%s] Skipped scheduled fire: %s", country, e.message)
        except Exception:
            logger.error("=== SCHEDULER FAILED batch for %s ===\n%s", country, traceback.format_exc())
            raise

    def _dispatch_manual(self) -> None:
        executed = self._manual_service.execute_due(utcnow(), actor="scheduler")
        if executed:
            logger.info("Dispatched %d due manual matching(s)", len(executed))

    def get_scheduler_info(self) -> dict:
        """Return diagnostic info about the scheduler state."""
        jobs = []
        for job in self._scheduler.get_jobs():
            # Jobs added before start() have no next_run_time yet
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "nextRunTime": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return {
            "running": self._scheduler.running,
            "jobs": jobs,
        }
