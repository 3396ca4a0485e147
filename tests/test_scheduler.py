"""Tests for scheduler registration, manual trigger and the job status view."""

import threading

import pytest

from scheduled_matching.config import SchedulerConfig
from scheduled_matching.errors import AlreadyRunningError
from scheduled_matching.job_status import JobStatusTracker
from scheduled_matching.models import BatchHistory, Trigger
from scheduled_matching.scheduler import SchedulerDriver
from scheduled_matching.utils.timeutil import ensure_utc


@pytest.fixture
def coordinator(make_coordinator):
    return make_coordinator()


@pytest.fixture
def driver(registry, coordinator):
    driver = SchedulerDriver(registry, coordinator, config=SchedulerConfig())
    yield driver
    driver.shutdown()


def _running_count(session_factory, country):
    db = session_factory()
    try:
        return db.query(BatchHistory).filter_by(country=country, status="running").count()
    finally:
        db.close()


class TestSync:
    def test_register_all_enabled(self, driver):
        assert driver.register_all() == 2
        assert driver.is_registered("KR")
        assert driver.is_registered("jp")

    def test_disabled_config_is_removed(self, driver, registry):
        driver.register_all()
        driver.sync(registry.upsert("KR", {"is_enabled": False}))
        assert not driver.is_registered("KR")
        assert driver.is_registered("JP")

    def test_resync_is_idempotent(self, driver, registry):
        config = registry.get("KR")
        driver.sync(config)
        driver.sync(config)
        jobs = [j for j in driver.get_scheduler_info()["jobs"] if j["id"] == "scheduled_matching_KR"]
        assert len(jobs) == 1

    def test_schedule_change_replaces_job(self, driver, registry):
        driver.sync(registry.get("KR"))
        driver.sync(registry.upsert("KR", {"cron_expression": "30 6 * * 1"}))
        jobs = [j for j in driver.get_scheduler_info()["jobs"] if j["id"] == "scheduled_matching_KR"]
        assert len(jobs) == 1
        assert "mon" in jobs[-1]["trigger"]

    def test_month_or_weekday_schedule_resyncs_once(self, driver, registry):
        config = registry.upsert("KR", {"cron_expression": "0 0 1 * 1"})
        driver.sync(config)
        driver.sync(config)
        jobs = [j for j in driver.get_scheduler_info()["jobs"] if j["id"] == "scheduled_matching_KR"]
        assert len(jobs) == 1
        assert jobs[0]["trigger"].startswith("or[")

    def test_start_and_shutdown(self, driver):
        driver.register_all()
        driver.start()
        assert driver.running
        info = driver.get_scheduler_info()
        assert {j["id"] for j in info["jobs"]} >= {"scheduled_matching_KR", "scheduled_matching_JP"}
        assert all(j["nextRunTime"] for j in info["jobs"])
        driver.shutdown()
        assert not driver.running


class TestTriggerManual:
    def test_runs_batch_synchronously(self, driver, registry, add_user):
        registry.upsert("KR", {"delay_between_users_ms": 0})
        add_user("m1", "MALE")
        add_user("w1", "FEMALE")

        result = driver.trigger_manual("kr", triggered_by="ops", background=False)

        assert result["success"] is True
        assert result["country"] == "KR"
        assert result["triggeredAt"] is not None

    def test_background_run(self, driver, ledger):
        result = driver.trigger_manual("JP", triggered_by="ops")
        for thread in threading.enumerate():
            if thread.name == "batch-JP":
                thread.join(timeout=5)
        assert ledger.get(result["batchId"]).status == "completed"

    def test_rejected_while_running(self, driver, coordinator, session_factory):
        coordinator.start("KR", Trigger.SCHEDULED)

        with pytest.raises(AlreadyRunningError):
            driver.trigger_manual("KR", triggered_by="ops")
        assert _running_count(session_factory, "KR") == 1

    def test_scheduled_fire_skips_disabled_country(self, driver, registry, ledger):
        registry.upsert("KR", {"is_enabled": False})
        driver._fire("KR")
        assert ledger.latest_for_country("KR") is None

    def test_scheduled_fire_tolerates_running_batch(self, driver, coordinator, ledger):
        running = coordinator.start("KR", Trigger.MANUAL)
        driver._fire("KR")
        assert ledger.latest_for_country("KR").id == running.id


class TestJobStatus:
    def test_enabled_country(self, driver, registry, ledger):
        driver.register_all()
        batch = driver.trigger_manual("KR", background=False)
        tracker = JobStatusTracker(registry, ledger, driver)

        status = tracker.get("KR")
        assert status.is_registered is True
        assert status.next_execution is not None
        assert status.last_execution == ensure_utc(ledger.get(batch["batchId"]).started_at)

    def test_disabled_country_has_no_next_execution(self, driver, registry, ledger):
        driver.sync(registry.upsert("JP", {"is_enabled": False}))
        status = JobStatusTracker(registry, ledger, driver).get("JP")
        assert status.is_registered is False
        assert status.next_execution is None
        assert status.last_execution is None

    def test_list_covers_every_country(self, registry, ledger):
        statuses = JobStatusTracker(registry, ledger).list()
        assert [s.country for s in statuses] == ["KR", "JP"]
