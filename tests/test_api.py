"""HTTP API tests against a per-test SQLite database with the scheduler stopped."""

import threading
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from scheduled_matching.config import AppConfig, CountryDefaults
from scheduled_matching.models import MatchSource
from scheduled_matching.storage import match_store
from scheduled_matching.utils.timeutil import utcnow
from scheduled_matching.web.app import create_app


def _client(session_factory, config=None):
    return TestClient(create_app(config or AppConfig(), session_factory, start_scheduler=False))


@pytest.fixture
def client(session_factory):
    with _client(session_factory) as client:
        yield client


@pytest.fixture
def services(client):
    return client.app.state.services


def _join_batch_threads():
    for thread in threading.enumerate():
        if thread.name.startswith("batch-"):
            thread.join(timeout=10)


def _manual_body(user_ids=("u1", "u2"), **overrides):
    body = {
        "userIds": list(user_ids),
        "scheduledAt": (utcnow() + timedelta(hours=1)).isoformat(),
        "reason": "CS ticket #123",
    }
    body.update(overrides)
    return body


class TestHealth:
    def test_health_reports_registered_jobs(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["scheduler"]["running"] is False
        ids = {job["id"] for job in data["scheduler"]["jobs"]}
        assert {"scheduled_matching_KR", "scheduled_matching_JP"} <= ids


class TestConfigRoutes:
    def test_list_uses_camel_case(self, client):
        response = client.get("/config")
        assert response.status_code == 200
        configs = {c["country"]: c for c in response.json()}
        assert set(configs) == {"KR", "JP"}
        kr = configs["KR"]
        assert kr["cronExpression"] == "0 0 * * 4,0"
        assert kr["timezone"] == "Asia/Seoul"
        assert kr["batchSize"] == 5
        assert kr["nextExecutionTime"] is not None
        assert kr["cronDescription"]

    def test_update_and_resync(self, client):
        response = client.patch(
            "/config/kr",
            json={"cronExpression": "30 6 * * 1", "batchSize": 10},
            headers={"X-Admin-User": "alice"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["cronExpression"] == "30 6 * * 1"
        assert body["batchSize"] == 10
        assert body["lastModifiedBy"] == "alice"

        jobs = {j["id"]: j for j in client.get("/health").json()["scheduler"]["jobs"]}
        assert "hour='6'" in jobs["scheduled_matching_KR"]["trigger"]

    def test_disable_removes_job(self, client):
        response = client.patch("/config/JP", json={"isEnabled": False})
        assert response.status_code == 200
        assert response.json()["nextExecutionTime"] is None
        status = client.get("/config/jobs/status/JP").json()
        assert status["isRegistered"] is False

    @pytest.mark.parametrize("patch", [
        {"batchSize": 51},
        {"delayBetweenUsersMs": -1},
        {"maxRetryCount": 6},
        {"cronExpression": "not a cron"},
        {"timezone": "Mars/Olympus"},
    ])
    def test_invalid_update_rejected(self, client, patch):
        response = client.patch("/config/KR", json=patch)
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert client.get("/config/KR").json()["batchSize"] == 5

    def test_unknown_field_rejected(self, client):
        response = client.patch("/config/KR", json={"batchSizes": 3})
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_unknown_country(self, client):
        assert client.get("/config/US").status_code == 400

    def test_create_config(self, session_factory):
        config = AppConfig(countries={"KR": CountryDefaults()})
        with _client(session_factory, config) as client:
            response = client.post(
                "/config", json={"country": "JP", "cronExpression": "0 1 * * *", "timezone": "Asia/Tokyo"}
            )
            assert response.status_code == 201
            assert response.json()["country"] == "JP"

            duplicate = client.post("/config", json={"country": "JP", "cronExpression": "0 1 * * *"})
            assert duplicate.status_code == 400

            assert client.get("/config/jobs/status/JP").json()["isRegistered"] is True

    def test_options(self, client):
        data = client.get("/config/options").json()
        assert any(p["value"] == "0 0 * * 4,0" for p in data["cronPresets"])
        assert {"label": "Asia/Tokyo (JST)", "value": "Asia/Tokyo"} in data["timezones"]

    def test_job_status_list(self, client):
        statuses = {s["country"]: s for s in client.get("/config/jobs/status").json()}
        assert statuses["KR"]["isRegistered"] is True
        assert statuses["KR"]["lastExecution"] is None
        assert statuses["KR"]["nextExecution"] is not None


class TestTrigger:
    def test_trigger_runs_batch_in_background(self, client, add_user):
        add_user("u1", "MALE")
        add_user("u2", "FEMALE")

        response = client.post("/config/trigger", json={"country": "kr"}, headers={"X-Admin-User": "bob"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["country"] == "KR"
        _join_batch_threads()

        history = client.get("/config/batches/KR").json()
        assert [b["id"] for b in history] == [body["batchId"]]
        assert history[0]["status"] == "completed"
        assert history[0]["metadata"]["trigger"] == "manual"
        assert history[0]["metadata"]["triggeredBy"] == "bob"

    def test_trigger_while_running_conflicts(self, client, services):
        running = services.ledger.open_batch(services.registry.get("KR"), 0)

        response = client.post("/config/trigger", json={"country": "KR"})

        assert response.status_code == 409
        assert response.json()["error"] == "ALREADY_RUNNING"
        assert [b["id"] for b in client.get("/config/batches/running").json()] == [running.id]
        assert len(client.get("/config/batches/KR").json()) == 1

    def test_trigger_unknown_country(self, client):
        assert client.post("/config/trigger", json={"country": "US"}).status_code == 400


class TestBatchRoutes:
    def test_detail_with_stats(self, client, services, add_user):
        add_user("u1", "MALE")
        add_user("u2", "FEMALE")
        batch = services.coordinator.run("KR")

        response = client.get(f"/config/batches/detail/{batch.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["batch"]["status"] == "completed"
        assert data["batch"]["processedUsers"] == 2
        assert data["batch"]["createdAt"] is not None
        assert data["stats"]["totalDetails"] == 2
        # u2 was already paired with u1 earlier in the same batch
        assert data["stats"]["successCount"] == 1
        statuses = {d["userId"]: d["status"] for d in data["details"]}
        assert statuses == {"u1": "success", "u2": "filter_exhausted"}
        assert all(d["attemptCount"] == 1 for d in data["details"])

    def test_detail_unknown_batch(self, client):
        response = client.get("/config/batches/detail/missing")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_cancel_running_batch_once(self, client, services):
        running = services.ledger.open_batch(services.registry.get("JP"), 0)

        first = client.post(f"/config/batches/{running.id}/cancel")
        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"

        second = client.post(f"/config/batches/{running.id}/cancel")
        assert second.status_code == 409
        assert second.json()["error"] == "INVALID_STATE"


class TestManualRoutes:
    @pytest.fixture(autouse=True)
    def users(self, add_user):
        add_user("u1", "MALE", name="Minjun")
        add_user("u2", "FEMALE", name="Seoyeon")
        add_user("u3", "MALE")
        add_user("u4", "FEMALE")

    def test_validate_envelope(self, client):
        response = client.post("/matching/validate", json={"userIds": ["u1", "u2"]})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["isValid"] is True
        assert data["blockedReasons"] == []
        assert [u["matchingStatus"] for u in data["users"]] == ["available", "available"]

    def test_create_get_execute(self, client):
        created = client.post("/matching/manual", json=_manual_body(), headers={"X-Admin-User": "carol"})
        assert created.status_code == 201
        matching = created.json()["data"]
        assert matching["status"] == "scheduled"
        assert matching["createdBy"] == "carol"
        assert [u["name"] for u in matching["users"]] == ["Minjun", "Seoyeon"]

        fetched = client.get(f"/matching/manual/{matching['id']}").json()["data"]
        assert fetched["id"] == matching["id"]

        executed = client.post(f"/matching/manual/{matching['id']}/execute").json()["data"]
        assert executed["status"] == "completed"
        assert executed["logs"][-1]["action"] == "notify"
        assert executed["logs"][1]["actor"] == "admin"

    def test_blocked_create_returns_422(self, client, session_factory):
        db = session_factory()
        try:
            match_store.add_match(db, "u1", "u4", MatchSource.SCHEDULED)
            db.commit()
        finally:
            db.close()

        response = client.post("/matching/manual", json=_manual_body(skipValidation=False))

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "VALIDATION_BLOCKED"
        assert body["context"]["blockedReasons"] == ["u1 already matched today"]
        assert client.get("/matching/manual").json()["pagination"]["total"] == 0

    def test_malformed_body_returns_400(self, client):
        response = client.post("/matching/manual", json={"userIds": ["u1", "u2"], "reason": "x"})
        assert response.status_code == 400
        assert "scheduledAt" in response.json()["message"]

    def test_list_pagination_and_filters(self, client):
        client.post("/matching/manual", json=_manual_body(matchType="vip"))
        client.post("/matching/manual", json=_manual_body(("u3", "u4"), matchType="test"))

        page = client.get("/matching/manual", params={"page": 1, "limit": 1}).json()
        assert len(page["data"]) == 1
        assert page["pagination"] == {"page": 1, "limit": 1, "total": 2, "totalPages": 2}

        vip = client.get("/matching/manual", params={"matchType": "vip"}).json()
        assert [m["matchType"] for m in vip["data"]] == ["vip"]

    def test_cancel_requires_reason(self, client):
        matching = client.post("/matching/manual", json=_manual_body()).json()["data"]

        missing = client.request("DELETE", f"/matching/manual/{matching['id']}")
        assert missing.status_code == 400

        cancelled = client.request(
            "DELETE", f"/matching/manual/{matching['id']}", json={"reason": "user asked"}
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["data"]["status"] == "cancelled"
        assert cancelled.json()["data"]["cancelReason"] == "user asked"

        again = client.post(f"/matching/manual/{matching['id']}/execute")
        assert again.status_code == 409
