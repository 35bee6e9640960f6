"""Tests for the courier HTTP API.

Runs the real app against the in-memory runtime from ``conftest`` so every
request goes through ops, the store and the response envelopes.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from courier import __version__
from courier.api.app import create_app
from courier.execution.classifier import ClassifiedError

CALENDAR = {"user_id": "u-1", "organization_id": 1}


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime), raise_server_exceptions=False)


def _submit(client, **overrides) -> dict:
    body = {"job_type": "calendar:sync", "payload": CALENDAR, **overrides}
    resp = client.post("/jobs", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def _dead_letter(runtime) -> str:
    job_id = runtime.jobs.enqueue("calendar:sync", CALENDAR)
    runtime.jobs.claim_due(1, "w-1")
    runtime.jobs.fail(job_id, ClassifiedError.permanent("404 calendar not found"), owner="w-1")
    return runtime.dead_letters.get_by_job(job_id).id


# ── Jobs ─────────────────────────────────────────────────────────────────


class TestJobs:
    def test_submit(self, client):
        data = _submit(client, idempotency_key="cal:u-1")
        assert data["status"] == "pending"
        assert data["job_id"]

    def test_duplicate_key_is_409(self, client):
        _submit(client, idempotency_key="cal:u-1")
        resp = client.post("/jobs", json={"job_type": "calendar:sync", "payload": CALENDAR, "idempotency_key": "cal:u-1"})
        assert resp.status_code == 409
        assert resp.json()["code"] == "CONFLICT"

    def test_invalid_payload_is_400(self, client):
        resp = client.post("/jobs", json={"job_type": "calendar:sync", "payload": {"organization_id": 1}})
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_FAILED"

    def test_malformed_body_is_422(self, client):
        assert client.post("/jobs", json={"payload": CALENDAR}).status_code == 422

    def test_get(self, client):
        job_id = _submit(client)["job_id"]
        resp = client.get(f"/jobs/{job_id}")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["job_type"] == "calendar:sync"
        assert data["attempts"] == 0

    def test_get_missing_is_404(self, client):
        resp = client.get("/jobs/missing")
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_list_paged(self, client):
        for i in range(3):
            _submit(client, payload={"user_id": f"u-{i}", "organization_id": 1})
        resp = client.get("/jobs", params={"status": "pending", "limit": 2})
        body = resp.json()
        assert resp.status_code == 200
        assert len(body["data"]) == 2
        assert body["page"] == {"total": 3, "limit": 2, "offset": 0, "has_more": True}

    def test_list_bad_status_is_400(self, client):
        assert client.get("/jobs", params={"status": "sleeping"}).status_code == 400

    def test_stats(self, client):
        _submit(client)
        assert client.get("/jobs/stats").json()["data"]["pending"] == 1

    def test_cancel(self, client):
        job_id = _submit(client)["job_id"]
        resp = client.post(f"/jobs/{job_id}/cancel")
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "failed"

    def test_cancel_claimed_is_409(self, client, runtime):
        job_id = _submit(client)["job_id"]
        runtime.jobs.claim_due(1, "w-1")
        assert client.post(f"/jobs/{job_id}/cancel").status_code == 409

    def test_submit_with_refresh_drops_cached_result(self, client, runtime):
        runtime.cache.set("score:deal:7", {"score": 81})
        _submit(
            client,
            job_type="leadScore:calculate",
            payload={"entity_type": "deal", "entity_id": 7, "organization_id": 1},
            refresh=True,
        )
        assert runtime.cache.get("score:deal:7") is None


# ── Dead letters ─────────────────────────────────────────────────────────


class TestDeadLetters:
    def test_list_and_get(self, client, runtime):
        dl_id = _dead_letter(runtime)

        listing = client.get("/admin/dlq", params={"job_type": "calendar:sync"}).json()
        assert listing["page"]["total"] == 1
        assert listing["data"][0]["id"] == dl_id

        detail = client.get(f"/admin/dlq/{dl_id}").json()["data"]
        assert detail["failure_history"][0]["message"] == "404 calendar not found"
        assert detail["job"]["payload"]["user_id"] == "u-1"

    def test_list_time_range_validated(self, client):
        resp = client.get(
            "/admin/dlq",
            params={"since": "2026-01-06T00:00:00Z", "until": "2026-01-05T00:00:00Z"},
        )
        assert resp.status_code == 400

    def test_get_missing_is_404(self, client):
        assert client.get("/admin/dlq/missing").status_code == 404

    def test_replay_then_conflict(self, client, runtime):
        dl_id = _dead_letter(runtime)

        resp = client.post(f"/admin/dlq/{dl_id}/replay", json={"replayed_by": "ops"})
        assert resp.status_code == 200
        new_job_id = resp.json()["data"]["new_job_id"]
        assert client.get(f"/jobs/{new_job_id}").json()["data"]["status"] == "pending"

        again = client.post(f"/admin/dlq/{dl_id}/replay")
        assert again.status_code == 409

    def test_resolve(self, client, runtime):
        dl_id = _dead_letter(runtime)
        resp = client.post(f"/admin/dlq/{dl_id}/resolve", json={"resolved_by": "ops"})
        assert resp.status_code == 200
        assert resp.json()["data"]["resolved"] is True
        assert client.post(f"/admin/dlq/{dl_id}/resolve").status_code == 409
        assert client.get("/admin/dlq").json()["page"]["total"] == 0
        assert client.get("/admin/dlq", params={"include_resolved": True}).json()["page"]["total"] == 1


# ── Circuits, quotas, stats ──────────────────────────────────────────────


class TestAdmin:
    def test_circuits(self, client, runtime):
        runtime.breakers.get("calendar").force_open()
        data = client.get("/admin/circuits").json()["data"]
        states = {c["dependency"]: c["state"] for c in data}
        assert states["calendar"] == "open"

    def test_reset_circuit(self, client, runtime):
        runtime.breakers.get("calendar").force_open()
        resp = client.post("/admin/circuits/calendar/reset")
        assert resp.status_code == 200
        assert resp.json()["data"]["state"] == "closed"

    def test_reset_unknown_is_404(self, client):
        assert client.post("/admin/circuits/fax/reset").status_code == 404

    def test_quotas(self, client):
        data = client.get("/admin/quotas").json()["data"]
        assert [q["dependency"] for q in data] == ["inference"]
        assert data[0]["remaining"] == 500

    def test_stats(self, client, runtime):
        _dead_letter(runtime)
        data = client.get("/admin/stats").json()["data"]
        assert data["jobs"]["dead_lettered"] == 1
        assert data["dead_letters"]["unresolved"] == 1

    def test_store_down_is_503_with_retry_after(self, client, store):
        store.close()
        resp = client.get("/admin/stats")
        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "1"
        assert resp.json()["code"] == "UNAVAILABLE"

    def test_reset_with_store_down_is_503(self, client, store):
        store.close()
        resp = client.post("/admin/circuits/calendar/reset")
        assert resp.status_code == 503
        assert resp.json()["code"] == "UNAVAILABLE"

    def test_invalidate_cache(self, client, runtime):
        runtime.cache.set("score:deal:7", {"score": 81})
        resp = client.delete("/admin/cache/score:deal:7")
        assert resp.status_code == 200
        assert resp.json()["data"] == {"cache_key": "score:deal:7", "invalidated": True}
        assert client.delete("/admin/cache/score:deal:7").json()["data"]["invalidated"] is False

    def test_sweep(self, client, runtime, clock):
        runtime.cache.set("score:deal:7", {"score": 81}, ttl_seconds=60)
        clock.advance(61)
        resp = client.post("/admin/sweep")
        assert resp.status_code == 200
        assert resp.json()["data"]["cache_entries"] == 1


# ── Health & middleware ──────────────────────────────────────────────────


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        body = resp.json()
        assert resp.status_code == 200
        assert body["status"] == "healthy"
        assert body["version"] == __version__

    def test_degraded_is_still_200(self, client, runtime):
        runtime.breakers.get("push").force_open()
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["open_circuits"] == ["push"]

    def test_unhealthy_is_503(self, client, store):
        store.close()
        resp = client.get("/health")
        assert resp.status_code == 503
        assert resp.json()["status"] == "unhealthy"

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_request_id_echoed(self, client):
        resp = client.get("/health/live", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        assert "X-Process-Time-Ms" in resp.headers

    def test_request_id_generated(self, client):
        assert client.get("/health/live").headers["X-Request-ID"]
