"""Tests for JobOperations envelopes."""

from __future__ import annotations

from datetime import timedelta

import pytest

CALENDAR = {"user_id": "u-1", "organization_id": 1}
SCORE = {"entity_type": "deal", "entity_id": 7, "organization_id": 1}


@pytest.fixture
def ops(runtime):
    return runtime.job_ops


class TestSubmit:
    def test_submit(self, ops, runtime):
        result = ops.submit("calendar:sync", CALENDAR, idempotency_key="cal:u-1")
        assert result.success
        assert result.data["status"] == "pending"
        assert runtime.jobs.get(result.data["job_id"]).idempotency_key == "cal:u-1"

    def test_duplicate_key_conflict(self, ops):
        ops.submit("calendar:sync", CALENDAR, idempotency_key="cal:u-1")
        result = ops.submit("calendar:sync", CALENDAR, idempotency_key="cal:u-1")
        assert not result.success
        assert result.error.code == "CONFLICT"

    def test_invalid_payload(self, ops):
        result = ops.submit("calendar:sync", {"organization_id": 1})
        assert result.error.code == "VALIDATION_FAILED"

    def test_unknown_job_type(self, ops):
        assert ops.submit("fax:send", {}).error.code == "VALIDATION_FAILED"

    def test_max_attempts_validated(self, ops):
        assert ops.submit("calendar:sync", CALENDAR, max_attempts=0).error.code == "VALIDATION_FAILED"

    def test_run_at_in_future(self, ops, runtime, clock):
        result = ops.submit("calendar:sync", CALENDAR, run_at=clock() + timedelta(minutes=5))
        assert runtime.jobs.claim_due(10, "w-1") == []
        assert runtime.jobs.get(result.data["job_id"]).next_run_at == clock() + timedelta(minutes=5)

    def test_refresh_invalidates_cached_result(self, ops, runtime):
        runtime.cache.set("score:deal:7", {"score": 81})
        result = ops.submit("leadScore:calculate", SCORE, refresh=True)
        assert result.success
        assert runtime.cache.get("score:deal:7") is None

    def test_without_refresh_cache_is_kept(self, ops, runtime):
        runtime.cache.set("score:deal:7", {"score": 81})
        ops.submit("leadScore:calculate", SCORE)
        assert runtime.cache.get("score:deal:7") == {"score": 81}

    def test_refresh_with_invalid_payload_enqueues_nothing(self, ops, runtime):
        result = ops.submit("leadScore:calculate", {"entity_type": "deal"}, refresh=True)
        assert result.error.code == "VALIDATION_FAILED"
        assert runtime.jobs.count_jobs() == 0

    def test_refresh_on_uncached_job_type(self, ops):
        assert ops.submit("calendar:sync", CALENDAR, refresh=True).success


class TestInspect:
    def test_get(self, ops):
        job_id = ops.submit("calendar:sync", CALENDAR).data["job_id"]
        data = ops.get(job_id).data
        assert data["id"] == job_id
        assert data["payload"]["user_id"] == "u-1"
        assert data["failure_history"] == []

    def test_get_missing(self, ops):
        assert ops.get("missing").error.code == "NOT_FOUND"

    def test_list_with_totals(self, ops):
        for i in range(3):
            ops.submit("calendar:sync", {"user_id": f"u-{i}", "organization_id": 1})
        ops.submit("notification:dispatch", {"user_id": "u-1", "title": "hi"})

        result = ops.list_jobs(job_type="calendar:sync", limit=2)
        assert result.total == 3
        assert len(result.data) == 2
        assert result.has_more is True

    def test_list_rejects_unknown_status(self, ops):
        assert ops.list_jobs(status="sleeping").error.code == "VALIDATION_FAILED"

    def test_stats(self, ops):
        ops.submit("calendar:sync", CALENDAR)
        assert ops.stats().data["pending"] == 1


class TestCancelAndPurge:
    def test_cancel_pending(self, ops):
        job_id = ops.submit("calendar:sync", CALENDAR).data["job_id"]
        data = ops.cancel(job_id).data
        assert data["status"] == "failed"
        assert data["last_error"] == "cancelled"

    def test_cancel_claimed_conflict(self, ops, runtime):
        job_id = ops.submit("calendar:sync", CALENDAR).data["job_id"]
        runtime.jobs.claim_due(1, "w-1")
        assert ops.cancel(job_id).error.code == "CONFLICT"

    def test_cancel_missing(self, ops):
        assert ops.cancel("missing").error.code == "NOT_FOUND"

    def test_purge_finished(self, ops, clock):
        job_id = ops.submit("calendar:sync", CALENDAR).data["job_id"]
        ops.cancel(job_id)
        clock.advance(timedelta(hours=25).total_seconds())

        assert ops.purge().data == {"deleted": 1, "older_than_hours": 24}
        assert ops.get(job_id).error.code == "NOT_FOUND"
