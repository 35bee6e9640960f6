"""Tests for AdminInterface envelopes."""

from __future__ import annotations

from datetime import timedelta

from courier.execution.classifier import ClassifiedError
from courier.execution.circuit_breaker import CircuitState


def _dead_letter(runtime, job_type: str = "calendar:sync", payload: dict | None = None) -> str:
    job_id = runtime.jobs.enqueue(job_type, payload or {"user_id": "u-1", "organization_id": 1})
    runtime.jobs.claim_due(1, "w-1")
    runtime.jobs.fail(job_id, ClassifiedError.permanent("404 not found"), owner="w-1")
    return runtime.dead_letters.get_by_job(job_id).id


class TestDeadLetters:
    def test_list(self, runtime):
        dl_id = _dead_letter(runtime)
        result = runtime.admin.list_dead_letters()
        assert result.success
        assert result.total == 1
        assert result.has_more is False
        assert result.data[0]["id"] == dl_id
        assert result.data[0]["last_error"] == "404 not found"

    def test_list_paging(self, runtime, clock):
        for _ in range(3):
            _dead_letter(runtime)
            clock.advance(1)
        result = runtime.admin.list_dead_letters(limit=2)
        assert len(result.data) == 2
        assert result.has_more is True

    def test_list_validation(self, runtime, clock):
        assert runtime.admin.list_dead_letters(limit=0).error.code == "VALIDATION_FAILED"
        bad_range = runtime.admin.list_dead_letters(since=clock(), until=clock() - timedelta(hours=1))
        assert bad_range.error.code == "VALIDATION_FAILED"

    def test_get(self, runtime):
        dl_id = _dead_letter(runtime)
        result = runtime.admin.get_dead_letter(dl_id)
        assert result.success
        assert len(result.data["failure_history"]) == 1

    def test_get_missing(self, runtime):
        result = runtime.admin.get_dead_letter("missing")
        assert not result.success
        assert result.error.code == "NOT_FOUND"

    def test_replay_then_conflict(self, runtime):
        dl_id = _dead_letter(runtime)
        first = runtime.admin.replay(dl_id, replayed_by="ops")
        assert first.success
        assert runtime.jobs.get(first.data["new_job_id"]) is not None

        second = runtime.admin.replay(dl_id)
        assert second.error.code == "CONFLICT"

    def test_replay_missing(self, runtime):
        assert runtime.admin.replay("missing").error.code == "NOT_FOUND"

    def test_resolve_then_conflict(self, runtime):
        dl_id = _dead_letter(runtime)
        assert runtime.admin.resolve(dl_id, resolved_by="ops").data == {"dead_letter_id": dl_id, "resolved": True}
        assert runtime.admin.resolve(dl_id).error.code == "CONFLICT"

    def test_purge_uses_retention_default(self, runtime):
        result = runtime.admin.purge_dead_letters()
        assert result.data == {"deleted": 0, "older_than_days": 30}


class TestCircuits:
    def test_circuit_states(self, runtime):
        runtime.breakers.get("inference").force_open()
        result = runtime.admin.circuit_states()
        states = {c["dependency"]: c["state"] for c in result.data}
        assert states["inference"] == "open"
        assert states["calendar"] == "closed"
        assert set(result.data[0]) >= {"dependency", "state", "failure_count", "opened_at"}

    def test_reset(self, runtime):
        runtime.breakers.get("inference").force_open()
        result = runtime.admin.reset_circuit("inference")
        assert result.data["state"] == "closed"
        assert runtime.breakers.get("inference").state == CircuitState.CLOSED

    def test_reset_unknown(self, runtime):
        assert runtime.admin.reset_circuit("fax").error.code == "NOT_FOUND"

    def test_reset_with_store_down_is_unavailable(self, runtime, store):
        store.close()
        assert runtime.admin.reset_circuit("inference").error.code == "UNAVAILABLE"


class TestQuotasAndStats:
    def test_quota_usage(self, runtime):
        runtime.rate_limiter.acquire("inference")
        [usage] = runtime.admin.quota_usage().data
        assert usage["dependency"] == "inference"
        assert (usage["used"], usage["limit"], usage["remaining"]) == (1, 500, 499)
        assert usage["window_reset_at"] == "2026-01-06T00:00:00.000000+00:00"

    def test_queue_stats(self, runtime):
        _dead_letter(runtime)
        runtime.jobs.enqueue("calendar:sync", {"user_id": "u-2", "organization_id": 1})
        data = runtime.admin.queue_stats().data
        assert data["jobs"]["pending"] == 1
        assert data["jobs"]["dead_lettered"] == 1
        assert data["dead_letters"]["unresolved"] == 1

    def test_store_failure_is_unavailable(self, runtime, store):
        store.close()
        result = runtime.admin.queue_stats()
        assert result.error.code == "UNAVAILABLE"
        assert result.error.retryable is True


class TestCacheAndSweep:
    def test_invalidate(self, runtime):
        runtime.cache.set("score:deal:7", {"score": 81})
        result = runtime.admin.invalidate_cache("score:deal:7")
        assert result.data == {"cache_key": "score:deal:7", "invalidated": True}
        assert runtime.cache.get("score:deal:7") is None
        assert runtime.admin.invalidate_cache("score:deal:7").data["invalidated"] is False

    def test_invalidate_requires_key(self, runtime):
        assert runtime.admin.invalidate_cache("").error.code == "VALIDATION_FAILED"

    def test_sweep_expired(self, runtime, clock):
        runtime.cache.set("score:deal:7", {"score": 81}, ttl_seconds=60)
        runtime.rate_limiter.acquire("inference", identifier="org:1")
        clock.advance(8 * 86400)

        result = runtime.admin.sweep_expired()

        assert result.data == {"rate_events": 1, "quota_counters": 1, "cache_entries": 1}
        assert runtime.admin.sweep_expired().data == {"rate_events": 0, "quota_counters": 0, "cache_entries": 0}

    def test_sweep_keeps_recent_quota_counters(self, runtime):
        runtime.rate_limiter.acquire("inference")
        assert runtime.admin.sweep_expired().data["quota_counters"] == 0
        assert runtime.rate_limiter.usage("inference").used == 1

    def test_sweep_with_store_down_is_unavailable(self, runtime, store):
        store.close()
        assert runtime.admin.sweep_expired().error.code == "UNAVAILABLE"
