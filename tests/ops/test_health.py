"""Tests for the runtime health check."""

from __future__ import annotations

import pytest

from courier.ops.health import HealthStatus


class TestHealthCheck:
    def test_idle_runtime_is_healthy(self, runtime):
        report = runtime.health.check()
        assert report.status is HealthStatus.HEALTHY
        assert report.healthy
        assert report.queue_depth == 0
        assert report.oldest_pending_age is None
        assert report.open_circuits == []

    def test_queue_depth_and_oldest_age(self, runtime, clock):
        runtime.jobs.enqueue("calendar:sync", {"user_id": "u-1", "organization_id": 1})
        clock.advance(90)
        runtime.jobs.enqueue("calendar:sync", {"user_id": "u-2", "organization_id": 1})
        report = runtime.health.check()
        assert report.queue_depth == 2
        assert report.oldest_pending_age == pytest.approx(90.0)

    def test_open_circuit_degrades(self, runtime):
        runtime.breakers.get("push").force_open()
        report = runtime.health.check()
        assert report.status is HealthStatus.DEGRADED
        assert report.open_circuits == ["push"]

    def test_half_open_circuit_listed(self, runtime, clock):
        breaker = runtime.breakers.get("push")
        breaker.force_open()
        clock.advance(30)
        breaker.acquire()
        assert runtime.health.check().open_circuits == ["push"]

    def test_quota_near_limit_degrades(self, runtime):
        for i in range(400):
            runtime.rate_limiter.acquire("inference", identifier=f"org:{i % 50}")
        report = runtime.health.check()
        assert report.status is HealthStatus.DEGRADED
        assert report.quota_near_limit == ["inference"]

    def test_quota_below_ratio_is_healthy(self, runtime):
        runtime.rate_limiter.acquire("inference")
        assert runtime.health.check().quota_near_limit == []

    def test_store_down_is_unhealthy(self, runtime, store):
        store.close()
        report = runtime.health.check()
        assert report.status is HealthStatus.UNHEALTHY
        assert report.error

    def test_to_dict(self, runtime):
        d = runtime.health.check().to_dict()
        assert d["status"] == "healthy"
        assert d["checked_at"] == "2026-01-05T12:00:00.000000+00:00"
        assert "error" not in d
