"""Tests for the store-backed circuit breaker."""

from __future__ import annotations

import pytest

from courier.core.errors import CircuitOpenError
from courier.execution.circuit_breaker import Admission, CircuitBreaker, CircuitState


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def breaker(store, clock) -> CircuitBreaker:
    return CircuitBreaker(
        "calendar",
        store,
        failure_threshold=5,
        cooldown_seconds=30,
        probe_timeout_seconds=60,
        clock=clock,
    )


def _trip(breaker: CircuitBreaker, times: int = 5) -> None:
    for _ in range(times):
        breaker.record_failure(RuntimeError("503"))


class TestClosed:
    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.acquire() == Admission.ADMITTED

    def test_stays_closed_below_threshold(self, breaker):
        _trip(breaker, 4)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.snapshot().failure_count == 4

    def test_success_resets_consecutive_failures(self, breaker):
        _trip(breaker, 4)
        breaker.record_success()
        _trip(breaker, 4)
        assert breaker.state == CircuitState.CLOSED

    def test_opens_at_threshold(self, breaker, clock):
        _trip(breaker, 5)
        snap = breaker.snapshot()
        assert snap.state == CircuitState.OPEN
        assert snap.opened_at == clock()


class TestOpen:
    def test_rejects_during_cooldown(self, breaker, clock):
        _trip(breaker)
        clock.advance(29)
        assert breaker.acquire() == Admission.REJECTED
        assert breaker.allow_request() is False

    def test_retry_after_counts_down(self, breaker, clock):
        _trip(breaker)
        clock.advance(10)
        assert breaker.retry_after() == pytest.approx(20.0)

    def test_retry_after_none_when_closed(self, breaker):
        assert breaker.retry_after() is None

    def test_call_fails_fast(self, breaker):
        _trip(breaker)
        calls = []
        with pytest.raises(CircuitOpenError):
            breaker.call(calls.append, 1)
        assert calls == []


class TestHalfOpen:
    def test_single_trial_call_after_cooldown(self, breaker, clock):
        _trip(breaker)
        clock.advance(30)
        assert breaker.acquire() == Admission.PROBE
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.acquire() == Admission.REJECTED
        assert breaker.acquire() == Admission.REJECTED

    def test_trial_success_closes(self, breaker, clock):
        _trip(breaker)
        clock.advance(30)
        breaker.acquire()
        breaker.record_success()
        snap = breaker.snapshot()
        assert snap.state == CircuitState.CLOSED
        assert snap.failure_count == 0
        assert snap.opened_at is None

    def test_trial_failure_reopens_with_new_cooldown(self, breaker, clock):
        _trip(breaker)
        clock.advance(30)
        breaker.acquire()
        breaker.record_failure(RuntimeError("still down"))
        snap = breaker.snapshot()
        assert snap.state == CircuitState.OPEN
        assert snap.opened_at == clock()
        clock.advance(29)
        assert breaker.acquire() == Admission.REJECTED
        clock.advance(1)
        assert breaker.acquire() == Admission.PROBE

    def test_released_trial_slot_can_be_retaken(self, breaker, clock):
        _trip(breaker)
        clock.advance(30)
        assert breaker.acquire() == Admission.PROBE
        breaker.release_probe()
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.acquire() == Admission.PROBE

    def test_stale_trial_slot_lapses(self, breaker, clock):
        _trip(breaker)
        clock.advance(30)
        breaker.acquire()
        clock.advance(59)
        assert breaker.acquire() == Admission.REJECTED
        clock.advance(1)
        assert breaker.acquire() == Admission.PROBE


class TestAdmin:
    def test_reset(self, breaker):
        _trip(breaker)
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.snapshot().failure_count == 0

    def test_force_open(self, breaker):
        breaker.force_open()
        assert breaker.acquire() == Admission.REJECTED

    def test_state_shared_through_store(self, breaker, store, clock):
        other = CircuitBreaker("calendar", store, failure_threshold=5, clock=clock)
        _trip(breaker)
        assert other.state == CircuitState.OPEN

    def test_snapshot_dict(self, breaker):
        d = breaker.snapshot().to_dict()
        assert d["dependency"] == "calendar"
        assert d["state"] == "closed"
        assert d["opened_at"] is None


class TestRegistry:
    def test_lists_configured_dependencies(self, breakers):
        names = [s.dependency for s in breakers.snapshots()]
        assert names == sorted(["messaging", "calendar", "inference", "object_store", "push"])

    def test_policy_applied(self, breakers):
        assert breakers.get("inference").failure_threshold == 5
        assert breakers.get("inference") is breakers.get("inference")

    def test_reset_all(self, breakers):
        _trip(breakers.get("push"))
        breakers.reset_all()
        assert all(s.state == CircuitState.CLOSED for s in breakers.snapshots())
