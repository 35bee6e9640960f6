"""Tests for RetryExecutor: breaker bookkeeping, cost gates, cache and retries."""

from __future__ import annotations

import time
from datetime import UTC, datetime

import pytest

from courier.core.errors import ExternalServiceError, NetworkError
from courier.core.result import Err, Ok
from courier.core.settings import CourierSettings, DependencyPolicy
from courier.execution.circuit_breaker import CircuitBreakerRegistry, CircuitState
from courier.execution.models import FailureKind
from courier.execution.rate_limit import RateLimiter, ResultCache
from courier.execution.retry import RetryExecutor


class FlakyCall:
    """Fails with the queued exceptions, then returns ``value``."""

    def __init__(self, *errors: BaseException, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def exec_settings() -> CourierSettings:
    return CourierSettings(
        _env_file=None,
        database_path=":memory:",
        dependencies={
            "calendar": DependencyPolicy(failure_threshold=3, cooldown_seconds=30),
            "inference": DependencyPolicy(rate_limit_per_minute=2, daily_quota=10, call_timeout_seconds=0.2),
        },
    )


@pytest.fixture
def registry(store, exec_settings, clock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(store, exec_settings, clock=clock)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def executor(store, exec_settings, clock, registry, backoff, sleeps) -> RetryExecutor:
    return RetryExecutor(
        registry,
        exec_settings,
        rate_limiter=RateLimiter(store, exec_settings, clock=clock),
        cache=ResultCache(store, clock=clock),
        backoff=backoff,
        max_attempts=3,
        sleep=sleeps.append,
    )


class TestSuccess:
    def test_ok_value(self, executor):
        result = executor.execute("calendar", lambda user: f"synced {user}", "u-1")
        assert result == Ok("synced u-1")

    def test_success_after_retries(self, executor, sleeps):
        call = FlakyCall(NetworkError("reset"), ExternalServiceError("down", status_code=503))
        result = executor.execute("calendar", call)
        assert result.is_ok()
        assert call.calls == 3
        assert sleeps == [1.0, 2.0]

    def test_success_resets_breaker(self, executor, registry):
        executor.execute("calendar", FlakyCall(NetworkError("reset"), NetworkError("reset")))
        assert registry.get("calendar").snapshot().failure_count == 0


class TestFailures:
    def test_retryable_exhausts_budget(self, executor, registry, sleeps):
        call = FlakyCall(*[ExternalServiceError("down", status_code=500) for _ in range(5)])
        result = executor.execute("calendar", call)
        assert isinstance(result, Err)
        assert result.attempts_used == 3
        assert result.error.kind is FailureKind.RETRYABLE
        assert call.calls == 3
        assert sleeps == [1.0, 2.0]
        assert registry.get("calendar").state == CircuitState.OPEN

    def test_permanent_returns_at_once_and_counts_as_success(self, executor, registry, sleeps):
        registry.get("calendar").record_failure()
        call = FlakyCall(ExternalServiceError("not found", status_code=404))
        result = executor.execute("calendar", call)
        assert result.is_err()
        assert result.attempts_used == 1
        assert result.error.is_permanent
        assert sleeps == []
        assert registry.get("calendar").snapshot().failure_count == 0

    def test_upstream_429_returns_with_hint_and_no_breaker_update(self, executor, registry):
        error = ExternalServiceError("slow down", status_code=429, retry_after=12)
        result = executor.execute("calendar", FlakyCall(error))
        assert result.error.is_rate_limited
        assert result.error.retry_after == 12.0
        assert registry.get("calendar").snapshot().failure_count == 0

    def test_timeout_is_retryable(self, store, exec_settings, registry, backoff):
        executor = RetryExecutor(registry, exec_settings, backoff=backoff, max_attempts=1, sleep=lambda _: None)
        result = executor.execute("inference", time.sleep, 1.0)
        assert result.error.is_retryable
        assert result.error.error_type == "CallTimeoutError"


class TestCircuit:
    def test_open_circuit_skips_call(self, executor, registry):
        registry.get("calendar").force_open()
        call = FlakyCall()
        result = executor.execute("calendar", call)
        assert call.calls == 0
        assert result.attempts_used == 0
        assert result.error.error_type == "CircuitOpenError"
        assert result.error.is_retryable
        assert result.error.retry_after == pytest.approx(30.0)

    def test_open_mid_retry_stops_loop(self, executor, registry):
        call = FlakyCall(*[NetworkError("reset") for _ in range(5)])
        registry.get("calendar").record_failure()
        result = executor.execute("calendar", call)
        # 1 stored + 2 calls = threshold 3, the third attempt is refused
        assert call.calls == 2
        assert result.attempts_used == 2
        assert result.error.error_type == "CircuitOpenError"

    def test_half_open_success_closes(self, executor, registry, clock):
        registry.get("calendar").force_open()
        clock.advance(30)
        assert executor.execute("calendar", FlakyCall()).is_ok()
        assert registry.get("calendar").state == CircuitState.CLOSED

    def test_breaker_update_failure_keeps_the_result(self, executor, store):
        def sync_then_lose_store():
            store.close()
            return "synced"

        assert executor.execute("calendar", sync_then_lose_store) == Ok("synced")

    def test_breaker_failure_update_lost_returns_err(self, executor, store):
        def fail_and_lose_store():
            store.close()
            raise NetworkError("reset")

        result = executor.execute("calendar", fail_and_lose_store)
        assert result.is_err()
        assert result.attempts_used == 1
        assert result.error.error_type == "StoreUnavailableError"


class TestCostGates:
    def test_quota_sensitive_call_is_rate_limited(self, executor):
        call = FlakyCall()
        executor.execute("inference", call, quota_identifier="global")
        executor.execute("inference", call, quota_identifier="global")
        result = executor.execute("inference", call, quota_identifier="global")
        assert call.calls == 2
        assert result.error.is_rate_limited
        assert result.error.retry_after == pytest.approx(60.0)

    def test_gate_not_applied_without_identifier(self, executor):
        call = FlakyCall()
        for _ in range(5):
            assert executor.execute("inference", call).is_ok()

    def test_rate_limited_trial_slot_is_released(self, executor, registry, clock):
        breaker = registry.get("inference")
        executor.execute("inference", FlakyCall(), quota_identifier="global")
        executor.execute("inference", FlakyCall(), quota_identifier="global")
        breaker.force_open()
        clock.advance(30)

        result = executor.execute("inference", FlakyCall(), quota_identifier="global")
        assert result.error.is_rate_limited
        snap = breaker.snapshot()
        assert snap.state == CircuitState.HALF_OPEN
        assert snap.probe_in_flight is False

    def test_fail_closed_when_store_down(self, executor, store):
        store.close()
        call = FlakyCall()
        result = executor.execute("inference", call, quota_identifier="global")
        assert call.calls == 0
        assert result.is_err()


class TestCache:
    def test_hit_bypasses_breaker_and_quota(self, executor, registry):
        call = FlakyCall(value={"score": 81})
        assert executor.execute("inference", call, quota_identifier="global", cache_key="score:deal:7") == Ok(
            {"score": 81}
        )
        registry.get("inference").force_open()
        for _ in range(5):
            result = executor.execute("inference", call, quota_identifier="global", cache_key="score:deal:7")
            assert result == Ok({"score": 81})
        assert call.calls == 1

    def test_failures_not_cached(self, executor):
        call = FlakyCall(ExternalServiceError("bad", status_code=400), value=1)
        executor.execute("inference", call, quota_identifier="global", cache_key="k")
        assert executor.execute("inference", call, quota_identifier="global", cache_key="k") == Ok(1)
        assert call.calls == 2

    def test_none_result_not_cached(self, executor):
        call = FlakyCall(value=None)
        assert executor.execute("inference", call, cache_key="k") == Ok(None)
        assert executor.execute("inference", call, cache_key="k") == Ok(None)
        assert call.calls == 2

    def test_non_json_result_returned_uncached(self, executor):
        finished = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)
        call = FlakyCall(value=finished)
        assert executor.execute("inference", call, cache_key="k") == Ok(finished)
        assert executor.execute("inference", call, cache_key="k") == Ok(finished)
        assert call.calls == 2


def test_max_attempts_validated(registry, exec_settings):
    with pytest.raises(ValueError):
        RetryExecutor(registry, exec_settings, max_attempts=0)
