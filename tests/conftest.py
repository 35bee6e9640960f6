"""
Shared pytest fixtures for courier-core tests.

This module provides:
- ``FakeClock``: a manually advanced clock injected into every component
- An in-memory store and settings with deterministic backoff
- A fully wired ``Runtime`` for ops/API tests

Usage:
    def test_something(runtime, clock):
        job_id = runtime.jobs.enqueue("calendar:sync", {"user_id": "u-1", "organization_id": 1})
        clock.advance(30)
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from courier.core.settings import CourierSettings
from courier.core.store import SqliteStore
from courier.execution.circuit_breaker import CircuitBreakerRegistry
from courier.execution.jobs import JobStore
from courier.execution.rate_limit import RateLimiter, ResultCache
from courier.execution.registry import HandlerRegistry
from courier.execution.retry import BackoffCalculator
from courier.runtime import create_runtime

START = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests by directory: api/cli are integration, the rest unit."""
    for item in items:
        parts = Path(item.path).relative_to(Path(__file__).parent).parts
        if parts and parts[0] in {"api", "cli"}:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> CourierSettings:
    return CourierSettings(
        _env_file=None,
        database_path=":memory:",
        poll_interval=0.01,
        worker_concurrency=4,
        batch_size=10,
    )


@pytest.fixture
def store():
    s = SqliteStore(":memory:")
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def backoff() -> BackoffCalculator:
    """Backoff without jitter: delay(n) == 2 ** n seconds."""
    return BackoffCalculator(base_delay=1.0, max_delay=60.0, rng=lambda: 0.0)


@pytest.fixture
def jobs(store, settings, backoff, clock) -> JobStore:
    return JobStore(store, settings, backoff=backoff, clock=clock)


@pytest.fixture
def breakers(store, settings, clock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(store, settings, clock=clock)


@pytest.fixture
def rate_limiter(store, settings, clock) -> RateLimiter:
    return RateLimiter(store, settings, clock=clock)


@pytest.fixture
def cache(store, clock) -> ResultCache:
    return ResultCache(store, default_ttl_seconds=3600, clock=clock)


@pytest.fixture
def runtime(settings, store, clock):
    """Runtime on the in-memory store with an empty handler registry."""
    rt = create_runtime(settings, store=store, clock=clock, registry=HandlerRegistry())
    rt.backoff.rng = lambda: 0.0
    return rt
