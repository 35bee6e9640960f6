"""
Runtime wiring.

``create_runtime()`` is the single composition root: it opens the store and
builds every component on top of it with one shared clock. The HTTP app,
the CLI and the tests all start from a :class:`Runtime`::

    runtime = create_runtime(get_settings())
    runtime.registry.register("calendar:sync", sync_calendar)
    runtime.worker.start()
"""

from __future__ import annotations

from dataclasses import dataclass

from courier.core.logging import get_logger
from courier.core.settings import CourierSettings, get_settings
from courier.core.store import SqliteStore
from courier.core.timestamps import Clock, utc_now
from courier.execution.circuit_breaker import CircuitBreakerRegistry
from courier.execution.classifier import ErrorClassifier
from courier.execution.dlq import DeadLetterStore
from courier.execution.jobs import JobStore
from courier.execution.rate_limit import RateLimiter, ResultCache
from courier.execution.registry import HandlerRegistry
from courier.execution.retry import BackoffCalculator, RetryExecutor
from courier.execution.worker import Worker
from courier.ops.admin import AdminInterface
from courier.ops.health import HealthProbe
from courier.ops.jobs import JobOperations

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Every long-lived component, sharing one store and one clock."""

    settings: CourierSettings
    store: SqliteStore
    clock: Clock
    breakers: CircuitBreakerRegistry
    rate_limiter: RateLimiter
    cache: ResultCache
    classifier: ErrorClassifier
    backoff: BackoffCalculator
    executor: RetryExecutor
    jobs: JobStore
    dead_letters: DeadLetterStore
    registry: HandlerRegistry
    job_ops: JobOperations
    admin: AdminInterface
    health: HealthProbe
    worker: Worker

    def close(self) -> None:
        self.store.close()


def create_runtime(
    settings: CourierSettings | None = None,
    store: SqliteStore | None = None,
    clock: Clock | None = None,
    registry: HandlerRegistry | None = None,
) -> Runtime:
    """Build a :class:`Runtime`.

    Args:
        settings: Defaults to the cached :func:`get_settings` instance
        store: Defaults to a store on ``settings.database_path``
        clock: Time source shared by every component (tests pass a fake)
        registry: Handler registry; if omitted one is built from
            ``settings.handler_modules``
    """
    settings = settings or get_settings()
    store = store or SqliteStore(settings.database_path)
    store.initialize()
    clock = clock or utc_now
    if registry is None:
        registry = HandlerRegistry()
        registry.load(settings.handler_modules)

    breakers = CircuitBreakerRegistry(store, settings, clock=clock)
    rate_limiter = RateLimiter(store, settings, clock=clock)
    cache = ResultCache(store, default_ttl_seconds=settings.result_cache_ttl_seconds, clock=clock)
    classifier = ErrorClassifier()
    backoff = BackoffCalculator.from_settings(settings)

    # One attempt per claim: waits between attempts live in next_run_at.
    executor = RetryExecutor(
        breakers,
        settings,
        rate_limiter=rate_limiter,
        cache=cache,
        classifier=classifier,
        backoff=backoff,
        max_attempts=1,
    )
    jobs = JobStore(store, settings, backoff=backoff, clock=clock)
    admin = AdminInterface(jobs, jobs.dead_letters, breakers, rate_limiter, settings, cache=cache)
    worker = Worker(
        jobs,
        executor,
        registry,
        poll_interval=settings.poll_interval,
        batch_size=settings.batch_size,
        max_workers=settings.worker_concurrency,
        clock=clock,
        housekeeping=admin.sweep_expired,
        housekeeping_interval=settings.sweep_interval_seconds,
    )

    logger.debug("runtime_created", database=settings.database_path, dependencies=sorted(settings.dependencies))
    return Runtime(
        settings=settings,
        store=store,
        clock=clock,
        breakers=breakers,
        rate_limiter=rate_limiter,
        cache=cache,
        classifier=classifier,
        backoff=backoff,
        executor=executor,
        jobs=jobs,
        dead_letters=jobs.dead_letters,
        registry=registry,
        job_ops=JobOperations(jobs, settings, cache=cache),
        admin=admin,
        health=HealthProbe(jobs, breakers, rate_limiter, settings, clock=clock),
        worker=worker,
    )


__all__ = ["Runtime", "create_runtime"]
