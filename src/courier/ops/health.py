"""Health probe for the job runtime.

Aggregates queue depth, oldest pending age, open circuits and quotas near
their daily limit into one report::

    probe = HealthProbe(jobs, breakers, rate_limiter, settings)
    report = probe.check()
    if report.status is not HealthStatus.HEALTHY:
        alert(report.to_dict())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from courier.core.errors import StoreUnavailableError
from courier.core.logging import get_logger
from courier.core.settings import CourierSettings
from courier.core.timestamps import Clock, to_iso, utc_now
from courier.execution.circuit_breaker import CircuitBreakerRegistry, CircuitState
from courier.execution.jobs import JobStore
from courier.execution.rate_limit import RateLimiter

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthReport:
    """Snapshot of runtime health.

    ``status`` is ``degraded`` when any circuit is not closed or any quota
    has used at least ``quota_near_limit_ratio`` of its daily limit, and
    ``unhealthy`` when the store cannot be read at all.
    """

    status: HealthStatus
    queue_depth: int = 0
    oldest_pending_age: float | None = None
    open_circuits: list[str] = field(default_factory=list)
    quota_near_limit: list[str] = field(default_factory=list)
    dead_letters_unresolved: int = 0
    checked_at: datetime | None = None
    error: str | None = None

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "status": self.status.value,
            "queue_depth": self.queue_depth,
            "oldest_pending_age": self.oldest_pending_age,
            "open_circuits": self.open_circuits,
            "quota_near_limit": self.quota_near_limit,
            "dead_letters_unresolved": self.dead_letters_unresolved,
            "checked_at": to_iso(self.checked_at),
        }
        if self.error:
            d["error"] = self.error
        return d


class HealthProbe:
    """Builds a :class:`HealthReport` from the store-backed components."""

    def __init__(
        self,
        jobs: JobStore,
        breakers: CircuitBreakerRegistry,
        rate_limiter: RateLimiter,
        settings: CourierSettings,
        clock: Clock = utc_now,
    ):
        self.jobs = jobs
        self.breakers = breakers
        self.rate_limiter = rate_limiter
        self.near_limit_ratio = settings.quota_near_limit_ratio
        self._clock = clock

    def check(self) -> HealthReport:
        now = self._clock()
        try:
            queue_depth = self.jobs.queue_depth()
            oldest = self.jobs.oldest_pending_created_at()
            open_circuits = [
                s.dependency for s in self.breakers.snapshots() if s.state is not CircuitState.CLOSED
            ]
            near_limit = [
                u.dependency
                for u in self.rate_limiter.quota.usage_all()
                if u.limit and u.ratio >= self.near_limit_ratio
            ]
            unresolved = self.jobs.dead_letters.count_unresolved()
        except StoreUnavailableError as e:
            logger.error("health_check_failed", error=str(e))
            return HealthReport(status=HealthStatus.UNHEALTHY, checked_at=now, error=str(e))

        status = HealthStatus.DEGRADED if open_circuits or near_limit else HealthStatus.HEALTHY
        return HealthReport(
            status=status,
            queue_depth=queue_depth,
            oldest_pending_age=(now - oldest).total_seconds() if oldest else None,
            open_circuits=open_circuits,
            quota_near_limit=near_limit,
            dead_letters_unresolved=unresolved,
            checked_at=now,
        )


__all__ = ["HealthProbe", "HealthReport", "HealthStatus"]
