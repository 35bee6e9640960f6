"""
Admin operations: dead letters, circuit breakers, quotas, the result cache
and queue stats.

``AdminInterface`` is what operational tooling (the HTTP admin routes and
the ``courier`` CLI) talks to. It holds no domain logic: every method
delegates to the owning component and wraps the outcome in an
:class:`~courier.ops.result.OperationResult` so callers never handle raw
exceptions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from courier.core.errors import CourierError
from courier.core.logging import get_logger
from courier.core.settings import CourierSettings
from courier.core.timestamps import to_iso
from courier.execution.circuit_breaker import CircuitBreakerRegistry
from courier.execution.dlq import DeadLetterFilter, DeadLetterStore
from courier.execution.jobs import JobStore
from courier.execution.rate_limit import RateLimiter, ResultCache
from courier.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)


class AdminInterface:
    """Read and repair operations for operators."""

    def __init__(
        self,
        jobs: JobStore,
        dead_letters: DeadLetterStore,
        breakers: CircuitBreakerRegistry,
        rate_limiter: RateLimiter,
        settings: CourierSettings,
        cache: ResultCache | None = None,
    ):
        self.jobs = jobs
        self.dead_letters = dead_letters
        self.breakers = breakers
        self.rate_limiter = rate_limiter
        self.settings = settings
        self.cache = cache

    # ── dead letters ─────────────────────────────────────────────

    def list_dead_letters(
        self,
        job_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        include_resolved: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> PagedResult[dict[str, Any]]:
        """List dead letters filtered by job type and ``moved_at`` range."""
        timer = start_timer()
        if limit < 1 or offset < 0:
            return PagedResult.fail(
                "VALIDATION_FAILED", "limit must be >= 1 and offset >= 0", elapsed_ms=timer.elapsed_ms
            )
        if since is not None and until is not None and to_iso(since) >= to_iso(until):
            return PagedResult.fail("VALIDATION_FAILED", "since must be before until", elapsed_ms=timer.elapsed_ms)
        try:
            entries, total = self.dead_letters.list_dead_letters(
                DeadLetterFilter(
                    job_type=job_type,
                    since=since,
                    until=until,
                    include_resolved=include_resolved,
                    limit=limit,
                    offset=offset,
                )
            )
        except CourierError as exc:
            logger.exception("op_failed", op="list_dead_letters", error=str(exc))
            return PagedResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return PagedResult.from_items(
            [entry.to_dict() for entry in entries],
            total=total,
            limit=limit,
            offset=offset,
            elapsed_ms=timer.elapsed_ms,
        )

    def get_dead_letter(self, dead_letter_id: str) -> OperationResult[dict[str, Any]]:
        timer = start_timer()
        try:
            entry = self.dead_letters.get(dead_letter_id)
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        if entry is None:
            return OperationResult.fail(
                "NOT_FOUND", f"Dead letter '{dead_letter_id}' not found", elapsed_ms=timer.elapsed_ms
            )
        return OperationResult.ok(entry.to_dict(), elapsed_ms=timer.elapsed_ms)

    def replay(self, dead_letter_id: str, replayed_by: str | None = None) -> OperationResult[dict[str, Any]]:
        """Re-enqueue a dead letter as a fresh job (rejected if already resolved)."""
        timer = start_timer()
        if not dead_letter_id:
            return OperationResult.fail(
                "VALIDATION_FAILED", "dead_letter_id is required", elapsed_ms=timer.elapsed_ms
            )
        try:
            new_job_id = self.dead_letters.replay(dead_letter_id, replayed_by=replayed_by)
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok(
            {"dead_letter_id": dead_letter_id, "new_job_id": new_job_id},
            elapsed_ms=timer.elapsed_ms,
        )

    def resolve(self, dead_letter_id: str, resolved_by: str | None = None) -> OperationResult[dict[str, Any]]:
        timer = start_timer()
        try:
            changed = self.dead_letters.resolve(dead_letter_id, resolved_by=resolved_by)
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        if not changed:
            return OperationResult.fail(
                "CONFLICT", f"Dead letter '{dead_letter_id}' is already resolved", elapsed_ms=timer.elapsed_ms
            )
        return OperationResult.ok(
            {"dead_letter_id": dead_letter_id, "resolved": True}, elapsed_ms=timer.elapsed_ms
        )

    def purge_dead_letters(self, older_than_days: int | None = None) -> OperationResult[dict[str, Any]]:
        timer = start_timer()
        days = older_than_days or self.settings.dead_letter_retention_days
        try:
            deleted = self.dead_letters.purge_resolved(days)
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok({"deleted": deleted, "older_than_days": days}, elapsed_ms=timer.elapsed_ms)

    # ── circuits ─────────────────────────────────────────────────

    def circuit_states(self) -> OperationResult[list[dict[str, Any]]]:
        """dependency → state, failure_count, opened_at."""
        timer = start_timer()
        try:
            snapshots = self.breakers.snapshots()
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok([s.to_dict() for s in snapshots], elapsed_ms=timer.elapsed_ms)

    def reset_circuit(self, dependency: str) -> OperationResult[dict[str, Any]]:
        timer = start_timer()
        try:
            if dependency not in self.breakers.dependencies():
                return OperationResult.fail(
                    "NOT_FOUND", f"Unknown dependency '{dependency}'", elapsed_ms=timer.elapsed_ms
                )
            breaker = self.breakers.get(dependency)
            breaker.reset()
            snapshot = breaker.snapshot()
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok(snapshot.to_dict(), elapsed_ms=timer.elapsed_ms)

    # ── quotas & queue ───────────────────────────────────────────

    def quota_usage(self) -> OperationResult[list[dict[str, Any]]]:
        """dependency → used, limit, remaining, window_reset_at."""
        timer = start_timer()
        try:
            usage = self.rate_limiter.quota.usage_all()
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok([u.to_dict() for u in usage], elapsed_ms=timer.elapsed_ms)

    # ── result cache & housekeeping ──────────────────────────────

    def invalidate_cache(self, cache_key: str) -> OperationResult[dict[str, Any]]:
        """Drop a cached result, e.g. ``score:deal:7`` after the deal changed."""
        timer = start_timer()
        if not cache_key:
            return OperationResult.fail("VALIDATION_FAILED", "cache_key is required", elapsed_ms=timer.elapsed_ms)
        if self.cache is None:
            return OperationResult.fail("UNAVAILABLE", "Result cache is not configured", elapsed_ms=timer.elapsed_ms)
        try:
            removed = self.cache.invalidate(cache_key)
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        logger.info("result_cache_invalidated", cache_key=cache_key, removed=removed)
        return OperationResult.ok({"cache_key": cache_key, "invalidated": removed}, elapsed_ms=timer.elapsed_ms)

    def sweep_expired(self) -> OperationResult[dict[str, Any]]:
        """Delete expired cache entries, stale window events and old quota counters."""
        timer = start_timer()
        try:
            counts = self.rate_limiter.sweep(self.settings.quota_counter_retention_days)
            counts["cache_entries"] = self.cache.purge_expired() if self.cache is not None else 0
        except CourierError as exc:
            logger.error("sweep_failed", error=str(exc))
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        logger.info("sweep_completed", **counts)
        return OperationResult.ok(counts, elapsed_ms=timer.elapsed_ms)

    def queue_stats(self) -> OperationResult[dict[str, Any]]:
        timer = start_timer()
        try:
            data = {
                "jobs": self.jobs.stats(),
                "dead_letters": self.dead_letters.stats(),
            }
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)


__all__ = ["AdminInterface"]
