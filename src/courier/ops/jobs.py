"""Job submission and inspection operations.

Thin envelope layer over :class:`~courier.execution.jobs.JobStore` used by
``POST /jobs`` and ``courier jobs ...``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from courier.core.errors import CourierError, InvalidTransitionError
from courier.core.logging import get_logger
from courier.core.settings import CourierSettings
from courier.execution.jobs import JobStore
from courier.execution.models import JobStatus
from courier.execution.payloads import parse_payload
from courier.execution.rate_limit import ResultCache
from courier.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)


class JobOperations:
    def __init__(self, jobs: JobStore, settings: CourierSettings, cache: ResultCache | None = None):
        self.jobs = jobs
        self.settings = settings
        self.cache = cache

    def submit(
        self,
        job_type: str,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
        max_attempts: int | None = None,
        run_at: datetime | None = None,
        refresh: bool = False,
    ) -> OperationResult[dict[str, Any]]:
        """Enqueue a job. Duplicate active idempotency keys fail with ``CONFLICT``.

        ``refresh`` drops the payload's cached result first, so the job calls
        the dependency even inside the cache TTL.
        """
        timer = start_timer()
        if max_attempts is not None and max_attempts < 1:
            return OperationResult.fail(
                "VALIDATION_FAILED", "max_attempts must be >= 1", elapsed_ms=timer.elapsed_ms
            )
        try:
            if refresh:
                self._invalidate_cached_result(job_type, payload)
            job_id = self.jobs.enqueue(
                job_type,
                payload,
                idempotency_key=idempotency_key,
                max_attempts=max_attempts,
                run_at=run_at,
            )
        except CourierError as exc:
            logger.warning("job_submit_rejected", job_type=job_type, error=exc.message)
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok({"job_id": job_id, "status": JobStatus.PENDING.value}, elapsed_ms=timer.elapsed_ms)

    def _invalidate_cached_result(self, job_type: str, payload: dict[str, Any]) -> None:
        cache_key = parse_payload(job_type, payload).cache_key()
        if cache_key is None or self.cache is None:
            return
        removed = self.cache.invalidate(cache_key)
        logger.info("result_cache_invalidated", job_type=job_type, cache_key=cache_key, removed=removed)

    def get(self, job_id: str) -> OperationResult[dict[str, Any]]:
        timer = start_timer()
        try:
            job = self.jobs.get(job_id)
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        if job is None:
            return OperationResult.fail("NOT_FOUND", f"Job '{job_id}' not found", elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok(job.to_dict(), elapsed_ms=timer.elapsed_ms)

    def list_jobs(
        self,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> PagedResult[dict[str, Any]]:
        timer = start_timer()
        if status is not None and status not in {s.value for s in JobStatus}:
            return PagedResult.fail("VALIDATION_FAILED", f"Unknown status '{status}'", elapsed_ms=timer.elapsed_ms)
        try:
            jobs = self.jobs.list_jobs(status=status, job_type=job_type, limit=limit, offset=offset)
            total = self.jobs.count_jobs(status=status, job_type=job_type)
        except CourierError as exc:
            return PagedResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return PagedResult.from_items(
            [job.to_dict() for job in jobs], total=total, limit=limit, offset=offset, elapsed_ms=timer.elapsed_ms
        )

    def cancel(self, job_id: str) -> OperationResult[dict[str, Any]]:
        """Cancel a pending job. Anything past pending is a ``CONFLICT``."""
        timer = start_timer()
        try:
            job = self.jobs.cancel(job_id)
        except InvalidTransitionError as exc:
            return OperationResult.fail(
                "CONFLICT", f"Job '{job_id}' cannot be cancelled: {exc.message}", elapsed_ms=timer.elapsed_ms
            )
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok(job.to_dict(), elapsed_ms=timer.elapsed_ms)

    def stats(self) -> OperationResult[dict[str, int]]:
        timer = start_timer()
        try:
            counts = self.jobs.stats()
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok(counts, elapsed_ms=timer.elapsed_ms)

    def purge(self, older_than_hours: int | None = None) -> OperationResult[dict[str, Any]]:
        """Delete finished (completed/cancelled) jobs older than the retention window."""
        timer = start_timer()
        hours = older_than_hours or self.settings.finished_job_retention_hours
        try:
            deleted = self.jobs.purge_finished(timedelta(hours=hours))
        except CourierError as exc:
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok({"deleted": deleted, "older_than_hours": hours}, elapsed_ms=timer.elapsed_ms)


__all__ = ["JobOperations"]
