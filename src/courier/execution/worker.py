"""Background worker: claims due jobs and runs them through the RetryExecutor.

Usage (programmatic)::

    worker = Worker(jobs, executor, registry, max_workers=4)
    worker.start()  # blocking, runs until SIGINT/SIGTERM

Usage (CLI)::

    courier worker start --workers 4 --poll-interval 2

One job execution:

    1. resolve the handler for ``job.job_type`` (missing → permanent failure)
    2. ``executor.execute(payload.dependency, handler, payload, ...)``
    3. ``Ok``  → ``jobs.complete``
       ``Err`` → ``jobs.fail`` (reschedule with backoff, or dead-letter)

The executor used here runs a single attempt per claim: waiting between
attempts is expressed as ``next_run_at`` in the future, so a backoff never
occupies a worker thread.
"""

from __future__ import annotations

import os
import platform
import signal
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from courier.core.errors import ClaimLostError, HandlerNotFoundError, StoreUnavailableError
from courier.core.logging import LogContext, get_logger
from courier.core.result import Err, Ok
from courier.core.timestamps import generate_ulid, to_iso, utc_now
from courier.execution.jobs import JobStore
from courier.execution.models import Job, JobStatus
from courier.execution.registry import HandlerRegistry
from courier.execution.retry import RetryExecutor

logger = get_logger(__name__)


@dataclass
class WorkerInfo:
    """Metadata about a running worker."""

    worker_id: str
    pid: int
    started_at: datetime
    poll_interval: float
    max_workers: int
    status: str = "idle"
    hostname: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "pid": self.pid,
            "started_at": to_iso(self.started_at),
            "poll_interval": self.poll_interval,
            "max_workers": self.max_workers,
            "status": self.status,
            "hostname": self.hostname,
        }


@dataclass
class WorkerStats:
    """Aggregate statistics for a worker."""

    total_processed: int = 0
    total_completed: int = 0
    total_retried: int = 0
    total_dead_lettered: int = 0
    total_claims_lost: int = 0
    last_poll_at: datetime | None = None
    active_jobs: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "total_completed": self.total_completed,
            "total_retried": self.total_retried,
            "total_dead_lettered": self.total_dead_lettered,
            "total_claims_lost": self.total_claims_lost,
            "last_poll_at": to_iso(self.last_poll_at),
            "active_jobs": self.active_jobs,
        }


class Worker:
    """Polls the JobStore for due jobs and runs them on a bounded thread pool.

    Thread-safety:
        The claim in ``JobStore.claim_due`` is the only mutual exclusion
        between workers; any number of ``Worker`` instances (threads or
        processes) may share one database.
    """

    def __init__(
        self,
        jobs: JobStore,
        executor: RetryExecutor,
        registry: HandlerRegistry,
        *,
        poll_interval: float = 2.0,
        batch_size: int = 10,
        max_workers: int = 4,
        worker_id: str | None = None,
        clock=utc_now,
        housekeeping: Callable[[], Any] | None = None,
        housekeeping_interval: float = 300.0,
    ):
        """
        Args:
            jobs: Queue to claim from and report outcomes to
            executor: Guarded call path (breaker, quota, timeout)
            registry: job_type → handler
            poll_interval: Seconds between poll cycles when idle
            batch_size: Max jobs claimed per poll
            max_workers: Thread pool size
            worker_id: Claim owner id. Auto-generated if ``None``.
            housekeeping: Called from the idle poll at most once per
                ``housekeeping_interval`` seconds (expired rows sweep)
        """
        self.jobs = jobs
        self.executor = executor
        self.registry = registry
        self._worker_id = worker_id or f"worker-{generate_ulid().lower()}"
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._max_workers = max_workers
        self._clock = clock
        self._housekeeping = housekeeping
        self._housekeeping_interval = housekeeping_interval
        self._last_housekeeping_at: datetime | None = None
        self._shutdown = threading.Event()
        self._stats = WorkerStats()
        self._stats_lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=self._worker_id)

        self.info = WorkerInfo(
            worker_id=self._worker_id,
            pid=os.getpid(),
            started_at=clock(),
            poll_interval=poll_interval,
            max_workers=max_workers,
            hostname=platform.node(),
        )

    @property
    def worker_id(self) -> str:
        return self._worker_id

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Start the poll loop (blocking). Installs signal handlers for
        graceful shutdown on SIGINT / SIGTERM.
        """
        logger.info(
            "worker_starting",
            worker_id=self._worker_id,
            poll_interval=self._poll_interval,
            batch_size=self._batch_size,
            max_workers=self._max_workers,
        )
        self.info.status = "running"

        try:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)
        except (ValueError, OSError):
            logger.debug("worker_signal_handlers_skipped", worker_id=self._worker_id)

        try:
            self._run_loop()
        finally:
            self._cleanup()

    def start_background(self) -> threading.Thread:
        """Start the worker in a daemon thread. Returns the thread."""
        t = threading.Thread(target=self.start, name=f"{self._worker_id}-loop", daemon=True)
        t.start()
        return t

    def stop(self) -> None:
        """Request graceful shutdown (in-flight jobs finish first)."""
        logger.info("worker_stopping", worker_id=self._worker_id)
        self._shutdown.set()
        self.info.status = "stopping"

    def get_stats(self) -> WorkerStats:
        return self._stats

    # ------------------------------------------------------------------ #
    # Main loop
    # ------------------------------------------------------------------ #

    def _run_loop(self) -> None:
        in_flight: set[Future] = set()
        while not self._shutdown.is_set():
            in_flight = {f for f in in_flight if not f.done()}
            capacity = min(self._batch_size, self._max_workers - len(in_flight))
            claimed: list[Job] = []
            if capacity > 0:
                try:
                    claimed = self.jobs.claim_due(capacity, self._worker_id)
                except StoreUnavailableError as e:
                    logger.error("worker_poll_failed", worker_id=self._worker_id, error=str(e))
            self._stats.last_poll_at = self._clock()

            for job in claimed:
                in_flight.add(self._pool.submit(self._execute_job, job))

            if not claimed:
                self.run_housekeeping_if_due()
                self._shutdown.wait(self._poll_interval)
        wait(in_flight)

    def run_once(self) -> int:
        """Claim one batch and process it synchronously.

        Returns:
            Number of jobs processed
        """
        claimed = self.jobs.claim_due(self._batch_size, self._worker_id)
        self._stats.last_poll_at = self._clock()
        futures = [self._pool.submit(self._execute_job, job) for job in claimed]
        wait(futures)
        for future in futures:
            future.result()
        return len(claimed)

    def drain(self, max_batches: int = 100) -> int:
        """Run batches until nothing is due (or ``max_batches`` ran)."""
        total = 0
        for _ in range(max_batches):
            processed = self.run_once()
            if not processed:
                break
            total += processed
        return total

    def run_housekeeping_if_due(self) -> bool:
        """Run the housekeeping callable if the interval has elapsed."""
        if self._housekeeping is None:
            return False
        now = self._clock()
        last = self._last_housekeeping_at
        if last is not None and (now - last).total_seconds() < self._housekeeping_interval:
            return False
        self._last_housekeeping_at = now
        logger.debug("worker_housekeeping", worker_id=self._worker_id)
        self._housekeeping()
        return True

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def _execute_job(self, job: Job) -> None:
        """Execute a single claimed job in a worker thread."""
        with self._stats_lock:
            self._stats.total_processed += 1
            self._stats.active_jobs += 1

        with LogContext(job_id=job.id, job_type=job.job_type, worker_id=self._worker_id):
            try:
                self._run_job(job)
            except ClaimLostError as e:
                # Another worker re-took the job after our claim lapsed
                logger.warning("job_claim_lost", error=str(e))
                self._bump("total_claims_lost")
            except StoreUnavailableError as e:
                # Outcome not recorded; the claim lapses and the job is re-run
                logger.error("job_outcome_not_recorded", error=str(e))
            finally:
                with self._stats_lock:
                    self._stats.active_jobs -= 1

    def _run_job(self, job: Job) -> None:
        payload = job.payload
        logger.info("job_started", attempt=job.attempts + 1, max_attempts=job.max_attempts)

        try:
            handler = self.registry.get(job.job_type)
        except HandlerNotFoundError as e:
            logger.error("job_handler_missing", error=str(e))
            status = self.jobs.fail(job.id, self.executor.classifier.classify(e), owner=self._worker_id)
            self._count_outcome(status)
            return

        result = self.executor.execute(
            payload.dependency,
            handler,
            payload,
            quota_identifier=payload.quota_identifier() if payload.quota_sensitive else None,
            cache_key=payload.cache_key(),
        )

        match result:
            case Ok():
                self.jobs.complete(job.id, owner=self._worker_id)
                self._bump("total_completed")
            case Err(error=error):
                status = self.jobs.fail(job.id, error, owner=self._worker_id)
                self._count_outcome(status)

    def _count_outcome(self, status: JobStatus) -> None:
        if status == JobStatus.DEAD_LETTERED:
            self._bump("total_dead_lettered")
        else:
            self._bump("total_retried")

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    # ------------------------------------------------------------------ #
    # Signal handling & cleanup
    # ------------------------------------------------------------------ #

    def _handle_signal(self, signum, frame):
        logger.info("worker_signal_received", worker_id=self._worker_id, signal=signum)
        self.stop()

    def _cleanup(self) -> None:
        self.info.status = "stopped"
        self._pool.shutdown(wait=True, cancel_futures=False)
        logger.info(
            "worker_stopped",
            worker_id=self._worker_id,
            processed=self._stats.total_processed,
            completed=self._stats.total_completed,
            dead_lettered=self._stats.total_dead_lettered,
        )


__all__ = ["Worker", "WorkerInfo", "WorkerStats"]
