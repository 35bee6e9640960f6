"""Durable job queue with atomic claims.

``JobStore`` owns every job from ``enqueue`` until it is completed,
cancelled or dead-lettered. Workers never share a claim: ``claim_due``
flips a job from ``pending`` to ``processing`` with a compare-and-set
``UPDATE ... WHERE status = 'pending'`` inside a ``BEGIN IMMEDIATE``
transaction, and ``complete``/``fail`` check that the caller still owns it.

Lifecycle::

    enqueue ─► pending ─claim_due─► processing ─complete─► completed
                 │ ▲                    │
           cancel│ └──fail (retryable, ─┤
                 ▼    next_run_at =     │ fail (permanent or attempts exhausted)
               failed  now + backoff)   ▼
                                  dead_lettered ─► DeadLetterStore

A claim that is not completed within the visibility timeout lapses. The
lapse counts as one retryable attempt ("visibility timeout expired") so a
job that kills its worker every time still reaches the dead-letter queue.

Example::

    job_id = jobs.enqueue("calendar:sync", {"user_id": "u-1", "organization_id": 1},
                          idempotency_key="calendar:u-1")
    for job in jobs.claim_due(limit=10, owner="worker-1"):
        ...
        jobs.complete(job.id, owner="worker-1")
"""

import json
import sqlite3
from datetime import datetime, timedelta
from typing import Any

from courier.core.errors import (
    ClaimLostError,
    DuplicateJobError,
    InvalidTransitionError,
    JobNotFoundError,
)
from courier.core.logging import get_logger
from courier.core.settings import CourierSettings
from courier.core.store import SqliteStore
from courier.core.timestamps import Clock, from_iso, new_id, to_iso, utc_now
from courier.execution.classifier import ClassifiedError
from courier.execution.dlq import DeadLetterStore
from courier.execution.models import (
    FailureKind,
    FailureRecord,
    Job,
    JobStatus,
    validate_transition,
)
from courier.execution.payloads import PAYLOAD_TYPES, JobPayload, parse_payload
from courier.execution.retry import BackoffCalculator

logger = get_logger(__name__)

VISIBILITY_TIMEOUT_MESSAGE = "visibility timeout expired"


class JobStore:
    """Jobs in ``core_jobs`` plus the dead-letter store they end up in.

    Args:
        store: The shared SQLite store
        settings: Default attempt budget, rate-limit deferral budget and
            visibility timeout
        backoff: Delay used when rescheduling a retryable failure
        clock: Time source
    """

    def __init__(
        self,
        store: SqliteStore,
        settings: CourierSettings,
        *,
        backoff: BackoffCalculator | None = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.default_max_attempts = settings.default_max_attempts
        self.rate_limit_deferrals = settings.rate_limit_deferrals
        self.visibility_timeout = timedelta(seconds=settings.visibility_timeout_seconds)
        self.backoff = backoff or BackoffCalculator.from_settings(settings)
        self._clock = clock
        self.dead_letters = DeadLetterStore(store, self, clock=clock)

    # ── submission ───────────────────────────────────────────────

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any] | JobPayload,
        idempotency_key: str | None = None,
        max_attempts: int | None = None,
        run_at: datetime | None = None,
    ) -> str:
        """Validate the payload and add a pending job.

        Returns:
            The new job id

        Raises:
            PayloadValidationError: unknown job type or invalid payload
            DuplicateJobError: ``idempotency_key`` is held by a pending or processing job
        """
        model = parse_payload(job_type, payload)
        attempts_budget = max_attempts or self.default_max_attempts
        if attempts_budget < 1:
            raise ValueError(f"max_attempts must be >= 1, got {attempts_budget}")

        now = self._clock()
        job_id = new_id()
        with self.store.transaction() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO core_jobs (
                        id, job_type, payload, status, attempts, max_attempts,
                        next_run_at, idempotency_key, failure_history, created_at, updated_at
                    ) VALUES (?, ?, ?, 'pending', 0, ?, ?, ?, '[]', ?, ?)
                    """,
                    (
                        job_id,
                        job_type,
                        model.model_dump_json(),
                        attempts_budget,
                        to_iso(run_at or now),
                        idempotency_key,
                        to_iso(now),
                        to_iso(now),
                    ),
                )
            except sqlite3.IntegrityError:
                existing = conn.execute(
                    "SELECT id FROM core_jobs WHERE idempotency_key = ? AND status IN ('pending', 'processing')",
                    (idempotency_key,),
                ).fetchone()
                raise DuplicateJobError(
                    idempotency_key or "", existing["id"] if existing else None
                ) from None

        logger.info(
            "job_enqueued",
            job_id=job_id,
            job_type=job_type,
            idempotency_key=idempotency_key,
            max_attempts=attempts_budget,
        )
        return job_id

    def cancel(self, job_id: str) -> Job:
        """Cancel a pending job before it is claimed (terminal ``failed``).

        Raises:
            JobNotFoundError: no such job
            InvalidTransitionError: job is not pending
        """
        now = self._clock()
        with self.store.transaction() as conn:
            job = self._load(conn, job_id)
            validate_transition(job.status, JobStatus.FAILED)
            conn.execute(
                """
                UPDATE core_jobs SET status = 'failed', last_error = 'cancelled', updated_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (to_iso(now), job_id),
            )
            job = self._load(conn, job_id)
        logger.info("job_cancelled", job_id=job_id, job_type=job.job_type)
        return job

    # ── claiming ─────────────────────────────────────────────────

    def claim_due(self, limit: int, owner: str) -> list[Job]:
        """Atomically claim up to ``limit`` due jobs for ``owner``.

        Due means pending with ``next_run_at <= now``. Processing jobs whose
        claim lapsed are first charged one retryable attempt and then either
        become claimable again or are dead-lettered.
        """
        if limit < 1:
            return []
        now = self._clock()
        expires_at = now + self.visibility_timeout
        claimed: list[Job] = []

        with self.store.transaction() as conn:
            self._reap_lapsed_claims(conn, now)

            rows = conn.execute(
                """
                SELECT id FROM core_jobs
                WHERE status = 'pending' AND next_run_at <= ?
                ORDER BY next_run_at, created_at
                LIMIT ?
                """,
                (to_iso(now), limit),
            ).fetchall()

            for row in rows:
                cursor = conn.execute(
                    """
                    UPDATE core_jobs
                    SET status = 'processing', claimed_by = ?, claim_expires_at = ?, updated_at = ?
                    WHERE id = ? AND status = 'pending'
                    """,
                    (owner, to_iso(expires_at), to_iso(now), row["id"]),
                )
                if cursor.rowcount == 1:
                    claimed.append(self._load(conn, row["id"]))

        if claimed:
            logger.debug("jobs_claimed", owner=owner, count=len(claimed))
        return claimed

    def _reap_lapsed_claims(self, conn, now: datetime) -> None:
        rows = conn.execute(
            "SELECT * FROM core_jobs WHERE status = 'processing' AND claim_expires_at <= ?",
            (to_iso(now),),
        ).fetchall()
        for row in rows:
            job = self._row_to_job(row)
            logger.warning("job_claim_lapsed", job_id=job.id, job_type=job.job_type, owner=job.claimed_by)
            lapse = ClassifiedError.retryable(VISIBILITY_TIMEOUT_MESSAGE, error_type="VisibilityTimeout")
            self._record_failure(conn, job, lapse, now, immediate=True)

    # ── outcomes ─────────────────────────────────────────────────

    def complete(self, job_id: str, owner: str | None = None) -> None:
        """Mark a processing job completed.

        Raises:
            JobNotFoundError: no such job
            ClaimLostError: ``owner`` no longer holds the claim
            InvalidTransitionError: job is not processing
        """
        now = self._clock()
        with self.store.transaction() as conn:
            job = self._load_owned(conn, job_id, owner, JobStatus.COMPLETED)
            conn.execute(
                """
                UPDATE core_jobs
                SET status = 'completed', claimed_by = NULL, claim_expires_at = NULL, updated_at = ?
                WHERE id = ? AND status = 'processing'
                """,
                (to_iso(now), job_id),
            )
        logger.info("job_completed", job_id=job_id, job_type=job.job_type, attempts=job.attempts + 1)

    def fail(self, job_id: str, classified: ClassifiedError, owner: str | None = None) -> JobStatus:
        """Record a failed attempt.

        Permanent failures are dead-lettered at once. Otherwise attempts is
        incremented and the job either returns to pending with
        ``next_run_at = now + max(backoff, retry_after)`` or, with no
        attempts left, is dead-lettered with its full failure history.

        Rate-limited outcomes are the exception: the dependency was not
        called, so the first ``settings.rate_limit_deferrals`` of them per job
        reschedule without incrementing attempts. Later ones count as usual.

        Returns:
            The job's new status (``pending`` or ``dead_lettered``)
        """
        now = self._clock()
        with self.store.transaction() as conn:
            job = self._load_owned(conn, job_id, owner, JobStatus.PENDING)
            return self._record_failure(conn, job, classified, now)

    def _record_failure(
        self,
        conn,
        job: Job,
        classified: ClassifiedError,
        now: datetime,
        immediate: bool = False,
    ) -> JobStatus:
        # A rate-limited outcome within the deferral budget keeps its attempt
        deferred = classified.is_rate_limited and self._deferrals_used(job) < self.rate_limit_deferrals
        attempts = job.attempts if deferred else job.attempts + 1
        history = [
            *job.failure_history,
            FailureRecord(
                attempt=job.attempts + 1,
                classification=classified.kind,
                error_type=classified.error_type,
                message=classified.message,
                status_code=classified.status_code,
                timestamp=now,
            ),
        ]
        history_json = json.dumps([r.to_dict() for r in history])

        if classified.kind is FailureKind.PERMANENT or attempts >= job.max_attempts:
            conn.execute(
                """
                UPDATE core_jobs
                SET status = 'dead_lettered', attempts = ?, last_error = ?, failure_history = ?,
                    claimed_by = NULL, claim_expires_at = NULL, updated_at = ?
                WHERE id = ?
                """,
                (attempts, classified.message, history_json, to_iso(now), job.id),
            )
            self.dead_letters.move_to_dead_letter(self._load(conn, job.id), history)
            return JobStatus.DEAD_LETTERED

        if immediate:
            delay = 0.0
        else:
            delay = max(self.backoff.delay(job.attempts), classified.retry_after or 0.0)
        next_run_at = now + timedelta(seconds=delay)
        conn.execute(
            """
            UPDATE core_jobs
            SET status = 'pending', attempts = ?, last_error = ?, failure_history = ?,
                next_run_at = ?, claimed_by = NULL, claim_expires_at = NULL, updated_at = ?
            WHERE id = ?
            """,
            (attempts, classified.message, history_json, to_iso(next_run_at), to_iso(now), job.id),
        )
        logger.info(
            "job_rescheduled",
            job_id=job.id,
            job_type=job.job_type,
            attempt=attempts,
            max_attempts=job.max_attempts,
            classification=classified.kind.value,
            deferred=deferred,
            delay=round(delay, 3),
        )
        return JobStatus.PENDING

    @staticmethod
    def _deferrals_used(job: Job) -> int:
        return sum(1 for r in job.failure_history if r.classification is FailureKind.RATE_LIMITED)

    # ── queries ──────────────────────────────────────────────────

    def get(self, job_id: str) -> Job | None:
        row = self.store.query_one("SELECT * FROM core_jobs WHERE id = ?", (job_id,))
        return self._row_to_job(row) if row is not None else None

    def list_jobs(
        self,
        status: JobStatus | str | None = None,
        job_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Job]:
        query = "SELECT * FROM core_jobs WHERE 1=1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(JobStatus(status).value)
        if job_type:
            query += " AND job_type = ?"
            params.append(job_type)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [self._row_to_job(row) for row in self.store.query(query, tuple(params))]

    def count_jobs(self, status: JobStatus | str | None = None, job_type: str | None = None) -> int:
        query = "SELECT COUNT(*) AS n FROM core_jobs WHERE 1=1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(JobStatus(status).value)
        if job_type:
            query += " AND job_type = ?"
            params.append(job_type)
        row = self.store.query_one(query, tuple(params))
        return row["n"] if row else 0

    def stats(self) -> dict[str, int]:
        """Job counts per status (every status present, zero if none)."""
        counts = {status.value: 0 for status in JobStatus}
        for row in self.store.query("SELECT status, COUNT(*) AS n FROM core_jobs GROUP BY status"):
            counts[row["status"]] = row["n"]
        return counts

    def queue_depth(self) -> int:
        row = self.store.query_one("SELECT COUNT(*) AS n FROM core_jobs WHERE status = 'pending'")
        return row["n"] if row else 0

    def oldest_pending_created_at(self) -> datetime | None:
        row = self.store.query_one("SELECT MIN(created_at) AS oldest FROM core_jobs WHERE status = 'pending'")
        return from_iso(row["oldest"]) if row else None

    def purge_finished(self, older_than: timedelta) -> int:
        """Delete completed and cancelled jobs last updated before ``now - older_than``."""
        cutoff = self._clock() - older_than
        with self.store.transaction() as conn:
            deleted = conn.execute(
                "DELETE FROM core_jobs WHERE status IN ('completed', 'failed') AND updated_at < ?",
                (to_iso(cutoff),),
            ).rowcount
        if deleted:
            logger.info("jobs_purged", count=deleted)
        return deleted

    # ── helpers ──────────────────────────────────────────────────

    def _load(self, conn, job_id: str) -> Job:
        row = conn.execute("SELECT * FROM core_jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return self._row_to_job(row)

    def _load_owned(self, conn, job_id: str, owner: str | None, target: JobStatus) -> Job:
        job = self._load(conn, job_id)
        if owner is not None and (job.status != JobStatus.PROCESSING or job.claimed_by != owner):
            raise ClaimLostError(
                f"Job {job_id} is no longer claimed by {owner} (status={job.status.value}, owner={job.claimed_by})"
            ).with_context(job_id=job_id, worker_id=owner)
        if job.status != JobStatus.PROCESSING:
            raise InvalidTransitionError(job.status.value, target.value)
        return job

    def _row_to_job(self, row) -> Job:
        """Convert a database row to a Job object."""
        data = json.loads(row["payload"])
        payload_type = PAYLOAD_TYPES.get(row["job_type"])
        return Job(
            id=row["id"],
            job_type=row["job_type"],
            payload=payload_type.model_validate(data) if payload_type else data,
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            next_run_at=from_iso(row["next_run_at"]),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            last_error=row["last_error"],
            idempotency_key=row["idempotency_key"],
            claimed_by=row["claimed_by"],
            claim_expires_at=from_iso(row["claim_expires_at"]),
            failure_history=[FailureRecord.from_dict(r) for r in json.loads(row["failure_history"])],
        )


__all__ = ["JobStore", "VISIBILITY_TIMEOUT_MESSAGE"]
