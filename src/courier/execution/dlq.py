"""Dead Letter Queue (DLQ): capture, inspect and replay failed jobs.

WHY
───
A job that can no longer succeed by retrying must not disappear. The DLQ
keeps the job snapshot and its complete failure history (every attempt's
classification and timestamp) so an operator can diagnose the root cause
and replay the job once the external issue is fixed.

ARCHITECTURE
────────────
::

    DeadLetterStore(store, jobs)
      ├── .move_to_dead_letter(job, history)  ─ idempotent per original job
      ├── .get(id)
      ├── .list_dead_letters(filter)          ─ (entries, total)
      ├── .replay(id)                         ─ fresh job + resolve, one transaction
      ├── .resolve(id, by)                    ─ mark handled without replay
      ├── .count_unresolved() / .stats()
      └── .purge_resolved(days)               ─ retention cleanup

BEST PRACTICES
──────────────
- Replay only after the dependency is healthy again; a replayed job starts
  with attempts = 0 and a full budget.
- Run ``purge_resolved()`` periodically to bound growth.

Example::

    entries, total = dlq.list_dead_letters(DeadLetterFilter(job_type="calendar:sync"))
    new_job_id = dlq.replay(entries[0].id)
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from courier.core.errors import DeadLetterNotFoundError, ReplayRejectedError
from courier.core.logging import get_logger
from courier.core.store import SqliteStore
from courier.core.timestamps import Clock, from_iso, new_id, to_iso, utc_now
from courier.execution.models import DeadLetter, FailureRecord, Job

if TYPE_CHECKING:
    from courier.execution.jobs import JobStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeadLetterFilter:
    """Query for ``list_dead_letters`` (``since``/``until`` bound ``moved_at``)."""

    job_type: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    include_resolved: bool = False
    limit: int = 50
    offset: int = 0


class DeadLetterStore:
    """Dead-lettered jobs in ``core_dead_letters``."""

    def __init__(self, store: SqliteStore, jobs: "JobStore", clock: Clock = utc_now):
        self.store = store
        self.jobs = jobs
        self._clock = clock

    def move_to_dead_letter(self, job: Job, failure_history: list[FailureRecord]) -> DeadLetter:
        """Record ``job`` as dead-lettered.

        Idempotent: a second call for the same job returns the existing entry
        unchanged.
        """
        now = self._clock()
        with self.store.transaction() as conn:
            existing = conn.execute(
                "SELECT * FROM core_dead_letters WHERE original_job_id = ?", (job.id,)
            ).fetchone()
            if existing is not None:
                return self._row_to_dead_letter(existing)

            entry = DeadLetter(
                id=new_id(),
                original_job_id=job.id,
                job_type=job.job_type,
                job=job.to_dict(),
                failure_history=list(failure_history),
                moved_at=now,
            )
            conn.execute(
                """
                INSERT INTO core_dead_letters (
                    id, original_job_id, job_type, job_snapshot, failure_history, moved_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.original_job_id,
                    entry.job_type,
                    json.dumps(entry.job),
                    json.dumps([r.to_dict() for r in entry.failure_history]),
                    to_iso(entry.moved_at),
                ),
            )

        last = entry.last_failure
        logger.warning(
            "job_dead_lettered",
            dead_letter_id=entry.id,
            job_id=job.id,
            job_type=job.job_type,
            attempts=len(failure_history),
            classification=last.classification.value if last else None,
            error=last.message if last else None,
        )
        return entry

    def get(self, dead_letter_id: str) -> DeadLetter | None:
        row = self.store.query_one("SELECT * FROM core_dead_letters WHERE id = ?", (dead_letter_id,))
        return self._row_to_dead_letter(row) if row is not None else None

    def get_by_job(self, job_id: str) -> DeadLetter | None:
        row = self.store.query_one("SELECT * FROM core_dead_letters WHERE original_job_id = ?", (job_id,))
        return self._row_to_dead_letter(row) if row is not None else None

    def list_dead_letters(self, criteria: DeadLetterFilter | None = None) -> tuple[list[DeadLetter], int]:
        """List entries, newest first.

        Returns:
            (entries for the requested page, total matching entries)
        """
        criteria = criteria or DeadLetterFilter()
        where = ["1=1"]
        params: list[Any] = []

        if criteria.job_type:
            where.append("job_type = ?")
            params.append(criteria.job_type)
        if criteria.since is not None:
            where.append("moved_at >= ?")
            params.append(to_iso(criteria.since))
        if criteria.until is not None:
            where.append("moved_at < ?")
            params.append(to_iso(criteria.until))
        if not criteria.include_resolved:
            where.append("resolved = 0")

        clause = " AND ".join(where)
        total_row = self.store.query_one(f"SELECT COUNT(*) AS n FROM core_dead_letters WHERE {clause}", tuple(params))
        rows = self.store.query(
            f"SELECT * FROM core_dead_letters WHERE {clause} ORDER BY moved_at DESC, id LIMIT ? OFFSET ?",
            (*params, criteria.limit, criteria.offset),
        )
        return [self._row_to_dead_letter(row) for row in rows], total_row["n"] if total_row else 0

    def replay(self, dead_letter_id: str, replayed_by: str | None = None) -> str:
        """Re-enqueue the job as a fresh job and mark the entry resolved.

        The new job starts with attempts = 0 and the idempotency key
        ``<original key or job id>:replay:<dead letter id>``. Both writes
        happen in one transaction.

        Returns:
            The new job id

        Raises:
            DeadLetterNotFoundError: no such entry
            ReplayRejectedError: entry already resolved (replayed or handled)
        """
        now = self._clock()
        with self.store.transaction() as conn:
            row = conn.execute("SELECT * FROM core_dead_letters WHERE id = ?", (dead_letter_id,)).fetchone()
            if row is None:
                raise DeadLetterNotFoundError(f"Dead letter not found: {dead_letter_id}")
            entry = self._row_to_dead_letter(row)
            if entry.resolved:
                raise ReplayRejectedError(
                    f"Dead letter {dead_letter_id} is already resolved"
                    + (f" (replayed as {entry.replayed_job_id})" if entry.replayed_job_id else "")
                )

            base_key = entry.job.get("idempotency_key") or entry.original_job_id
            new_job_id = self.jobs.enqueue(
                entry.job_type,
                entry.job["payload"],
                idempotency_key=f"{base_key}:replay:{entry.id}",
                max_attempts=entry.job.get("max_attempts"),
            )
            conn.execute(
                """
                UPDATE core_dead_letters
                SET resolved = 1, resolved_at = ?, resolved_by = ?, replayed_job_id = ?
                WHERE id = ? AND resolved = 0
                """,
                (to_iso(now), replayed_by or "replay", new_job_id, dead_letter_id),
            )

        logger.info(
            "dead_letter_replayed",
            dead_letter_id=dead_letter_id,
            original_job_id=entry.original_job_id,
            new_job_id=new_job_id,
        )
        return new_job_id

    def resolve(self, dead_letter_id: str, resolved_by: str | None = None) -> bool:
        """Mark an entry as handled without replaying it.

        Returns:
            True if resolved, False if it was already resolved

        Raises:
            DeadLetterNotFoundError: no such entry
        """
        with self.store.transaction() as conn:
            exists = conn.execute("SELECT 1 FROM core_dead_letters WHERE id = ?", (dead_letter_id,)).fetchone()
            if exists is None:
                raise DeadLetterNotFoundError(f"Dead letter not found: {dead_letter_id}")
            cursor = conn.execute(
                """
                UPDATE core_dead_letters
                SET resolved = 1, resolved_at = ?, resolved_by = ?
                WHERE id = ? AND resolved = 0
                """,
                (to_iso(self._clock()), resolved_by, dead_letter_id),
            )
        if cursor.rowcount:
            logger.info("dead_letter_resolved", dead_letter_id=dead_letter_id, resolved_by=resolved_by)
        return cursor.rowcount > 0

    def count_unresolved(self, job_type: str | None = None) -> int:
        if job_type:
            row = self.store.query_one(
                "SELECT COUNT(*) AS n FROM core_dead_letters WHERE resolved = 0 AND job_type = ?", (job_type,)
            )
        else:
            row = self.store.query_one("SELECT COUNT(*) AS n FROM core_dead_letters WHERE resolved = 0")
        return row["n"] if row else 0

    def stats(self) -> dict[str, Any]:
        """Counts by resolution state and, for unresolved entries, by job type."""
        rows = self.store.query(
            "SELECT job_type, resolved, COUNT(*) AS n FROM core_dead_letters GROUP BY job_type, resolved"
        )
        unresolved_by_type: dict[str, int] = {}
        total = resolved = 0
        for row in rows:
            total += row["n"]
            if row["resolved"]:
                resolved += row["n"]
            else:
                unresolved_by_type[row["job_type"]] = row["n"]
        return {
            "total": total,
            "resolved": resolved,
            "unresolved": total - resolved,
            "unresolved_by_job_type": unresolved_by_type,
        }

    def purge_resolved(self, older_than_days: int = 30) -> int:
        """Delete resolved entries resolved more than ``older_than_days`` ago.

        Returns:
            Number of entries deleted
        """
        cutoff = self._clock() - timedelta(days=older_than_days)
        with self.store.transaction() as conn:
            deleted = conn.execute(
                "DELETE FROM core_dead_letters WHERE resolved = 1 AND resolved_at < ?",
                (to_iso(cutoff),),
            ).rowcount
        if deleted:
            logger.info("dead_letters_purged", count=deleted, older_than_days=older_than_days)
        return deleted

    def _row_to_dead_letter(self, row) -> DeadLetter:
        """Convert a database row to a DeadLetter object."""
        return DeadLetter(
            id=row["id"],
            original_job_id=row["original_job_id"],
            job_type=row["job_type"],
            job=json.loads(row["job_snapshot"]),
            failure_history=[FailureRecord.from_dict(r) for r in json.loads(row["failure_history"])],
            moved_at=from_iso(row["moved_at"]),
            resolved=bool(row["resolved"]),
            resolved_at=from_iso(row["resolved_at"]),
            resolved_by=row["resolved_by"],
            replayed_job_id=row["replayed_job_id"],
        )


__all__ = ["DeadLetterFilter", "DeadLetterStore"]
