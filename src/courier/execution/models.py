"""Execution domain models.

Defines the core data structures of the job system:
- Job: a unit of asynchronous work owned by JobStore
- FailureRecord: one failed attempt, kept in the job's failure history
- DeadLetter: a job that exhausted its attempts or failed permanently

These models are used by JobStore, DeadLetterStore, the Worker and the
admin layer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from courier.core.errors import InvalidTransitionError
from courier.core.timestamps import from_iso, to_iso


class JobStatus(str, Enum):
    """Status of a job.

    Valid transition graph::

        PENDING    → PROCESSING | FAILED (cancelled before claim)
        PROCESSING → COMPLETED | PENDING (retry) | DEAD_LETTERED
                     | PROCESSING (lapsed claim re-taken)
        COMPLETED, FAILED, DEAD_LETTERED → (terminal)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({
        JobStatus.PROCESSING,
        JobStatus.FAILED,
    }),
    JobStatus.PROCESSING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.PENDING,  # retry
        JobStatus.DEAD_LETTERED,
        JobStatus.PROCESSING,  # reclaim after visibility timeout
    }),
    JobStatus.COMPLETED: frozenset(),  # terminal
    JobStatus.FAILED: frozenset(),  # terminal
    JobStatus.DEAD_LETTERED: frozenset(),  # terminal
}

ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})


def validate_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_transition(JobStatus.PROCESSING, JobStatus.COMPLETED)
        >>> validate_transition(JobStatus.COMPLETED, JobStatus.PENDING)
        InvalidTransitionError: Invalid JobStatus transition: completed → pending
    """
    allowed = VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value)


class FailureKind(str, Enum):
    """How a failed attempt is treated."""

    PERMANENT = "permanent"
    RETRYABLE = "retryable"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class FailureRecord:
    """One failed attempt in a job's history."""

    attempt: int
    classification: FailureKind
    error_type: str
    message: str
    timestamp: datetime
    status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt": self.attempt,
            "classification": self.classification.value,
            "error_type": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailureRecord":
        return cls(
            attempt=int(data["attempt"]),
            classification=FailureKind(data["classification"]),
            error_type=data.get("error_type", ""),
            message=data.get("message", ""),
            status_code=data.get("status_code"),
            timestamp=from_iso(data["timestamp"]),
        )


@dataclass
class Job:
    """A job record as stored in core_jobs.

    ``payload`` is the validated payload model for ``job_type`` (see
    ``courier.execution.payloads``).
    """

    id: str
    job_type: str
    payload: Any
    status: JobStatus
    attempts: int
    max_attempts: int
    next_run_at: datetime
    created_at: datetime
    updated_at: datetime
    last_error: str | None = None
    idempotency_key: str | None = None
    claimed_by: str | None = None
    claim_expires_at: datetime | None = None
    failure_history: list[FailureRecord] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.status]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        payload = self.payload.model_dump(mode="json") if hasattr(self.payload, "model_dump") else self.payload
        return {
            "id": self.id,
            "job_type": self.job_type,
            "payload": payload,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "next_run_at": to_iso(self.next_run_at),
            "last_error": self.last_error,
            "idempotency_key": self.idempotency_key,
            "claimed_by": self.claimed_by,
            "claim_expires_at": to_iso(self.claim_expires_at),
            "failure_history": [r.to_dict() for r in self.failure_history],
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }


@dataclass
class DeadLetter:
    """A job in the dead letter queue.

    ``job`` is the snapshot of the job at the moment it was moved (the output
    of ``Job.to_dict()``). Entries persist until replayed, resolved by an
    operator, or purged after the retention window.
    """

    id: str
    original_job_id: str
    job_type: str
    job: dict[str, Any]
    failure_history: list[FailureRecord]
    moved_at: datetime
    resolved: bool = False
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    replayed_job_id: str | None = None

    def can_replay(self) -> bool:
        return not self.resolved

    @property
    def last_failure(self) -> FailureRecord | None:
        return self.failure_history[-1] if self.failure_history else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "original_job_id": self.original_job_id,
            "job_type": self.job_type,
            "job": self.job,
            "failure_history": [r.to_dict() for r in self.failure_history],
            "last_error": self.last_failure.message if self.last_failure else None,
            "moved_at": to_iso(self.moved_at),
            "resolved": self.resolved,
            "resolved_at": to_iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "replayed_job_id": self.replayed_job_id,
        }
