"""
Structured error types for courier.

Every failure that crosses a courier boundary is one of these types. Each
error carries the metadata the retry machinery and the operators need:

- **Category:** what kind of failure (network, dependency, quota, ...)
- **Retryable:** whether running the same work again can help
- **Retry-after:** how long to wait before trying again, when known
- **Context:** job id, job type, dependency, HTTP status, free-form metadata
- **Cause:** the underlying exception for root cause analysis

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        CourierError                           │
        │   (category, retryable, retry_after, context, cause)          │
        ├──────────────────────────────────────────────────────────────┤
        │  TransientError        PermanentError      ExternalServiceError│
        │  (retryable=True)      (never retried)     (status_code)       │
        │     │                                                          │
        │  NetworkError          CircuitOpenError    RateLimitedError    │
        │  CallTimeoutError      (call skipped)      └ QuotaExceededError│
        │                                                                │
        │  DuplicateJobError     StoreUnavailableError                   │
        │  JobNotFoundError      DeadLetterNotFoundError                 │
        │  ReplayRejectedError   InvalidTransitionError                  │
        │  PayloadValidationError  ClaimLostError  HandlerNotFoundError  │
        └──────────────────────────────────────────────────────────────┘

Propagation:
    ``RetryExecutor`` recovers ``TransientError`` locally and returns an
    explicit ``Err`` once the budget is spent. The worker hands that to
    ``JobStore.fail`` which reschedules or dead-letters the job. Permanent
    errors reach the dead-letter queue after a single recorded attempt.

Examples:
    >>> error = ExternalServiceError("calendar returned 503", status_code=503)
    >>> error.retryable
    True
    >>> RateLimitedError("slow down", retry_after=12).retry_after
    12.0

Tags:
    error-handling, exception-hierarchy, retry-logic, courier-core
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure (usually transient)
    NETWORK = "NETWORK"
    STORAGE = "STORAGE"

    # Third-party dependencies
    DEPENDENCY = "DEPENDENCY"
    CIRCUIT = "CIRCUIT"
    QUOTA = "QUOTA"

    # Caller mistakes (never retryable)
    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"

    # Internal
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields are serialized by ``to_dict()``. Anything that does
    not have a dedicated field goes into ``metadata``.

    Attributes:
        job_id: Job the error belongs to
        job_type: Job type tag (``calendar:sync``, ``message:send``, ...)
        dependency: External dependency name (``inference``, ``push``, ...)
        worker_id: Worker that observed the failure
        http_status: HTTP status returned by the dependency
        metadata: Additional key-value pairs
    """

    job_id: str | None = None
    job_type: str | None = None
    dependency: str | None = None
    worker_id: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_id", "job_type", "dependency", "worker_id", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CourierError(Exception):
    """
    Base exception for all courier errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    only pass what differs from the default.

    Example:
        >>> raise CourierError("unexpected state").with_context(job_id="j-1")
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = float(retry_after) if retry_after is not None else None
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CourierError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (retried up to budget)
# =============================================================================


class TransientError(CourierError):
    """Temporary failure that may succeed on retry (network, timeout, 5xx)."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Connection refused, reset, DNS failure."""


class CallTimeoutError(TransientError):
    """An external call exceeded its per-call timeout and was abandoned."""

    def __init__(self, timeout: float, operation: str = "call", elapsed: float | None = None):
        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(msg)
        self.timeout = timeout
        self.operation = operation
        self.elapsed = elapsed


# =============================================================================
# DEPENDENCY ERRORS
# =============================================================================


class PermanentError(CourierError):
    """Failure that retrying will not fix (4xx other than 429)."""

    default_category = ErrorCategory.DEPENDENCY
    default_retryable = False


class ExternalServiceError(CourierError):
    """Non-2xx response from a third-party service.

    Retryability follows the status code: 5xx is retryable, 4xx is not.
    ``ErrorClassifier`` makes the final call, including 429 handling.
    """

    default_category = ErrorCategory.DEPENDENCY

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        retry_after: float | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            message,
            retryable=status_code >= 500,
            retry_after=retry_after,
            context=ErrorContext(http_status=status_code),
            cause=cause,
        )
        self.status_code = status_code


class CircuitOpenError(CourierError):
    """Call skipped because the dependency's breaker is open or probing.

    Not counted as a dependency failure: the dependency was never called.
    """

    default_category = ErrorCategory.CIRCUIT
    default_retryable = True

    def __init__(self, dependency: str, state: str = "open", retry_after: float | None = None):
        super().__init__(
            f"Circuit '{dependency}' is {state}, rejecting request",
            retry_after=retry_after,
            context=ErrorContext(dependency=dependency),
        )
        self.dependency = dependency
        self.state = state


class RateLimitedError(CourierError):
    """Call skipped by the sliding-window limiter (or a 429 from upstream)."""

    default_category = ErrorCategory.QUOTA
    default_retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        reason: str = "rate_limit",
        dependency: str | None = None,
    ):
        super().__init__(message, retry_after=retry_after, context=ErrorContext(dependency=dependency))
        self.reason = reason
        self.dependency = dependency


class QuotaExceededError(RateLimitedError):
    """Daily quota for a dependency is used up until the next UTC midnight."""

    def __init__(
        self,
        message: str = "Daily quota exceeded",
        *,
        retry_after: float | None = None,
        dependency: str | None = None,
        used: int = 0,
        limit: int = 0,
    ):
        super().__init__(message, retry_after=retry_after, reason="daily_quota", dependency=dependency)
        self.used = used
        self.limit = limit


# =============================================================================
# QUEUE / STORE ERRORS
# =============================================================================


class DuplicateJobError(CourierError):
    """An active (pending/processing) job already holds this idempotency key."""

    default_category = ErrorCategory.CONFLICT

    def __init__(self, idempotency_key: str, existing_job_id: str | None = None):
        super().__init__(f"Job with idempotency key '{idempotency_key}' is already active")
        self.idempotency_key = idempotency_key
        self.existing_job_id = existing_job_id


class PayloadValidationError(CourierError):
    """Job payload does not match the variant for its job type."""

    default_category = ErrorCategory.VALIDATION


class JobNotFoundError(CourierError):
    default_category = ErrorCategory.NOT_FOUND


class DeadLetterNotFoundError(CourierError):
    default_category = ErrorCategory.NOT_FOUND


class ReplayRejectedError(CourierError):
    """Dead letter already resolved; a second replay is refused."""

    default_category = ErrorCategory.CONFLICT


class HandlerNotFoundError(CourierError):
    """No handler registered for a job type. Retrying will not help."""

    default_category = ErrorCategory.INTERNAL


class ClaimLostError(CourierError):
    """The caller no longer owns the claim on a processing job."""

    default_category = ErrorCategory.CONFLICT


class InvalidTransitionError(CourierError):
    """Raised when an illegal job status transition is attempted."""

    default_category = ErrorCategory.CONFLICT

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid JobStatus transition: {current} → {target}")
        self.current = current
        self.target = target


class StoreUnavailableError(CourierError):
    """The authoritative store could not be read or written."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


__all__ = [
    "CallTimeoutError",
    "CircuitOpenError",
    "ClaimLostError",
    "CourierError",
    "DeadLetterNotFoundError",
    "DuplicateJobError",
    "ErrorCategory",
    "ErrorContext",
    "ExternalServiceError",
    "HandlerNotFoundError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "NetworkError",
    "PayloadValidationError",
    "PermanentError",
    "QuotaExceededError",
    "RateLimitedError",
    "ReplayRejectedError",
    "StoreUnavailableError",
    "TransientError",
]
