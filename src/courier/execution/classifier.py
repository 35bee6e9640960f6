"""Failure classification.

Every exception raised by an external call is mapped to one of three kinds
before anything else happens to it:

    ┌──────────────┬─────────────────────────────────────────────────────┐
    │ permanent    │ 4xx other than 429, payload/validation errors,       │
    │              │ missing handler. Retrying will not help.            │
    │ retryable    │ 5xx, timeouts, connection failures, open circuit,   │
    │              │ anything unrecognised (bounded by max_attempts).    │
    │ rate_limited │ 429, local sliding-window or daily-quota denial.    │
    │              │ Carries a retry-after hint.                         │
    └──────────────┴─────────────────────────────────────────────────────┘

The status code is looked up on the exception as ``status_code``, ``status``
or ``response.status_code`` so errors from common HTTP clients classify
without adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from pydantic import ValidationError

from courier.core.errors import (
    CircuitOpenError,
    CourierError,
    HandlerNotFoundError,
    PayloadValidationError,
    PermanentError,
    RateLimitedError,
    TransientError,
)
from courier.execution.models import FailureKind


@dataclass(frozen=True)
class ClassifiedError:
    """An exception together with how the retry machinery treats it."""

    kind: FailureKind
    message: str
    error_type: str
    status_code: int | None = None
    retry_after: float | None = None
    exception: BaseException | None = field(default=None, compare=False, repr=False)

    @property
    def is_permanent(self) -> bool:
        return self.kind is FailureKind.PERMANENT

    @property
    def is_retryable(self) -> bool:
        return self.kind is FailureKind.RETRYABLE

    @property
    def is_rate_limited(self) -> bool:
        return self.kind is FailureKind.RATE_LIMITED

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "error_type": self.error_type,
            "status_code": self.status_code,
            "retry_after": self.retry_after,
        }

    @classmethod
    def permanent(cls, message: str, error_type: str = "PermanentError") -> ClassifiedError:
        return cls(kind=FailureKind.PERMANENT, message=message, error_type=error_type)

    @classmethod
    def retryable(cls, message: str, error_type: str = "TransientError") -> ClassifiedError:
        return cls(kind=FailureKind.RETRYABLE, message=message, error_type=error_type)


_PERMANENT_TYPES: tuple[type[BaseException], ...] = (
    PermanentError,
    PayloadValidationError,
    HandlerNotFoundError,
    ValidationError,
)


class ErrorClassifier:
    """Maps exceptions to ``ClassifiedError``."""

    def classify(self, exc: BaseException) -> ClassifiedError:
        status = extract_status_code(exc)
        hint = _retry_after_hint(exc)

        kind = self._kind_for(exc, status)
        return ClassifiedError(
            kind=kind,
            message=str(exc) or exc.__class__.__name__,
            error_type=exc.__class__.__name__,
            status_code=status,
            retry_after=hint,
            exception=exc,
        )

    def _kind_for(self, exc: BaseException, status: int | None) -> FailureKind:
        # The dependency was never called; the job may run again later.
        if isinstance(exc, CircuitOpenError):
            return FailureKind.RETRYABLE
        if isinstance(exc, RateLimitedError):
            return FailureKind.RATE_LIMITED
        if isinstance(exc, _PERMANENT_TYPES):
            return FailureKind.PERMANENT

        if status is not None:
            if status == 429:
                return FailureKind.RATE_LIMITED
            if 400 <= status < 500:
                return FailureKind.PERMANENT
            if status >= 500:
                return FailureKind.RETRYABLE

        if isinstance(exc, (TransientError, TimeoutError, ConnectionError)):
            return FailureKind.RETRYABLE
        if isinstance(exc, CourierError) and not exc.retryable:
            return FailureKind.PERMANENT
        return FailureKind.RETRYABLE


def extract_status_code(exc: BaseException) -> int | None:
    """HTTP status carried by ``exc``, if any."""
    for candidate in (
        getattr(exc, "status_code", None),
        getattr(exc, "status", None),
        getattr(getattr(exc, "response", None), "status_code", None),
    ):
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return candidate
    return None


def _retry_after_hint(exc: BaseException) -> float | None:
    hint = getattr(exc, "retry_after", None)
    if isinstance(hint, (int, float)) and not isinstance(hint, bool):
        return max(0.0, float(hint))

    headers = getattr(getattr(exc, "response", None), "headers", None)
    if headers is None:
        return None
    raw = headers.get("Retry-After") or headers.get("retry-after")
    return parse_retry_after(raw) if raw else None


def parse_retry_after(value: str, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header (delta seconds or HTTP date)."""
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return max(0.0, (when - now).total_seconds())


__all__ = ["ClassifiedError", "ErrorClassifier", "extract_status_code", "parse_retry_after"]
