"""
Operation result envelope.

Every admin and submission operation returns an :class:`OperationResult`
(or :class:`PagedResult` for lists). The API and the CLI render these
envelopes directly, so no courier exception ever reaches an operator as a
stack trace. Unlike ``courier.core.result`` (the executor's Ok/Err), this
envelope carries an error *code* an HTTP layer can map to a status.

Error codes:
    NOT_FOUND          entity does not exist
    CONFLICT           duplicate key, already resolved, wrong job status
    VALIDATION_FAILED  payload or argument rejected
    UNAVAILABLE        the store could not be reached (retryable)
    INTERNAL           anything else
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, TypeVar

from courier.core.errors import CourierError, ErrorCategory

T = TypeVar("T")

_CODES_BY_CATEGORY = {
    ErrorCategory.NOT_FOUND: "NOT_FOUND",
    ErrorCategory.CONFLICT: "CONFLICT",
    ErrorCategory.VALIDATION: "VALIDATION_FAILED",
    ErrorCategory.STORAGE: "UNAVAILABLE",
}


@dataclass(frozen=True, slots=True)
class OperationError:
    """Structured error detail for failed operations.

    Attributes:
        code: Machine-readable code (``NOT_FOUND``, ``CONFLICT``, ...).
        message: Human-readable description of the error.
        category: Optional :class:`ErrorCategory` of the underlying error.
        details: Extra key/value context.
        retryable: Whether the caller should retry the operation.
    """

    code: str
    message: str
    category: ErrorCategory | None = None
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False


@dataclass
class OperationResult[T]:
    """Envelope returned by every operation.

    Use the :meth:`ok` / :meth:`fail` / :meth:`from_exception` factories
    instead of the constructor.
    """

    success: bool
    data: T | None = None
    error: OperationError | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @classmethod
    def ok(cls, data: T, *, warnings: list[str] | None = None, elapsed_ms: float = 0.0) -> OperationResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data, warnings=warnings or [], elapsed_ms=elapsed_ms)

    @classmethod
    def fail(
        cls,
        code: str,
        message: str,
        *,
        category: ErrorCategory | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        elapsed_ms: float = 0.0,
    ) -> OperationResult[T]:
        """Create a failed result."""
        return cls(
            success=False,
            error=OperationError(
                code=code,
                message=message,
                category=category,
                details=details or {},
                retryable=retryable,
            ),
            elapsed_ms=elapsed_ms,
        )

    @classmethod
    def from_exception(cls, exc: CourierError, *, elapsed_ms: float = 0.0) -> OperationResult[T]:
        """Failed result for a courier error, coded by its category."""
        return cls.fail(
            _CODES_BY_CATEGORY.get(exc.category, "INTERNAL"),
            exc.message,
            category=exc.category,
            details=exc.context.to_dict(),
            retryable=exc.retryable,
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain dict (for JSON responses)."""
        d: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            d["data"] = self.data
        if self.error is not None:
            d["error"] = {
                "code": self.error.code,
                "message": self.error.message,
                "retryable": self.error.retryable,
            }
            if self.error.details:
                d["error"]["details"] = self.error.details
        if self.warnings:
            d["warnings"] = self.warnings
        if self.elapsed_ms:
            d["elapsed_ms"] = round(self.elapsed_ms, 2)
        return d


@dataclass
class PagedResult(OperationResult[list[T]]):
    """Paginated result for list operations (``has_more`` derived by ``from_items``)."""

    total: int = 0
    limit: int = 50
    offset: int = 0
    has_more: bool = False

    @classmethod
    def from_items(
        cls,
        items: list[T],
        total: int,
        *,
        limit: int = 50,
        offset: int = 0,
        elapsed_ms: float = 0.0,
    ) -> PagedResult[T]:
        return cls(
            success=True,
            data=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=(offset + limit) < total,
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["total"] = self.total
        d["limit"] = self.limit
        d["offset"] = self.offset
        d["has_more"] = self.has_more
        return d


class _Timer:
    """Minimal stopwatch for timing operations."""

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000


def start_timer() -> _Timer:
    """Return a lightweight timer.  Use ``timer.elapsed_ms`` when done."""
    return _Timer()
