"""
Result envelope for explicit success/failure handling.

``RetryExecutor`` never lets exceptions cross its boundary for control
flow. It returns ``Ok(value)`` when the external call succeeded, or
``Err(error, attempts_used)`` when it did not; the worker decides what to do
with the job from that value alone.

Architecture:
    ::

        ┌──────────────────────────────────────────────────┐
        │                    Result[T]                      │
        ├────────────────────────┬─────────────────────────┤
        │       Ok[T]            │        Err[T]            │
        │  • value: T            │  • error                 │
        │  • map()               │  • attempts_used: int    │
        │  • unwrap()            │  • unwrap_or()           │
        └────────────────────────┴─────────────────────────┘

Examples:
    >>> result = Ok(10).map(lambda x: x * 2)
    >>> match result:
    ...     case Ok(value):
    ...         print(value)
    ...     case Err(error, attempts):
    ...         print(error, attempts)
    20

Guardrails:
    ❌ DON'T: Call unwrap() on Err without checking is_err() first
    ✅ DO: Use pattern matching or unwrap_or()
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value if Ok."""
        return Ok(f(self.value))

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result carrying the error and how many attempts were spent.

    ``error`` is normally a ``ClassifiedError`` (see
    ``courier.execution.classifier``) but any object is accepted so the
    envelope stays usable outside the executor.
    """

    error: Any
    attempts_used: int = 0

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the underlying exception."""
        exc = getattr(self.error, "exception", None) or self.error
        if isinstance(exc, BaseException):
            raise exc
        raise RuntimeError(str(exc))

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error, self.attempts_used)

    def to_dict(self) -> dict[str, Any]:
        error = self.error.to_dict() if hasattr(self.error, "to_dict") else str(self.error)
        return {"ok": False, "error": error, "attempts_used": self.attempts_used}

    def __repr__(self) -> str:
        return f"Err({self.error!r}, attempts_used={self.attempts_used})"


Result = Ok[T] | Err[T]


__all__ = ["Err", "Ok", "Result"]
