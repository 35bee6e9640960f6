"""Core primitives shared by every courier layer.

    errors.py       Structured error hierarchy (CourierError, TransientError, ...)
    result.py       Ok / Err result envelope
    logging.py      structlog configuration
    settings.py     pydantic-settings configuration
    timestamps.py   UTC helpers and the injectable clock
    schema.py       Table names and DDL
    store.py        The single authoritative SQLite store
"""

from courier.core.errors import (
    CircuitOpenError,
    CourierError,
    DuplicateJobError,
    ErrorCategory,
    PermanentError,
    QuotaExceededError,
    RateLimitedError,
    TransientError,
)
from courier.core.result import Err, Ok, Result

__all__ = [
    "CircuitOpenError",
    "CourierError",
    "DuplicateJobError",
    "Err",
    "ErrorCategory",
    "Ok",
    "PermanentError",
    "QuotaExceededError",
    "RateLimitedError",
    "Result",
    "TransientError",
]
