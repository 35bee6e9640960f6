"""
ID generation and UTC timestamp utilities.

Every stored timestamp is a UTC ISO 8601 string with microsecond precision,
so lexical order in SQLite equals chronological order. Components never call
``datetime.now`` directly: they take a ``Clock`` so tests can move time.

Examples:
    >>> to_iso(datetime(2026, 1, 1, tzinfo=UTC))
    '2026-01-01T00:00:00.000000+00:00'
    >>> next_utc_midnight(datetime(2026, 1, 1, 23, 0, tzinfo=UTC)).isoformat()
    '2026-01-02T00:00:00+00:00'
"""

import random
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    """Opaque unique identifier for jobs and dead letters."""
    return str(uuid.uuid4())


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable. Used for worker ids
    so they sort by start time in logs.
    """
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


def to_iso(dt: datetime | None) -> str | None:
    """Convert an aware datetime to a sortable UTC ISO 8601 string."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def utc_day(dt: datetime) -> str:
    """Calendar day key (``YYYY-MM-DD``) in UTC."""
    return dt.astimezone(UTC).strftime("%Y-%m-%d")


def next_utc_midnight(dt: datetime) -> datetime:
    day = dt.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    return day + timedelta(days=1)


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))
