"""Rate limiting, daily quotas and result caching for cost-sensitive calls.

Paid dependencies (the inference service) are protected by three layers,
evaluated in this order before a call is made:

::

    ResultCache          ─ semantic key hit → reuse the stored result, no call
    QuotaTracker         ─ calls per dependency per UTC day
    SlidingWindowLimiter ─ calls per dependency:identifier in the last 60 s

All counters live in the shared store, so the limit holds across every
worker thread and process. ``RateLimiter.acquire`` evaluates the quota and
the window and records the call in a single transaction.

The limiter fails closed: when the store cannot be reached the call is
denied with ``reason="rate_limit_unavailable"`` and a 60 s retry-after,
so an outage of the store can never turn into unbounded spend.

Example::

    limiter = RateLimiter(store, settings)
    try:
        limiter.acquire("inference", identifier="org:42")
    except RateLimitedError as e:
        reschedule(after=e.retry_after)
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from courier.core.errors import QuotaExceededError, RateLimitedError, StoreUnavailableError
from courier.core.logging import get_logger
from courier.core.settings import CourierSettings
from courier.core.store import SqliteStore
from courier.core.timestamps import Clock, from_iso, next_utc_midnight, to_iso, utc_day, utc_now

logger = get_logger(__name__)

UNAVAILABLE_RETRY_AFTER = 60.0


@dataclass(frozen=True)
class QuotaUsage:
    """Daily quota usage for one dependency."""

    dependency: str
    used: int
    limit: int | None
    remaining: int | None
    window_reset_at: datetime

    @property
    def ratio(self) -> float:
        if not self.limit:
            return 0.0
        return self.used / self.limit

    def to_dict(self) -> dict[str, Any]:
        return {
            "dependency": self.dependency,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "window_reset_at": to_iso(self.window_reset_at),
        }


class QuotaTracker:
    """Per-dependency call counter that resets at UTC midnight."""

    def __init__(self, store: SqliteStore, settings: CourierSettings, clock: Clock = utc_now):
        self.store = store
        self.settings = settings
        self._clock = clock

    def limit_for(self, dependency: str) -> int | None:
        return self.settings.policy_for(dependency).daily_quota

    def _used(self, conn, dependency: str, day: str) -> int:
        row = conn.execute(
            "SELECT count FROM core_quota_counters WHERE dependency = ? AND day = ?",
            (dependency, day),
        ).fetchone()
        return row["count"] if row else 0

    def check(self, conn, dependency: str, now: datetime) -> None:
        """Raise ``QuotaExceededError`` if today's quota is used up."""
        limit = self.limit_for(dependency)
        if limit is None:
            return
        used = self._used(conn, dependency, utc_day(now))
        if used >= limit:
            reset_at = next_utc_midnight(now)
            raise QuotaExceededError(
                f"Daily quota for {dependency} exhausted ({used}/{limit})",
                retry_after=(reset_at - now).total_seconds(),
                dependency=dependency,
                used=used,
                limit=limit,
            )

    def increment(self, conn, dependency: str, now: datetime) -> None:
        conn.execute(
            "INSERT INTO core_quota_counters (dependency, day, count) VALUES (?, ?, 1) "
            "ON CONFLICT (dependency, day) DO UPDATE SET count = count + 1",
            (dependency, utc_day(now)),
        )

    def usage(self, dependency: str) -> QuotaUsage:
        now = self._clock()
        with self.store.transaction() as conn:
            used = self._used(conn, dependency, utc_day(now))
        limit = self.limit_for(dependency)
        return QuotaUsage(
            dependency=dependency,
            used=used,
            limit=limit,
            remaining=max(0, limit - used) if limit is not None else None,
            window_reset_at=next_utc_midnight(now),
        )

    def usage_all(self) -> list[QuotaUsage]:
        """Usage for every dependency that has a daily quota."""
        return [
            self.usage(name)
            for name, policy in sorted(self.settings.dependencies.items())
            if policy.daily_quota is not None
        ]

    def purge_before(self, day: str) -> int:
        """Delete counters for days before ``day`` (``YYYY-MM-DD``)."""
        with self.store.transaction() as conn:
            return conn.execute("DELETE FROM core_quota_counters WHERE day < ?", (day,)).rowcount


class SlidingWindowLimiter:
    """Exact sliding-log limiter keyed by ``dependency:identifier``.

    Every admitted call is one row in ``core_rate_events``. A call is allowed
    when fewer than ``limit`` rows for its key fall inside the window.
    """

    def __init__(self, store: SqliteStore, window_seconds: float = 60.0, clock: Clock = utc_now):
        self.store = store
        self.window_seconds = window_seconds
        self._clock = clock

    def _cleanup(self, conn, key: str, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.window_seconds)
        conn.execute(
            "DELETE FROM core_rate_events WHERE rate_key = ? AND occurred_at <= ?",
            (key, to_iso(cutoff)),
        )

    def check(self, conn, key: str, limit: int, now: datetime, dependency: str | None = None) -> None:
        """Raise ``RateLimitedError`` if ``key`` is at its limit."""
        self._cleanup(conn, key, now)
        row = conn.execute(
            "SELECT COUNT(*) AS n, MIN(occurred_at) AS oldest FROM core_rate_events WHERE rate_key = ?",
            (key,),
        ).fetchone()
        if row["n"] < limit:
            return
        oldest = from_iso(row["oldest"])
        wait = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
        raise RateLimitedError(
            f"Rate limit for {key} reached ({row['n']}/{limit} per {self.window_seconds:g}s)",
            retry_after=max(0.0, wait),
            dependency=dependency,
        )

    def record(self, conn, key: str, now: datetime) -> None:
        conn.execute(
            "INSERT INTO core_rate_events (rate_key, occurred_at) VALUES (?, ?)",
            (key, to_iso(now)),
        )

    def current_count(self, key: str) -> int:
        cutoff = self._clock() - timedelta(seconds=self.window_seconds)
        row = self.store.query_one(
            "SELECT COUNT(*) AS n FROM core_rate_events WHERE rate_key = ? AND occurred_at > ?",
            (key, to_iso(cutoff)),
        )
        return row["n"] if row else 0

    def purge_stale(self) -> int:
        """Delete events older than the window for every key, idle ones included."""
        cutoff = self._clock() - timedelta(seconds=self.window_seconds)
        with self.store.transaction() as conn:
            return conn.execute(
                "DELETE FROM core_rate_events WHERE occurred_at <= ?", (to_iso(cutoff),)
            ).rowcount


class RateLimiter:
    """Quota + sliding-window gate for quota-sensitive calls."""

    def __init__(
        self,
        store: SqliteStore,
        settings: CourierSettings,
        clock: Clock = utc_now,
        window_seconds: float = 60.0,
    ):
        self.store = store
        self.settings = settings
        self._clock = clock
        self.quota = QuotaTracker(store, settings, clock)
        self.window = SlidingWindowLimiter(store, window_seconds, clock)

    def acquire(self, dependency: str, identifier: str = "global") -> None:
        """Admit one call or raise.

        Raises:
            QuotaExceededError: daily quota used up (retry after UTC midnight)
            RateLimitedError: sliding window full, or the store is unreachable
        """
        policy = self.settings.policy_for(dependency)
        key = f"{dependency}:{identifier}"
        now = self._clock()
        try:
            with self.store.transaction() as conn:
                self.quota.check(conn, dependency, now)
                if policy.rate_limit_per_minute is not None:
                    self.window.check(conn, key, policy.rate_limit_per_minute, now, dependency)
                    self.window.record(conn, key, now)
                self.quota.increment(conn, dependency, now)
        except StoreUnavailableError as e:
            logger.warning("rate_limit_unavailable", dependency=dependency, error=str(e))
            raise RateLimitedError(
                f"Rate limiting unavailable for {dependency}, failing closed",
                retry_after=UNAVAILABLE_RETRY_AFTER,
                reason="rate_limit_unavailable",
                dependency=dependency,
            ) from e
        except RateLimitedError as e:
            logger.info(
                "rate_limited",
                dependency=dependency,
                identifier=identifier,
                reason=e.reason,
                retry_after=e.retry_after,
            )
            raise

    def usage(self, dependency: str) -> QuotaUsage:
        return self.quota.usage(dependency)

    def sweep(self, quota_retention_days: int) -> dict[str, int]:
        """Drop expired window events and quota counters older than the retention."""
        oldest_kept = utc_day(self._clock() - timedelta(days=quota_retention_days))
        return {
            "rate_events": self.window.purge_stale(),
            "quota_counters": self.quota.purge_before(oldest_kept),
        }


class ResultCache:
    """Expiring key/value store for reusable call results.

    Values must be JSON: dicts, lists, strings, numbers and booleans. A value
    of ``None`` cannot be told apart from a miss and is rejected.
    """

    def __init__(self, store: SqliteStore, default_ttl_seconds: float = 3600.0, clock: Clock = utc_now):
        self.store = store
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock

    def get(self, key: str) -> Any | None:
        row = self.store.query_one(
            "SELECT value, expires_at FROM core_result_cache WHERE cache_key = ?", (key,)
        )
        if row is None or row["expires_at"] <= to_iso(self._clock()):
            return None
        return json.loads(row["value"])

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store ``value`` under ``key``.

        Raises:
            ValueError: ``value`` is ``None``
            TypeError: ``value`` is not JSON serializable
        """
        if value is None:
            raise ValueError(f"Cannot cache None for {key}")
        encoded = json.dumps(value)
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        expires_at = self._clock() + timedelta(seconds=ttl)
        with self.store.transaction() as conn:
            conn.execute(
                "INSERT INTO core_result_cache (cache_key, value, expires_at) VALUES (?, ?, ?) "
                "ON CONFLICT (cache_key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at",
                (key, encoded, to_iso(expires_at)),
            )

    def invalidate(self, key: str) -> bool:
        with self.store.transaction() as conn:
            return conn.execute("DELETE FROM core_result_cache WHERE cache_key = ?", (key,)).rowcount > 0

    def purge_expired(self) -> int:
        with self.store.transaction() as conn:
            return conn.execute(
                "DELETE FROM core_result_cache WHERE expires_at <= ?", (to_iso(self._clock()),)
            ).rowcount


__all__ = [
    "QuotaTracker",
    "QuotaUsage",
    "RateLimiter",
    "ResultCache",
    "SlidingWindowLimiter",
]
