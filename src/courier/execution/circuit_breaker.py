"""Circuit breaker pattern for fault tolerance.

Prevents cascading failures by failing fast when a dependency is
experiencing issues. Breaker state lives in ``core_circuit_state`` so every
worker thread and process sees the same state for a dependency.

States:
    CLOSED: Normal operation, requests pass through
    OPEN: Failing fast, requests rejected immediately
    HALF_OPEN: One probe request tests whether the dependency recovered

Transitions:
    CLOSED    → OPEN       after ``failure_threshold`` consecutive failures
    OPEN      → HALF_OPEN  once ``cooldown_seconds`` elapsed (first caller probes)
    HALF_OPEN → CLOSED     probe succeeded (failure count reset)
    HALF_OPEN → OPEN       probe failed (cooldown restarts)

Example:
    >>> breaker = CircuitBreaker("calendar", store, failure_threshold=5, cooldown_seconds=30)
    >>> if breaker.allow_request():
    ...     try:
    ...         result = call_calendar_api()
    ...         breaker.record_success()
    ...     except Exception as e:
    ...         breaker.record_failure(e)
    ...         raise
    ... else:
    ...     raise CircuitOpenError("calendar")
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from courier.core.errors import CircuitOpenError
from courier.core.logging import get_logger
from courier.core.settings import CourierSettings, DependencyPolicy
from courier.core.store import SqliteStore
from courier.core.timestamps import Clock, from_iso, to_iso, utc_now

T = TypeVar("T")

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


class Admission(str, Enum):
    """Outcome of asking the breaker for permission to call."""

    REJECTED = "rejected"
    ADMITTED = "admitted"
    PROBE = "probe"  # the single half-open trial call


@dataclass(frozen=True)
class CircuitSnapshot:
    """Point-in-time view of one breaker, for the admin surface."""

    dependency: str
    state: CircuitState
    failure_count: int
    opened_at: datetime | None
    probe_in_flight: bool
    updated_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "dependency": self.dependency,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "opened_at": to_iso(self.opened_at),
            "probe_in_flight": self.probe_in_flight,
            "updated_at": to_iso(self.updated_at),
        }


class CircuitBreaker:
    """Store-backed circuit breaker for one dependency.

    Every read-modify-write of the breaker row runs inside one store
    transaction, so two workers can never both take the half-open probe slot
    or both miss an increment.

    Attributes:
        dependency: Dependency this breaker guards
        failure_threshold: Consecutive failures before opening
        cooldown_seconds: Seconds Open before a probe is allowed
        probe_timeout_seconds: A probe that never reports back frees its slot after this
    """

    def __init__(
        self,
        dependency: str,
        store: SqliteStore,
        *,
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        probe_timeout_seconds: float = 60.0,
        clock: Clock = utc_now,
    ):
        self.dependency = dependency
        self.store = store
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.probe_timeout_seconds = probe_timeout_seconds
        self._clock = clock

    @classmethod
    def from_policy(
        cls, dependency: str, store: SqliteStore, policy: DependencyPolicy, clock: Clock = utc_now
    ) -> "CircuitBreaker":
        return cls(
            dependency,
            store,
            failure_threshold=policy.failure_threshold,
            cooldown_seconds=policy.cooldown_seconds,
            probe_timeout_seconds=policy.probe_timeout_seconds,
            clock=clock,
        )

    # ── persistence ──────────────────────────────────────────────

    def _load(self, conn) -> dict[str, Any]:
        conn.execute(
            "INSERT OR IGNORE INTO core_circuit_state (dependency, state, consecutive_failures, updated_at) "
            "VALUES (?, 'closed', 0, ?)",
            (self.dependency, to_iso(self._clock())),
        )
        row = conn.execute(
            "SELECT * FROM core_circuit_state WHERE dependency = ?", (self.dependency,)
        ).fetchone()
        return dict(row)

    def _save(self, conn, **values: Any) -> None:
        values["updated_at"] = to_iso(self._clock())
        assignments = ", ".join(f"{column} = ?" for column in values)
        conn.execute(
            f"UPDATE core_circuit_state SET {assignments} WHERE dependency = ?",
            (*values.values(), self.dependency),
        )

    # ── state queries ────────────────────────────────────────────

    @property
    def state(self) -> CircuitState:
        """Stored state (an OPEN breaker past its cooldown moves on the next request)."""
        return self.snapshot().state

    def snapshot(self) -> CircuitSnapshot:
        with self.store.transaction() as conn:
            row = self._load(conn)
        return CircuitSnapshot(
            dependency=self.dependency,
            state=CircuitState(row["state"]),
            failure_count=row["consecutive_failures"],
            opened_at=from_iso(row["opened_at"]),
            probe_in_flight=bool(row["probe_in_flight"]),
            updated_at=from_iso(row["updated_at"]),
        )

    def retry_after(self) -> float | None:
        """Seconds until an Open breaker admits a probe (None unless Open)."""
        snap = self.snapshot()
        if snap.state != CircuitState.OPEN or snap.opened_at is None:
            return None
        elapsed = (self._clock() - snap.opened_at).total_seconds()
        return max(0.0, self.cooldown_seconds - elapsed)

    # ── admission ────────────────────────────────────────────────

    def acquire(self) -> Admission:
        """Ask to call the dependency.

        Returns ``PROBE`` to exactly one caller once an Open breaker's cooldown
        has elapsed. A caller holding the probe must report an outcome
        (``record_success``/``record_failure``) or give the slot back with
        ``release_probe``.
        """
        now = self._clock()
        with self.store.transaction() as conn:
            row = self._load(conn)
            state = CircuitState(row["state"])

            if state == CircuitState.CLOSED:
                return Admission.ADMITTED

            if state == CircuitState.OPEN:
                opened_at = from_iso(row["opened_at"]) or now
                if (now - opened_at).total_seconds() < self.cooldown_seconds:
                    return Admission.REJECTED
                self._save(
                    conn,
                    state=CircuitState.HALF_OPEN.value,
                    probe_in_flight=1,
                    probe_started_at=to_iso(now),
                )
                logger.info("circuit_half_open", dependency=self.dependency)
                return Admission.PROBE

            # Half-open: one trial call at a time; a stale lease lapses
            probe_started = from_iso(row["probe_started_at"])
            if row["probe_in_flight"] and probe_started is not None:
                if (now - probe_started).total_seconds() < self.probe_timeout_seconds:
                    return Admission.REJECTED
                logger.warning("circuit_probe_lapsed", dependency=self.dependency)
            self._save(conn, probe_in_flight=1, probe_started_at=to_iso(now))
            return Admission.PROBE

    def allow_request(self) -> bool:
        """Check if a request should be allowed.

        Returns:
            True if request can proceed, False if circuit is open
        """
        return self.acquire() != Admission.REJECTED

    def release_probe(self) -> None:
        """Give back the half-open probe slot without reporting an outcome."""
        with self.store.transaction() as conn:
            row = self._load(conn)
            if row["state"] == CircuitState.HALF_OPEN.value and row["probe_in_flight"]:
                self._save(conn, probe_in_flight=0, probe_started_at=None)

    # ── outcomes ─────────────────────────────────────────────────

    def record_success(self) -> None:
        """Record a successful request."""
        with self.store.transaction() as conn:
            row = self._load(conn)
            if row["state"] == CircuitState.CLOSED.value and row["consecutive_failures"] == 0:
                return
            previous = row["state"]
            self._save(
                conn,
                state=CircuitState.CLOSED.value,
                consecutive_failures=0,
                opened_at=None,
                probe_in_flight=0,
                probe_started_at=None,
            )
        if previous != CircuitState.CLOSED.value:
            logger.info("circuit_closed", dependency=self.dependency, previous_state=previous)

    def record_failure(self, error: BaseException | None = None) -> None:
        """Record a failed request."""
        now = self._clock()
        with self.store.transaction() as conn:
            row = self._load(conn)
            state = CircuitState(row["state"])
            failures = row["consecutive_failures"] + 1

            if state == CircuitState.HALF_OPEN:
                # Failed trial call: reopen and restart the cooldown
                self._save(
                    conn,
                    state=CircuitState.OPEN.value,
                    consecutive_failures=failures,
                    opened_at=to_iso(now),
                    probe_in_flight=0,
                    probe_started_at=None,
                )
                opened = True
            elif state == CircuitState.CLOSED and failures >= self.failure_threshold:
                self._save(
                    conn,
                    state=CircuitState.OPEN.value,
                    consecutive_failures=failures,
                    opened_at=to_iso(now),
                )
                opened = True
            else:
                self._save(conn, consecutive_failures=failures)
                opened = False

        if opened:
            logger.warning(
                "circuit_opened",
                dependency=self.dependency,
                failures=failures,
                previous_state=state.value,
                error=str(error) if error is not None else None,
            )

    def reset(self) -> None:
        """Reset circuit to closed state."""
        with self.store.transaction() as conn:
            self._load(conn)
            self._save(
                conn,
                state=CircuitState.CLOSED.value,
                consecutive_failures=0,
                opened_at=None,
                probe_in_flight=0,
                probe_started_at=None,
            )
        logger.info("circuit_reset", dependency=self.dependency)

    def force_open(self) -> None:
        """Force circuit to open state (for maintenance)."""
        with self.store.transaction() as conn:
            self._load(conn)
            self._save(
                conn,
                state=CircuitState.OPEN.value,
                opened_at=to_iso(self._clock()),
                probe_in_flight=0,
                probe_started_at=None,
            )
        logger.warning("circuit_forced_open", dependency=self.dependency)

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute a function through the circuit breaker.

        Raises:
            CircuitOpenError: If the breaker refuses the call
        """
        if self.acquire() == Admission.REJECTED:
            raise CircuitOpenError(self.dependency, retry_after=self.retry_after())

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result


class CircuitBreakerRegistry:
    """One breaker per dependency, configured from ``DependencyPolicy``."""

    def __init__(self, store: SqliteStore, settings: CourierSettings, clock: Clock = utc_now):
        self.store = store
        self.settings = settings
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()

    def get(self, dependency: str) -> CircuitBreaker:
        """Get the breaker for ``dependency``, creating it on first use."""
        with self._lock:
            if dependency not in self._breakers:
                self._breakers[dependency] = CircuitBreaker.from_policy(
                    dependency, self.store, self.settings.policy_for(dependency), self._clock
                )
            return self._breakers[dependency]

    def dependencies(self) -> list[str]:
        """Configured dependencies plus any that have stored state."""
        stored = [row["dependency"] for row in self.store.query("SELECT dependency FROM core_circuit_state")]
        return sorted(set(self.settings.dependencies) | set(stored))

    def snapshots(self) -> list[CircuitSnapshot]:
        return [self.get(name).snapshot() for name in self.dependencies()]

    def reset_all(self) -> None:
        for name in self.dependencies():
            self.get(name).reset()


__all__ = [
    "Admission",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitSnapshot",
    "CircuitState",
]
