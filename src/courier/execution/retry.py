"""Guarded execution of external calls: breaker, cost gates, timeout, retry.

``RetryExecutor.execute`` is the only way courier calls a dependency. It
returns an explicit ``Ok``/``Err`` instead of raising, so the caller decides
what happens to the job from the value alone. Breaker bookkeeping that
cannot reach the store is logged and dropped; the call outcome stands.

Order of checks for one ``execute`` call::

    cache_key hit? ──yes──► Ok(cached)                     (no gate touched)
        │no
    breaker.acquire() ──rejected──► Err(circuit open, attempts so far)
        │
    quota-sensitive? ──► RateLimiter.acquire() ──denied──► Err(rate_limited)
        │                                                  (probe slot returned)
    run_with_timeout(func)
        ├─ success ────► record_success, cache value, Ok(value)
        ├─ permanent ──► record_success (it answered), Err
        ├─ 429 ────────► no breaker update, Err(rate_limited)
        └─ retryable ──► record_failure; sleep backoff; loop until max_attempts

Example:
    >>> executor = RetryExecutor(breakers, settings, rate_limiter=limiter, cache=cache)
    >>> result = executor.execute("inference", score_lead, payload,
    ...                           quota_identifier="global", cache_key="score:deal:7")
    >>> match result:
    ...     case Ok(value): ...
    ...     case Err(error, attempts): ...
"""

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from courier.core.errors import CircuitOpenError, RateLimitedError, StoreUnavailableError
from courier.core.logging import get_logger
from courier.core.result import Err, Ok, Result
from courier.core.settings import CourierSettings
from courier.execution.circuit_breaker import Admission, CircuitBreakerRegistry
from courier.execution.classifier import ClassifiedError, ErrorClassifier
from courier.execution.rate_limit import RateLimiter, ResultCache
from courier.execution.timeout import run_with_timeout

logger = get_logger(__name__)


@dataclass
class BackoffCalculator:
    """Exponential backoff with additive jitter.

    Delay = min(base_delay * 2 ** attempt, max_delay) + uniform[0, jitter)

    ``attempt`` is zero-based (0 = first retry). ``rng`` is injectable so the
    deterministic part can be asserted in tests.
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 1.0
    rng: Callable[[], float] = field(default=random.random, repr=False)

    def base_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** max(0, attempt)), self.max_delay)

    def delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (zero-based)."""
        return self.base_for(attempt) + self.jitter * self.rng()

    @classmethod
    def from_settings(cls, settings: CourierSettings) -> "BackoffCalculator":
        return cls(base_delay=settings.backoff_base_seconds, max_delay=settings.backoff_max_seconds)


class RetryExecutor:
    """Runs external calls through the dependency's breaker and gates.

    Args:
        breakers: Registry providing the breaker per dependency
        settings: Source of per-dependency call timeouts
        rate_limiter: Quota/window gate for quota-sensitive calls
        cache: Result cache consulted when a ``cache_key`` is given
        classifier: Maps exceptions to failure kinds
        backoff: Delay between in-process attempts
        max_attempts: In-process attempt budget for retryable failures
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        settings: CourierSettings,
        *,
        rate_limiter: RateLimiter | None = None,
        cache: ResultCache | None = None,
        classifier: ErrorClassifier | None = None,
        backoff: BackoffCalculator | None = None,
        max_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.breakers = breakers
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.classifier = classifier or ErrorClassifier()
        self.backoff = backoff or BackoffCalculator.from_settings(settings)
        self.max_attempts = max_attempts
        self._sleep = sleep

    def execute(
        self,
        dependency: str,
        func: Callable[..., Any],
        *args: Any,
        quota_identifier: str | None = None,
        cache_key: str | None = None,
        **kwargs: Any,
    ) -> Result[Any]:
        """Call ``func(*args, **kwargs)`` against ``dependency``.

        ``quota_identifier`` marks the call as quota-sensitive: it passes the
        daily quota and the sliding window for ``dependency:quota_identifier``
        before each attempt.

        Only JSON values (not ``None``) are written to the cache; anything
        else is returned uncached.

        Returns:
            ``Ok(value)`` or ``Err(ClassifiedError, attempts_used)``
        """
        if cache_key is not None:
            cached = self._cache_get(cache_key)
            if cached is not None:
                logger.debug("result_cache_hit", dependency=dependency, cache_key=cache_key)
                return Ok(cached)

        breaker = self.breakers.get(dependency)
        timeout = self.settings.policy_for(dependency).call_timeout_seconds
        operation = f"{dependency}.{getattr(func, '__name__', 'call')}"
        attempts = 0

        while True:
            try:
                admission = breaker.acquire()
            except StoreUnavailableError as e:
                logger.error("breaker_unavailable", dependency=dependency, error=str(e))
                return Err(self.classifier.classify(e), attempts)
            if admission == Admission.REJECTED:
                error = CircuitOpenError(dependency, retry_after=breaker.retry_after())
                logger.info("call_rejected_circuit_open", dependency=dependency, attempts=attempts)
                return Err(self.classifier.classify(error), attempts)

            if quota_identifier is not None and self.rate_limiter is not None:
                try:
                    self.rate_limiter.acquire(dependency, quota_identifier)
                except RateLimitedError as e:
                    if admission == Admission.PROBE:
                        self._update_breaker(dependency, breaker.release_probe)
                    return Err(self.classifier.classify(e), attempts)

            attempts += 1
            try:
                value = run_with_timeout(func, timeout, operation=operation, args=args, kwargs=kwargs)
            except Exception as e:
                classified = self.classifier.classify(e)
            else:
                self._update_breaker(dependency, breaker.record_success)
                if cache_key is not None:
                    self._cache_set(cache_key, value)
                return Ok(value)

            outcome = self._record_outcome(dependency, admission, classified)
            if outcome is not None:
                return Err(outcome, attempts)

            if attempts >= self.max_attempts:
                return Err(classified, attempts)

            delay = self.backoff.delay(attempts - 1)
            logger.info(
                "call_retry_scheduled",
                dependency=dependency,
                attempt=attempts,
                delay=round(delay, 3),
                error=classified.message,
            )
            self._sleep(delay)

    def _record_outcome(
        self, dependency: str, admission: Admission, classified: ClassifiedError
    ) -> ClassifiedError | None:
        """Update the breaker for a failed call; return the error if it is final."""
        breaker = self.breakers.get(dependency)
        if classified.is_permanent:
            # The dependency answered; the request was wrong
            self._update_breaker(dependency, breaker.record_success)
            logger.warning(
                "call_failed_permanent",
                dependency=dependency,
                error_type=classified.error_type,
                status_code=classified.status_code,
                error=classified.message,
            )
            return classified
        if classified.is_rate_limited:
            if admission == Admission.PROBE:
                self._update_breaker(dependency, breaker.release_probe)
            logger.info("call_rate_limited_upstream", dependency=dependency, retry_after=classified.retry_after)
            return classified
        self._update_breaker(dependency, breaker.record_failure, classified.exception)
        logger.warning(
            "call_failed_retryable",
            dependency=dependency,
            error_type=classified.error_type,
            status_code=classified.status_code,
            error=classified.message,
        )
        return None

    def _update_breaker(self, dependency: str, update: Callable[..., None], *args: Any) -> None:
        try:
            update(*args)
        except StoreUnavailableError as e:
            # The call already ran; its result is still returned
            logger.error(
                "breaker_update_failed",
                dependency=dependency,
                update=getattr(update, "__name__", "update"),
                error=str(e),
            )

    def _cache_get(self, key: str) -> Any | None:
        try:
            return self.cache.get(key) if self.cache is not None else None
        except StoreUnavailableError as e:
            logger.warning("result_cache_unavailable", cache_key=key, error=str(e))
            return None

    def _cache_set(self, key: str, value: Any) -> None:
        if self.cache is None or value is None:
            return
        try:
            self.cache.set(key, value)
        except (TypeError, ValueError) as e:
            logger.warning("result_cache_skipped", cache_key=key, error=str(e))
        except StoreUnavailableError as e:
            logger.warning("result_cache_write_failed", cache_key=key, error=str(e))


__all__ = ["BackoffCalculator", "RetryExecutor"]
