"""Job execution: queue, workers, breakers, cost gates and the dead-letter queue.

    payloads.py         Discriminated union of job payloads
    models.py           Job, DeadLetter, FailureRecord, JobStatus
    classifier.py       Exception → permanent / retryable / rate_limited
    circuit_breaker.py  Store-backed breaker per dependency
    rate_limit.py       Sliding window, daily quota, result cache
    timeout.py          Per-call timeout
    retry.py            BackoffCalculator and RetryExecutor
    jobs.py             JobStore (enqueue, claim, complete, fail)
    dlq.py              DeadLetterStore (inspect, replay, resolve)
    registry.py         job_type → handler
    worker.py           Poll loop and thread pool
"""

from courier.execution.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from courier.execution.classifier import ClassifiedError, ErrorClassifier
from courier.execution.dlq import DeadLetterFilter, DeadLetterStore
from courier.execution.jobs import JobStore
from courier.execution.models import DeadLetter, FailureKind, FailureRecord, Job, JobStatus
from courier.execution.rate_limit import RateLimiter, ResultCache
from courier.execution.registry import HandlerRegistry
from courier.execution.retry import BackoffCalculator, RetryExecutor
from courier.execution.worker import Worker

__all__ = [
    "BackoffCalculator",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "ClassifiedError",
    "DeadLetter",
    "DeadLetterFilter",
    "DeadLetterStore",
    "ErrorClassifier",
    "FailureKind",
    "FailureRecord",
    "HandlerRegistry",
    "Job",
    "JobStatus",
    "JobStore",
    "RateLimiter",
    "ResultCache",
    "RetryExecutor",
    "Worker",
]
