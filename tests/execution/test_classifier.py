"""Tests for ErrorClassifier and BackoffCalculator."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from courier.core.errors import (
    CallTimeoutError,
    CircuitOpenError,
    ExternalServiceError,
    HandlerNotFoundError,
    PayloadValidationError,
    PermanentError,
    QuotaExceededError,
    RateLimitedError,
)
from courier.execution.classifier import ErrorClassifier, extract_status_code, parse_retry_after
from courier.execution.models import FailureKind
from courier.execution.retry import BackoffCalculator


class _Response:
    def __init__(self, status_code: int, headers: dict[str, str] | None = None):
        self.status_code = status_code
        self.headers = headers or {}


class _HTTPError(Exception):
    """Shaped like the errors common HTTP clients raise."""

    def __init__(self, status_code: int, headers: dict[str, str] | None = None):
        super().__init__(f"HTTP {status_code}")
        self.response = _Response(status_code, headers)


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier()


class TestStatusCodes:
    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (400, FailureKind.PERMANENT),
            (401, FailureKind.PERMANENT),
            (404, FailureKind.PERMANENT),
            (422, FailureKind.PERMANENT),
            (429, FailureKind.RATE_LIMITED),
            (500, FailureKind.RETRYABLE),
            (502, FailureKind.RETRYABLE),
            (503, FailureKind.RETRYABLE),
        ],
    )
    def test_external_service_error(self, classifier, status, kind):
        classified = classifier.classify(ExternalServiceError("x", status_code=status))
        assert classified.kind is kind
        assert classified.status_code == status

    def test_status_from_response_attribute(self, classifier):
        classified = classifier.classify(_HTTPError(404))
        assert classified.is_permanent
        assert classified.status_code == 404

    def test_retry_after_header_is_hint(self, classifier):
        classified = classifier.classify(_HTTPError(429, {"Retry-After": "17"}))
        assert classified.is_rate_limited
        assert classified.retry_after == 17.0

    def test_extract_status_ignores_non_int(self):
        class Weird(Exception):
            status = "bad"

        assert extract_status_code(Weird()) is None


class TestExceptionTypes:
    def test_timeouts_and_connection_errors_retryable(self, classifier):
        assert classifier.classify(CallTimeoutError(1.0)).is_retryable
        assert classifier.classify(TimeoutError()).is_retryable
        assert classifier.classify(ConnectionRefusedError()).is_retryable

    def test_circuit_open_is_retryable(self, classifier):
        classified = classifier.classify(CircuitOpenError("push", retry_after=5))
        assert classified.is_retryable
        assert classified.retry_after == 5.0

    def test_local_limits_are_rate_limited(self, classifier):
        assert classifier.classify(RateLimitedError(retry_after=3)).is_rate_limited
        quota = classifier.classify(QuotaExceededError(retry_after=100))
        assert quota.is_rate_limited
        assert quota.retry_after == 100.0

    def test_permanent_types(self, classifier):
        assert classifier.classify(PermanentError("no")).is_permanent
        assert classifier.classify(PayloadValidationError("bad")).is_permanent
        assert classifier.classify(HandlerNotFoundError("none")).is_permanent

    def test_unknown_exception_retryable(self, classifier):
        classified = classifier.classify(ValueError("surprise"))
        assert classified.is_retryable
        assert classified.error_type == "ValueError"
        assert classified.message == "surprise"

    def test_empty_message_falls_back_to_type(self, classifier):
        assert classifier.classify(KeyError()).message in {"KeyError", "''"}


class TestRetryAfterParsing:
    def test_seconds(self):
        assert parse_retry_after("120") == 120.0

    def test_http_date(self):
        now = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)
        assert parse_retry_after("Mon, 05 Jan 2026 12:01:00 GMT", now=now) == 60.0

    def test_garbage(self):
        assert parse_retry_after("soon") is None


class TestBackoff:
    def test_exponential_base(self):
        backoff = BackoffCalculator(base_delay=1.0, max_delay=60.0, rng=lambda: 0.0)
        assert [backoff.delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        backoff = BackoffCalculator(base_delay=1.0, max_delay=60.0, rng=lambda: 0.0)
        assert backoff.delay(10) == 60.0

    def test_jitter_added_within_one_second(self):
        backoff = BackoffCalculator(base_delay=1.0, max_delay=60.0, rng=lambda: 0.999)
        assert 60.0 < backoff.delay(10) < 61.0
        assert backoff.base_for(2) == 4.0

    def test_default_rng_bounds(self):
        backoff = BackoffCalculator()
        for _ in range(50):
            assert 2.0 <= backoff.delay(1) < 3.0
