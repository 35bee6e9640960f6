"""Tests for timestamp helpers and logging context."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import structlog

from courier.core.logging import LogContext, bind_context, clear_context
from courier.core.timestamps import from_iso, generate_ulid, new_id, next_utc_midnight, to_iso, utc_day


class TestIso:
    def test_fixed_precision_utc(self):
        assert to_iso(datetime(2026, 1, 1, tzinfo=UTC)) == "2026-01-01T00:00:00.000000+00:00"

    def test_converts_other_offsets_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        assert to_iso(datetime(2026, 1, 1, 2, 0, tzinfo=plus_two)) == "2026-01-01T00:00:00.000000+00:00"

    def test_naive_treated_as_utc(self):
        assert to_iso(datetime(2026, 1, 1)) == "2026-01-01T00:00:00.000000+00:00"

    def test_lexical_order_is_chronological(self):
        a = to_iso(datetime(2026, 1, 1, 9, 59, 59, 999999, tzinfo=UTC))
        b = to_iso(datetime(2026, 1, 1, 10, 0, tzinfo=UTC))
        assert a < b

    def test_round_trip_and_none(self):
        dt = datetime(2026, 3, 4, 5, 6, 7, 890, tzinfo=UTC)
        assert from_iso(to_iso(dt)) == dt
        assert to_iso(None) is None
        assert from_iso(None) is None


class TestDays:
    def test_utc_day(self):
        assert utc_day(datetime(2026, 1, 5, 23, 59, tzinfo=UTC)) == "2026-01-05"

    def test_next_midnight(self):
        assert next_utc_midnight(datetime(2026, 1, 31, 0, 0, 1, tzinfo=UTC)) == datetime(2026, 2, 1, tzinfo=UTC)


class TestIds:
    def test_new_id_unique(self):
        assert len({new_id() for _ in range(100)}) == 100

    def test_ulid_shape(self):
        ulid = generate_ulid()
        assert len(ulid) == 26


class TestLogContext:
    def test_scoped_binding(self):
        clear_context()
        bind_context(request_id="r-1")
        with LogContext(job_id="j-1", worker_id="w-1"):
            ctx = structlog.contextvars.get_contextvars()
            assert ctx["job_id"] == "j-1"
            assert ctx["request_id"] == "r-1"
        ctx = structlog.contextvars.get_contextvars()
        assert "job_id" not in ctx
        assert ctx["request_id"] == "r-1"
        clear_context()
