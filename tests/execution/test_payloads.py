"""Tests for the job payload union."""

from __future__ import annotations

import pytest

from courier.core.errors import PayloadValidationError
from courier.execution.payloads import (
    PAYLOAD_TYPES,
    CalculateLeadScorePayload,
    SendMessagePayload,
    SyncCalendarPayload,
    TranscribeAudioPayload,
    dependency_for,
    parse_payload,
)


class TestVariants:
    def test_every_job_type_registered(self):
        assert set(PAYLOAD_TYPES) == {
            "message:send",
            "calendar:sync",
            "transcribe:audio",
            "leadScore:calculate",
            "file:upload",
            "notification:dispatch",
        }

    @pytest.mark.parametrize(
        ("job_type", "dependency"),
        [
            ("message:send", "messaging"),
            ("calendar:sync", "calendar"),
            ("transcribe:audio", "inference"),
            ("leadScore:calculate", "inference"),
            ("file:upload", "object_store"),
            ("notification:dispatch", "push"),
        ],
    )
    def test_dependency_per_job_type(self, job_type, dependency):
        assert dependency_for(job_type) == dependency

    def test_quota_sensitive_variants(self):
        sensitive = {name for name, cls in PAYLOAD_TYPES.items() if cls.quota_sensitive}
        assert sensitive == {"transcribe:audio", "leadScore:calculate"}


class TestParse:
    def test_parses_to_variant(self):
        payload = parse_payload("calendar:sync", {"user_id": "u-1", "organization_id": 3})
        assert isinstance(payload, SyncCalendarPayload)
        assert payload.job_type == "calendar:sync"

    def test_lead_score_cache_key(self):
        payload = parse_payload("leadScore:calculate", {"entity_type": "contact", "entity_id": 42, "organization_id": 1})
        assert isinstance(payload, CalculateLeadScorePayload)
        assert payload.cache_key() == "score:contact:42"

    def test_other_variants_have_no_cache_key(self):
        payload = parse_payload("transcribe:audio", {"audio_url": "s3://bucket/a.ogg"})
        assert isinstance(payload, TranscribeAudioPayload)
        assert payload.cache_key() is None
        assert payload.quota_identifier() == "global"

    def test_unknown_job_type(self):
        with pytest.raises(PayloadValidationError, match="Unknown job type"):
            parse_payload("fax:send", {})

    def test_missing_field(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            parse_payload("message:send", {"organization_id": 1, "conversation_id": 2, "body": "hi"})
        assert any("recipient" in e for e in exc_info.value.context.metadata["errors"])

    def test_extra_field_rejected(self):
        with pytest.raises(PayloadValidationError):
            parse_payload("calendar:sync", {"user_id": "u-1", "organization_id": 1, "surprise": True})

    def test_literal_channel(self):
        with pytest.raises(PayloadValidationError):
            parse_payload(
                "message:send",
                {"organization_id": 1, "conversation_id": 2, "channel": "fax", "recipient": "x", "body": "hi"},
            )

    def test_negative_size_rejected(self):
        with pytest.raises(PayloadValidationError):
            parse_payload("file:upload", {"file_id": 1, "storage_key": "k", "size_bytes": -1})

    def test_model_instance_passes_through(self):
        model = SendMessagePayload(organization_id=1, conversation_id=2, recipient="x", body="hi")
        assert parse_payload("message:send", model) is model

    def test_model_of_wrong_variant(self):
        model = SyncCalendarPayload(user_id="u-1", organization_id=1)
        with pytest.raises(PayloadValidationError):
            parse_payload("message:send", model)

    def test_payloads_are_frozen(self):
        payload = parse_payload("calendar:sync", {"user_id": "u-1", "organization_id": 1})
        with pytest.raises(Exception):
            payload.user_id = "u-2"
