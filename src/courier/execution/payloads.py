"""Typed job payloads.

Each job kind has one pydantic model, discriminated on ``job_type``. A payload
is validated when the job is enqueued, so a handler never sees ad-hoc data.
Every variant also declares which external dependency its handler calls and
whether that call counts against a cost quota.

Example:
    >>> payload = parse_payload("leadScore:calculate",
    ...     {"entity_type": "deal", "entity_id": 7, "organization_id": 1})
    >>> payload.dependency, payload.quota_sensitive, payload.cache_key()
    ('inference', True, 'score:deal:7')
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from courier.core.errors import PayloadValidationError


class JobPayload(BaseModel):
    """Base for all payload variants."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    dependency: ClassVar[str]
    quota_sensitive: ClassVar[bool] = False

    job_type: str

    def cache_key(self) -> str | None:
        """Semantic key for caching the call result, if the result is reusable."""
        return None

    def quota_identifier(self) -> str:
        """Identifier the sliding-window limit is applied to."""
        return "global"


class SendMessagePayload(JobPayload):
    dependency: ClassVar[str] = "messaging"

    job_type: Literal["message:send"] = "message:send"
    organization_id: int
    conversation_id: int
    channel: Literal["whatsapp", "email", "sms"] = "whatsapp"
    recipient: str = Field(min_length=1)
    body: str = Field(min_length=1)


class SyncCalendarPayload(JobPayload):
    dependency: ClassVar[str] = "calendar"

    job_type: Literal["calendar:sync"] = "calendar:sync"
    user_id: str = Field(min_length=1)
    organization_id: int


class TranscribeAudioPayload(JobPayload):
    dependency: ClassVar[str] = "inference"
    quota_sensitive: ClassVar[bool] = True

    job_type: Literal["transcribe:audio"] = "transcribe:audio"
    audio_url: str = Field(min_length=1)
    language: str | None = None
    file_id: int | None = None
    message_id: int | None = None


class CalculateLeadScorePayload(JobPayload):
    dependency: ClassVar[str] = "inference"
    quota_sensitive: ClassVar[bool] = True

    job_type: Literal["leadScore:calculate"] = "leadScore:calculate"
    entity_type: Literal["contact", "deal"]
    entity_id: int
    organization_id: int

    def cache_key(self) -> str:
        return f"score:{self.entity_type}:{self.entity_id}"


class UploadFilePayload(JobPayload):
    dependency: ClassVar[str] = "object_store"

    job_type: Literal["file:upload"] = "file:upload"
    file_id: int
    storage_key: str = Field(min_length=1)
    content_type: str = "application/octet-stream"
    size_bytes: int = Field(ge=0)


class DispatchNotificationPayload(JobPayload):
    dependency: ClassVar[str] = "push"

    job_type: Literal["notification:dispatch"] = "notification:dispatch"
    user_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    body: str = ""
    data: dict[str, str] = Field(default_factory=dict)


AnyPayload = Annotated[
    SendMessagePayload
    | SyncCalendarPayload
    | TranscribeAudioPayload
    | CalculateLeadScorePayload
    | UploadFilePayload
    | DispatchNotificationPayload,
    Field(discriminator="job_type"),
]

_ADAPTER: TypeAdapter[Any] = TypeAdapter(AnyPayload)

PAYLOAD_TYPES: dict[str, type[JobPayload]] = {
    cls.model_fields["job_type"].default: cls
    for cls in (
        SendMessagePayload,
        SyncCalendarPayload,
        TranscribeAudioPayload,
        CalculateLeadScorePayload,
        UploadFilePayload,
        DispatchNotificationPayload,
    )
}


def parse_payload(job_type: str, data: dict[str, Any] | JobPayload) -> JobPayload:
    """Validate ``data`` as the payload variant for ``job_type``.

    Raises:
        PayloadValidationError: unknown job type, a model of the wrong
            variant, or data that does not match the variant's schema.
    """
    if job_type not in PAYLOAD_TYPES:
        raise PayloadValidationError(f"Unknown job type: {job_type}")
    if isinstance(data, JobPayload):
        if data.job_type != job_type:
            raise PayloadValidationError(f"Payload for {data.job_type} submitted as {job_type}")
        return data
    try:
        return _ADAPTER.validate_python({**data, "job_type": job_type})
    except ValidationError as e:
        raise PayloadValidationError(
            f"Invalid payload for {job_type}: {e.error_count()} error(s)",
            cause=e,
        ).with_context(
            job_type=job_type,
            errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
        )


def dependency_for(job_type: str) -> str:
    """Dependency targeted by ``job_type``."""
    try:
        return PAYLOAD_TYPES[job_type].dependency
    except KeyError:
        raise PayloadValidationError(f"Unknown job type: {job_type}") from None


__all__ = [
    "PAYLOAD_TYPES",
    "AnyPayload",
    "CalculateLeadScorePayload",
    "DispatchNotificationPayload",
    "JobPayload",
    "SendMessagePayload",
    "SyncCalendarPayload",
    "TranscribeAudioPayload",
    "UploadFilePayload",
    "dependency_for",
    "parse_payload",
]
