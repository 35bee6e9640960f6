"""
API schemas: request bodies and the shared response envelopes.

Every endpoint returns either :class:`SuccessResponse` (200/201) or
:class:`ProblemDetail` (4xx/5xx). Paged endpoints embed :class:`PageMeta`
alongside the item list.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ProblemDetail(BaseModel):
    """RFC 7807 problem body.

    Error codes:
        - ``NOT_FOUND`` (404): job or dead letter does not exist
        - ``VALIDATION_FAILED`` (400): payload or argument rejected
        - ``CONFLICT`` (409): duplicate idempotency key, already resolved, not cancellable
        - ``UNAVAILABLE`` (503): store unreachable, retry later
        - ``INTERNAL`` (500): unexpected server error
    """

    type: str = Field(default="about:blank")
    title: str = Field(description="Short human-readable error summary")
    status: int = Field(description="HTTP status code")
    code: str = Field(default="INTERNAL", description="Machine-readable error code")
    detail: str = Field(default="")
    instance: str = Field(default="")
    extra: dict[str, Any] = Field(default_factory=dict)


class PageMeta(BaseModel):
    total: int = Field(description="Total items across all pages")
    limit: int = Field(description="Items per page (requested)")
    offset: int = Field(description="Current offset (0-based)")
    has_more: bool = Field(description="True if more pages exist after current")


class SuccessResponse(BaseModel, Generic[T]):
    """Standard success envelope for single-item responses."""

    data: T
    elapsed_ms: float = Field(default=0.0, description="Server-side processing time in milliseconds")
    warnings: list[str] = Field(default_factory=list)


class PagedResponse(BaseModel, Generic[T]):
    """Paged success envelope for list responses."""

    data: list[T]
    page: PageMeta
    elapsed_ms: float = 0.0
    warnings: list[str] = Field(default_factory=list)


# ── Request bodies ───────────────────────────────────────────────────────


class SubmitJobRequest(BaseModel):
    """Body of ``POST /jobs``. ``payload`` is validated against ``job_type``."""

    job_type: str = Field(description="Job type, e.g. 'calendar:sync'")
    payload: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = Field(default=None, max_length=255)
    max_attempts: int | None = Field(default=None, ge=1, le=100)
    run_at: datetime | None = Field(default=None, description="Earliest run time (UTC)")
    refresh: bool = Field(default=False, description="Drop the cached result for this payload first")


class ResolveRequest(BaseModel):
    resolved_by: str | None = Field(default=None, max_length=255)


class ReplayRequest(BaseModel):
    replayed_by: str | None = Field(default=None, max_length=255)
