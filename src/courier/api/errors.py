"""
Error responses: maps ops-layer error codes to RFC 7807 problem bodies.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from courier.api.schemas import ProblemDetail
from courier.core.logging import get_logger
from courier.ops.result import OperationResult

logger = get_logger(__name__)

# ── Error code → HTTP status mapping ─────────────────────────────────────

ERROR_CODE_TO_STATUS: dict[str, int] = {
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "VALIDATION_FAILED": 400,
    "UNAVAILABLE": 503,
    "INTERNAL": 500,
}


def status_for_error_code(code: str) -> int:
    """Resolve an ops error code to HTTP status, defaulting to 500."""
    return ERROR_CODE_TO_STATUS.get(code, 500)


def problem_response(
    *,
    status: int,
    title: str,
    code: str = "INTERNAL",
    detail: str = "",
    instance: str = "",
    extra: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(
        title=title,
        status=status,
        code=code,
        detail=detail,
        instance=instance,
        extra=extra or {},
    )
    headers = {"Retry-After": "1"} if status == 503 else None
    return JSONResponse(status_code=status, content=body.model_dump(), headers=headers)


def handle_error(result: OperationResult[Any]) -> JSONResponse:
    """Convert a failed ``OperationResult`` into a problem response."""
    code = result.error.code if result.error else "INTERNAL"
    return problem_response(
        status=status_for_error_code(code),
        title=result.error.message if result.error else "Operation failed",
        code=code,
        extra=result.error.details if result.error else None,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: 500 with a problem body."""
    logger.exception("unhandled_api_error", path=request.url.path, error=str(exc))
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail="An unexpected error occurred.",
        instance=str(request.url),
    )
