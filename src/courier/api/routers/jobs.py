"""
Jobs router: submit, inspect and cancel jobs.

Endpoints:
    POST /jobs               Submit a job (201; 409 on duplicate idempotency key)
    GET  /jobs               List jobs by status / type
    GET  /jobs/stats         Counts per status
    GET  /jobs/{id}          One job with its failure history
    POST /jobs/{id}/cancel   Cancel a pending job (409 once claimed)
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query

from courier.api.deps import RuntimeDep
from courier.api.errors import handle_error
from courier.api.schemas import PagedResponse, PageMeta, SubmitJobRequest, SuccessResponse

router = APIRouter(prefix="/jobs")


@router.post("", status_code=201, response_model=SuccessResponse[dict[str, Any]])
def submit_job(runtime: RuntimeDep, body: SubmitJobRequest):
    """Validate the payload for ``job_type`` and enqueue it as pending."""
    result = runtime.job_ops.submit(
        body.job_type,
        body.payload,
        idempotency_key=body.idempotency_key,
        max_attempts=body.max_attempts,
        run_at=body.run_at,
        refresh=body.refresh,
    )
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.get("", response_model=PagedResponse[dict[str, Any]])
def list_jobs(
    runtime: RuntimeDep,
    status: str | None = Query(None, description="pending, processing, completed, failed, dead_lettered"),
    job_type: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    result = runtime.job_ops.list_jobs(status=status, job_type=job_type, limit=limit, offset=offset)
    if not result.success:
        return handle_error(result)
    return PagedResponse(
        data=result.data or [],
        page=PageMeta(total=result.total, limit=result.limit, offset=result.offset, has_more=result.has_more),
        elapsed_ms=result.elapsed_ms,
    )


@router.get("/stats", response_model=SuccessResponse[dict[str, int]])
def job_stats(runtime: RuntimeDep):
    result = runtime.job_ops.stats()
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.get("/{job_id}", response_model=SuccessResponse[dict[str, Any]])
def get_job(runtime: RuntimeDep, job_id: str = Path(..., description="Job ID")):
    result = runtime.job_ops.get(job_id)
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.post("/{job_id}/cancel", response_model=SuccessResponse[dict[str, Any]])
def cancel_job(runtime: RuntimeDep, job_id: str = Path(..., description="Job ID")):
    result = runtime.job_ops.cancel(job_id)
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)
