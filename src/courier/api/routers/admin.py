"""
Admin router: dead letters, circuit breakers, quotas and the result cache.

Endpoints:
    GET  /admin/dlq                          List dead letters (filters: job_type, since, until)
    GET  /admin/dlq/{id}                     Dead letter with full failure history
    POST /admin/dlq/{id}/replay              Re-enqueue as a new job (409 if already resolved)
    POST /admin/dlq/{id}/resolve             Mark handled without replay
    GET  /admin/circuits                     Breaker state per dependency
    POST /admin/circuits/{dependency}/reset  Force a breaker closed
    GET  /admin/quotas                       Daily quota usage per dependency
    GET  /admin/stats                        Job and dead-letter counts
    DELETE /admin/cache/{key}                Drop one cached result
    POST /admin/sweep                        Purge expired cache, window and quota rows
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Path, Query

from courier.api.deps import RuntimeDep
from courier.api.errors import handle_error
from courier.api.schemas import PagedResponse, PageMeta, ReplayRequest, ResolveRequest, SuccessResponse

router = APIRouter(prefix="/admin")


# ── Dead letters ─────────────────────────────────────────────────────────


@router.get("/dlq", response_model=PagedResponse[dict[str, Any]])
def list_dead_letters(
    runtime: RuntimeDep,
    job_type: str | None = Query(None, description="Filter by job type"),
    since: datetime | None = Query(None, description="moved_at >= since"),
    until: datetime | None = Query(None, description="moved_at < until"),
    include_resolved: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """List dead letters, newest first."""
    result = runtime.admin.list_dead_letters(
        job_type=job_type,
        since=since,
        until=until,
        include_resolved=include_resolved,
        limit=limit,
        offset=offset,
    )
    if not result.success:
        return handle_error(result)
    return PagedResponse(
        data=result.data or [],
        page=PageMeta(total=result.total, limit=result.limit, offset=result.offset, has_more=result.has_more),
        elapsed_ms=result.elapsed_ms,
    )


@router.get("/dlq/{dead_letter_id}", response_model=SuccessResponse[dict[str, Any]])
def get_dead_letter(runtime: RuntimeDep, dead_letter_id: str = Path(...)):
    result = runtime.admin.get_dead_letter(dead_letter_id)
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.post("/dlq/{dead_letter_id}/replay", response_model=SuccessResponse[dict[str, Any]])
def replay_dead_letter(
    runtime: RuntimeDep,
    dead_letter_id: str = Path(...),
    body: ReplayRequest | None = Body(None),
):
    """Enqueue a fresh job from the snapshot and resolve the dead letter."""
    result = runtime.admin.replay(dead_letter_id, replayed_by=body.replayed_by if body else None)
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.post("/dlq/{dead_letter_id}/resolve", response_model=SuccessResponse[dict[str, Any]])
def resolve_dead_letter(
    runtime: RuntimeDep,
    dead_letter_id: str = Path(...),
    body: ResolveRequest | None = Body(None),
):
    result = runtime.admin.resolve(dead_letter_id, resolved_by=body.resolved_by if body else None)
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


# ── Circuits & quotas ────────────────────────────────────────────────────


@router.get("/circuits", response_model=SuccessResponse[list[dict[str, Any]]])
def circuit_states(runtime: RuntimeDep):
    result = runtime.admin.circuit_states()
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.post("/circuits/{dependency}/reset", response_model=SuccessResponse[dict[str, Any]])
def reset_circuit(runtime: RuntimeDep, dependency: str = Path(...)):
    result = runtime.admin.reset_circuit(dependency)
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.get("/quotas", response_model=SuccessResponse[list[dict[str, Any]]])
def quota_usage(runtime: RuntimeDep):
    result = runtime.admin.quota_usage()
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.get("/stats", response_model=SuccessResponse[dict[str, Any]])
def queue_stats(runtime: RuntimeDep):
    result = runtime.admin.queue_stats()
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


# ── Result cache & housekeeping ──────────────────────────────────────────


@router.delete("/cache/{cache_key:path}", response_model=SuccessResponse[dict[str, Any]])
def invalidate_cache(runtime: RuntimeDep, cache_key: str = Path(..., description="e.g. score:deal:7")):
    result = runtime.admin.invalidate_cache(cache_key)
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.post("/sweep", response_model=SuccessResponse[dict[str, Any]])
def sweep_expired(runtime: RuntimeDep):
    """Run the housekeeping sweep the worker also runs when idle."""
    result = runtime.admin.sweep_expired()
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)
