"""
Health router.

    GET /health       Runtime health report (503 when unhealthy)
    GET /health/live  Liveness probe, always 200
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from courier import __version__
from courier.api.deps import RuntimeDep
from courier.ops.health import HealthStatus

router = APIRouter(prefix="/health")


@router.get("")
def health(runtime: RuntimeDep) -> JSONResponse:
    """Queue depth, oldest pending age, open circuits and quotas near their limit."""
    report = runtime.health.check()
    body = {**report.to_dict(), "version": __version__}
    code = 503 if report.status is HealthStatus.UNHEALTHY else 200
    return JSONResponse(content=body, status_code=code)


@router.get("/live")
def liveness() -> dict[str, str]:
    return {"status": "alive"}
