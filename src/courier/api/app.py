"""
FastAPI application factory.

``create_app()`` wires middleware, routers and error handlers around one
:class:`~courier.runtime.Runtime`. Routers never build components
themselves; they read the runtime from ``app.state`` via
:mod:`courier.api.deps`.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from courier import __version__
from courier.api.errors import unhandled_exception_handler
from courier.api.middleware import RequestIDMiddleware, TimingMiddleware
from courier.api.routers import admin, health, jobs
from courier.core.logging import get_logger
from courier.runtime import Runtime, create_runtime

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("api_starting", version=app.version, database=app.state.runtime.settings.database_path)
    yield
    logger.info("api_stopping")


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Build the courier API.

    Args:
        runtime: Components to serve. Built from settings when ``None``;
            tests pass a runtime on an in-memory store with a fake clock.
    """
    runtime = runtime or create_runtime()

    app = FastAPI(title="courier", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    # ── Middleware (outermost → innermost) ────────────────────────────
    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    app.include_router(health.router, tags=["health"])
    app.include_router(jobs.router, tags=["jobs"])
    app.include_router(admin.router, tags=["admin"])

    return app
