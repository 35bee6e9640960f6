"""
FastAPI dependency injection.

The :class:`~courier.runtime.Runtime` is created once by ``create_app`` and
stored on ``app.state``; routers receive it through :data:`RuntimeDep`::

    @router.get("/things")
    def list_things(runtime: RuntimeDep):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from courier.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


RuntimeDep = Annotated[Runtime, Depends(get_runtime)]
