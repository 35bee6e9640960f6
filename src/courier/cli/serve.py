"""
CLI: ``courier serve``: start the HTTP API.
"""

from __future__ import annotations

import typer
import uvicorn

from courier.cli.utils import console, make_runtime


def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address (default: COURIER_HOST)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port (default: COURIER_PORT)"),
    with_worker: bool = typer.Option(False, "--with-worker", help="Also run a worker in this process"),
    log_level: str = typer.Option("info", "--log-level"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Start the courier REST API server."""
    from courier.api import create_app

    runtime = make_runtime(database)
    bind_host = host or runtime.settings.host
    bind_port = port or runtime.settings.port

    if with_worker:
        runtime.worker.start_background()

    console.print(f"[bold green]Starting courier API[/bold green] on {bind_host}:{bind_port}")
    try:
        uvicorn.run(create_app(runtime), host=bind_host, port=bind_port, log_level=log_level)
    finally:
        if with_worker:
            runtime.worker.stop()
