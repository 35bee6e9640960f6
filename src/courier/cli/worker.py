"""
CLI: ``courier worker``: run the background job worker.
"""

from __future__ import annotations

import typer

from courier.cli.utils import console, load_settings
from courier.runtime import create_runtime

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    workers: int | None = typer.Option(None, "--workers", "-w", min=1, help="Concurrent job threads"),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds between idle polls"),
    batch_size: int | None = typer.Option(None, "--batch-size", min=1, help="Max jobs claimed per poll"),
    handlers: list[str] | None = typer.Option(
        None, "--handlers", help="Handler registration target 'pkg.module:register' (repeatable)"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Start the worker: claim due jobs and run them until SIGINT/SIGTERM.

    Example::

        courier worker start --workers 4 --poll-interval 2 --handlers myapp.jobs:register
    """
    overrides: dict = {}
    if workers is not None:
        overrides["worker_concurrency"] = workers
    if poll_interval is not None:
        overrides["poll_interval"] = poll_interval
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    settings = load_settings(database)
    if handlers:
        overrides["handler_modules"] = [*settings.handler_modules, *handlers]
    settings = settings.model_copy(update=overrides)

    try:
        runtime = create_runtime(settings)
    except (ImportError, AttributeError) as exc:
        console.print(f"[red]Cannot load handlers: {exc}[/red]")
        raise typer.Exit(code=1) from exc

    job_types = [h["job_type"] for h in runtime.registry.list_handlers()]
    console.print(
        f"[bold green]Starting courier worker[/bold green] "
        f"(threads={settings.worker_concurrency}, poll={settings.poll_interval}s, "
        f"batch={settings.batch_size}, handlers={', '.join(job_types) or 'none'})"
    )
    try:
        runtime.worker.start()
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
