"""
Root Typer application for the ``courier`` CLI.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

from courier import __version__
from courier.core.logging import configure_logging
from courier.core.settings import get_settings

app = Typer(
    name="courier",
    help="courier: durable jobs with retries, circuit breakers and a dead-letter queue.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"courier {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override COURIER_LOG_LEVEL."),
) -> None:
    """courier CLI: jobs, workers, dead letters, circuits and quotas."""
    settings = get_settings()
    configure_logging(level=log_level or settings.log_level, json_format=settings.json_logs, stream=sys.stderr)


# ── Sub-command registration ─────────────────────────────────────────────

from courier.cli.cache import app as cache_app  # noqa: E402
from courier.cli.circuits import app as circuits_app  # noqa: E402
from courier.cli.db import app as db_app  # noqa: E402
from courier.cli.dlq import app as dlq_app  # noqa: E402
from courier.cli.jobs import app as jobs_app  # noqa: E402
from courier.cli.serve import serve  # noqa: E402
from courier.cli.status import health, quotas  # noqa: E402
from courier.cli.worker import app as worker_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(jobs_app, name="jobs", help="Submit and inspect jobs.")
app.add_typer(dlq_app, name="dlq", help="Dead-letter queue.")
app.add_typer(circuits_app, name="circuits", help="Circuit breakers per dependency.")
app.add_typer(cache_app, name="cache", help="Result cache and housekeeping.")
app.add_typer(worker_app, name="worker", help="Background job worker.")
app.command("quotas", help="Daily quota usage per dependency.")(quotas)
app.command("health", help="Runtime health report.")(health)
app.command("serve", help="Start the HTTP API.")(serve)
