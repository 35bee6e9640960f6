"""
CLI: ``courier jobs``: submit and inspect jobs.
"""

from __future__ import annotations

import json
from datetime import datetime

import typer

from courier.cli.utils import make_runtime, output_paged, output_result

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ["id", "job_type", "status", "attempts", "max_attempts", "next_run_at", "last_error"]


@app.command("enqueue")
def enqueue(
    job_type: str = typer.Argument(..., help="Job type, e.g. calendar:sync"),
    payload: str = typer.Argument("{}", help="Payload as a JSON object"),
    idempotency_key: str | None = typer.Option(None, "--key", "-k", help="Idempotency key"),
    max_attempts: int | None = typer.Option(None, "--max-attempts", min=1),
    run_at: datetime | None = typer.Option(None, "--run-at", help="Earliest run time (UTC)"),
    refresh: bool = typer.Option(False, "--refresh", help="Drop the cached result for this payload first"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Validate a payload and enqueue it.

    Example::

        courier jobs enqueue calendar:sync '{"user_id": "u-1", "organization_id": 7}' --key calendar:u-1
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"payload is not valid JSON: {exc}", param_hint="PAYLOAD") from exc
    if not isinstance(data, dict):
        raise typer.BadParameter("payload must be a JSON object", param_hint="PAYLOAD")

    runtime = make_runtime(database)
    result = runtime.job_ops.submit(
        job_type,
        data,
        idempotency_key=idempotency_key,
        max_attempts=max_attempts,
        run_at=run_at,
        refresh=refresh,
    )
    output_result(result, as_json=json_out, title="Enqueued")


@app.command("show")
def show(
    job_id: str = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a job, including its failure history."""
    runtime = make_runtime(database)
    output_result(runtime.job_ops.get(job_id), as_json=json_out, title=f"Job {job_id}")


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s"),
    job_type: str | None = typer.Option(None, "--type", "-t"),
    limit: int = typer.Option(50, "--limit", "-n", min=1),
    offset: int = typer.Option(0, "--offset", min=0),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List jobs, newest first."""
    runtime = make_runtime(database)
    result = runtime.job_ops.list_jobs(status=status, job_type=job_type, limit=limit, offset=offset)
    output_paged(result, as_json=json_out, title="Jobs", columns=_LIST_COLUMNS)


@app.command("stats")
def stats(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Job counts per status."""
    runtime = make_runtime(database)
    output_result(runtime.job_ops.stats(), as_json=json_out, title="Job Stats")


@app.command("cancel")
def cancel(
    job_id: str = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Cancel a pending job."""
    runtime = make_runtime(database)
    output_result(runtime.job_ops.cancel(job_id), as_json=json_out, title="Cancelled")


@app.command("purge")
def purge(
    older_than_hours: int | None = typer.Option(None, "--hours", min=1, help="Default: retention setting"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete completed and cancelled jobs past the retention window."""
    runtime = make_runtime(database)
    output_result(runtime.job_ops.purge(older_than_hours), as_json=json_out, title="Purge")
