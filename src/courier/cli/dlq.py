"""
CLI: ``courier dlq``: dead-letter queue commands.
"""

from __future__ import annotations

from datetime import datetime

import typer

from courier.cli.utils import make_runtime, output_paged, output_result

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ["id", "job_type", "original_job_id", "moved_at", "resolved", "last_error"]


@app.command("list")
def list_dead_letters(
    job_type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    since: datetime | None = typer.Option(None, "--since", help="moved_at >= since"),
    until: datetime | None = typer.Option(None, "--until", help="moved_at < until"),
    include_resolved: bool = typer.Option(False, "--all", help="Include resolved entries"),
    limit: int = typer.Option(50, "--limit", "-n", min=1),
    offset: int = typer.Option(0, "--offset", min=0),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List dead-letter entries."""
    runtime = make_runtime(database)
    result = runtime.admin.list_dead_letters(
        job_type=job_type,
        since=since,
        until=until,
        include_resolved=include_resolved,
        limit=limit,
        offset=offset,
    )
    output_paged(result, as_json=json_out, title="Dead Letters", columns=_LIST_COLUMNS)


@app.command("show")
def show(
    dead_letter_id: str = typer.Argument(..., help="Dead-letter entry ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one entry with its full failure history."""
    runtime = make_runtime(database)
    output_result(runtime.admin.get_dead_letter(dead_letter_id), as_json=json_out, title="Dead Letter")


@app.command("replay")
def replay(
    dead_letter_id: str = typer.Argument(..., help="Dead-letter entry ID"),
    replayed_by: str | None = typer.Option(None, "--by", help="Operator name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Re-enqueue a dead letter as a new job."""
    runtime = make_runtime(database)
    output_result(runtime.admin.replay(dead_letter_id, replayed_by=replayed_by), as_json=json_out, title="Replay")


@app.command("resolve")
def resolve(
    dead_letter_id: str = typer.Argument(..., help="Dead-letter entry ID"),
    resolved_by: str | None = typer.Option(None, "--by", help="Operator name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Mark a dead letter handled without replaying it."""
    runtime = make_runtime(database)
    output_result(runtime.admin.resolve(dead_letter_id, resolved_by=resolved_by), as_json=json_out, title="Resolve")


@app.command("purge")
def purge(
    older_than_days: int | None = typer.Option(None, "--days", min=1, help="Default: retention setting"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete resolved entries older than N days."""
    runtime = make_runtime(database)
    output_result(runtime.admin.purge_dead_letters(older_than_days), as_json=json_out, title="Purge")
