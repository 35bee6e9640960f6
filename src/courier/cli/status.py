"""
CLI: ``courier quotas`` and ``courier health``.
"""

from __future__ import annotations

import typer

from courier.cli.utils import console, make_runtime, output_result, print_json
from courier.ops.health import HealthStatus

_STATUS_STYLE = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.UNHEALTHY: "red",
}


def quotas(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Used, limit, remaining and reset time of each daily quota."""
    runtime = make_runtime(database)
    output_result(runtime.admin.quota_usage(), as_json=json_out, title="Quotas")


def health(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Queue depth, oldest pending age, open circuits, quotas near limit.

    Exits 1 when the runtime is unhealthy.
    """
    runtime = make_runtime(database)
    report = runtime.health.check()

    if json_out:
        print_json(report.to_dict())
    else:
        style = _STATUS_STYLE[report.status]
        console.print(f"[bold {style}]{report.status.value}[/bold {style}]")
        age = f"{report.oldest_pending_age:.0f}s" if report.oldest_pending_age is not None else "-"
        console.print(f"  [cyan]queue_depth[/cyan]: {report.queue_depth}")
        console.print(f"  [cyan]oldest_pending_age[/cyan]: {age}")
        console.print(f"  [cyan]open_circuits[/cyan]: {', '.join(report.open_circuits) or '-'}")
        console.print(f"  [cyan]quota_near_limit[/cyan]: {', '.join(report.quota_near_limit) or '-'}")
        console.print(f"  [cyan]dead_letters_unresolved[/cyan]: {report.dead_letters_unresolved}")
        if report.error:
            console.print(f"  [red]error[/red]: {report.error}")

    if report.status is HealthStatus.UNHEALTHY:
        raise typer.Exit(code=1)
