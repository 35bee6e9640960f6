"""
CLI utility helpers: runtime construction and output formatting.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from courier.core.settings import CourierSettings, get_settings
from courier.ops.result import OperationResult, PagedResult
from courier.runtime import Runtime, create_runtime

console = Console()
err_console = Console(stderr=True)


# ── Runtime helper ───────────────────────────────────────────────────────


def load_settings(database: str | None = None) -> CourierSettings:
    """Process settings, with ``--database`` taking precedence."""
    settings = get_settings()
    if database:
        settings = settings.model_copy(update={"database_path": database})
    return settings


def make_runtime(database: str | None = None) -> Runtime:
    """Build a runtime for one CLI command."""
    return create_runtime(load_settings(database))


# ── Output helpers ───────────────────────────────────────────────────────


def _fail(result: OperationResult[Any]) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    code = err.code if err else "ERROR"
    err_console.print(f"[bold red]Error[/bold red] ({code}): {msg}")
    raise typer.Exit(code=1)


def output_result(
    result: OperationResult[Any],
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render an ``OperationResult`` to the terminal (exit 1 on failure)."""
    if not result.success:
        _fail(result)

    data = result.data

    if as_json:
        print_json(data)
        return

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(data or {}, title=title)


def output_paged(
    result: PagedResult[Any],
    *,
    as_json: bool = False,
    title: str = "",
    columns: list[str] | None = None,
) -> None:
    """Render a ``PagedResult`` with pagination info."""
    if not result.success:
        _fail(result)

    items = result.data or []

    if as_json:
        print_json(
            {
                "items": items,
                "total": result.total,
                "limit": result.limit,
                "offset": result.offset,
                "has_more": result.has_more,
            }
        )
        return

    if not items:
        console.print("[dim]No items.[/dim]")
        return

    _print_table(items, title=title, columns=columns)
    console.print(f"\n[dim]Showing {len(items)} of {result.total} (offset {result.offset})[/dim]")


def print_json(data: Any) -> None:
    """Write ``data`` as indented JSON on stdout."""
    typer.echo(json.dumps(data, default=str, indent=2))


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list[dict[str, Any]], *, title: str = "", columns: list[str] | None = None) -> None:
    """Render a list of dicts as a Rich table."""
    cols = columns or list(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in cols:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*(_cell(item.get(col)) for col in cols))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {_cell(v)}")


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)
