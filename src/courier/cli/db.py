"""
CLI: ``courier db``: database management commands.
"""

from __future__ import annotations

import typer

from courier.cli.utils import console, load_settings, print_json
from courier.core.errors import StoreUnavailableError
from courier.core.schema import CORE_TABLES
from courier.core.store import SqliteStore

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Create tables and indexes (safe to re-run)."""
    settings = load_settings(database)
    try:
        store = SqliteStore(settings.database_path)
        store.initialize()
        store.close()
    except StoreUnavailableError as exc:
        console.print(f"[red]Database init failed: {exc.message}[/red]")
        raise typer.Exit(code=1) from exc

    if json_out:
        print_json({"database": settings.database_path, "tables": list(CORE_TABLES.values())})
        return
    console.print(f"[green]Initialized[/green] {settings.database_path}")
    for table in CORE_TABLES.values():
        console.print(f"  [cyan]{table}[/cyan]")
