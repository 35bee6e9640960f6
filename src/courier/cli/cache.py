"""
CLI: ``courier cache``: result cache and housekeeping.
"""

from __future__ import annotations

import typer

from courier.cli.utils import make_runtime, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("invalidate")
def invalidate(
    cache_key: str = typer.Argument(..., help="Cache key, e.g. score:deal:7"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Drop one cached result so the next job calls the dependency again."""
    runtime = make_runtime(database)
    output_result(runtime.admin.invalidate_cache(cache_key), as_json=json_out, title="Cache")


@app.command("sweep")
def sweep(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Purge expired cache entries, stale rate-limit events and old quota counters."""
    runtime = make_runtime(database)
    output_result(runtime.admin.sweep_expired(), as_json=json_out, title="Sweep")
