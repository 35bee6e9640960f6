"""
CLI: ``courier circuits``: circuit breaker state per dependency.
"""

from __future__ import annotations

import typer

from courier.cli.utils import make_runtime, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_circuits(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show state, failure count and opened_at for every dependency."""
    runtime = make_runtime(database)
    output_result(runtime.admin.circuit_states(), as_json=json_out, title="Circuits")


@app.command("reset")
def reset(
    dependency: str = typer.Argument(..., help="Dependency name, e.g. inference"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Force a breaker closed and clear its failure count."""
    runtime = make_runtime(database)
    output_result(runtime.admin.reset_circuit(dependency), as_json=json_out, title=f"Circuit {dependency}")
