"""CLI — Schema inspection and export commands."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

app = typer.Typer(help="Inspect and export the action schemas.")
console = Console()


@app.command("dump")
def dump_schema(
    action: str | None = typer.Argument(
        default=None, help="Dump the schema of one action. Dumps all if not specified."
    ),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output file path."),
) -> None:
    """Dump the action JSON Schema to stdout or a file."""
    from sheetguard.protocol.schema import get_schema_registry

    registry = get_schema_registry()

    if action and action not in registry:
        console.print(f"[red]Unknown action: {action}[/red]")
        console.print(f"Valid actions: {', '.join(registry.names())}")
        raise typer.Exit(1)

    json_str = json.dumps(registry.to_json_schema(action), indent=2)

    if output:
        output.write_text(json_str)
        console.print(f"[green]Schema written to {output}[/green]")
    else:
        console.print(Syntax(json_str, "json"))


@app.command("list")
def list_actions() -> None:
    """List action kinds with their required fields."""
    from sheetguard.protocol.schema import get_schema_registry

    registry = get_schema_registry()
    table = Table(title="Actions")
    table.add_column("Action", style="cyan")
    table.add_column("Required", style="green")
    table.add_column("Description")
    for name in registry.names():
        schema = registry.get(name)
        if schema is None:
            continue
        required = [
            f"{f.name}*" if f.contextual else f.name for f in schema.fields if f.required
        ]
        table.add_row(name, ", ".join(required), schema.description)
    console.print(table)
    console.print("[dim]* resolved from the active selection when omitted[/dim]")
