"""CLI — Run the guardrail on raw text and validate action files."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

console = Console()


def _read_text(source: str) -> str:
    return sys.stdin.read() if source == "-" else source


def parse(
    text: str = typer.Argument(help="Raw model output. Use - to read stdin."),
    expected_action: str | None = typer.Option(
        None, "--expected-action", "-a", help="Action kind to assume when none is stated."
    ),
    header: list[str] = typer.Option(
        [], "--header", "-H", help="Known column header (repeatable). Filters addRow data."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON."),
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
) -> None:
    """Run the guardrail pipeline on TEXT and print the resulting action."""
    import asyncio

    from pydantic import ValidationError

    from sheetguard.config import Settings
    from sheetguard.logging import configure_logging
    from sheetguard.pipeline.orchestrator import build_pipeline
    from sheetguard.protocol.models import PipelineResult, RequestContext

    settings = Settings.load(config_file=config)
    configure_logging(
        level=settings.logging.level,
        format=settings.logging.format,
        log_file=str(settings.logging.file) if settings.logging.file else None,
    )

    try:
        context = RequestContext(expected_action=expected_action, headers=header or None)
    except ValidationError:
        console.print(f"[red]Unknown action: {expected_action}[/red]")
        raise typer.Exit(2)

    async def _run() -> PipelineResult:
        pipeline = build_pipeline(settings)
        try:
            return await pipeline.run(_read_text(text), context)
        finally:
            await pipeline.close()

    result = asyncio.run(_run())

    if as_json:
        typer.echo(json.dumps(result.to_wire(), indent=2, ensure_ascii=False))
        raise typer.Exit(0 if result.success else 1)

    if result.success:
        console.print(f"[green]OK[/green] (source: {result.source.value if result.source else '-'})")
        console.print(Syntax(json.dumps(result.action, indent=2, ensure_ascii=False), "json"))
    else:
        console.print(f"[red]FAILED[/red] {result.error or ''}")
        for error in result.validation.errors:
            console.print(f"  [red]-[/red] {error}")

    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    for suggestion in result.suggestions:
        console.print(f"[cyan]suggestion:[/cyan] {suggestion}")

    if result.attempts:
        table = Table(title="Recovery attempts")
        table.add_column("Method", style="cyan")
        table.add_column("Result")
        table.add_column("ms", justify="right")
        table.add_column("Error")
        for attempt in result.attempts:
            table.add_row(
                attempt.method.value,
                "[green]ok[/green]" if attempt.success else "[red]failed[/red]",
                f"{attempt.duration_ms:.1f}",
                attempt.error or "",
            )
        console.print(table)

    if not result.success:
        raise typer.Exit(1)


def validate(
    action_file: Path = typer.Argument(help="JSON file holding one action. Use - for stdin."),
) -> None:
    """Validate an action file against its schema."""
    from sheetguard.protocol.validator import SchemaValidator

    if str(action_file) == "-":
        raw = sys.stdin.read()
    else:
        if not action_file.exists():
            console.print(f"[red]File not found: {action_file}[/red]")
            raise typer.Exit(1)
        raw = action_file.read_text()

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid JSON: {exc}[/red]")
        raise typer.Exit(1)

    result = SchemaValidator().validate(data)
    if result.valid:
        console.print(f"[green]Valid {result.action} action[/green]")
    else:
        console.print(f"[red]Invalid action[/red] ({result.action or 'unknown kind'})")
        for error in result.errors:
            console.print(f"  [red]-[/red] {error}")
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    for suggestion in result.suggestions:
        console.print(f"[cyan]suggestion:[/cyan] {suggestion}")

    if not result.valid:
        raise typer.Exit(1)
