"""CLI — ``serve`` and ``status``: run the normalization service or ask a running one how it is."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import httpx
import typer
from rich.console import Console
from rich.table import Table

from sheetguard.config import Settings

console = Console()

ConfigOption = Annotated[
    Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
]


def serve(
    config: ConfigOption = None,
    host: Annotated[str | None, typer.Option(help="Bind address (default: server.host).")] = None,
    port: Annotated[int | None, typer.Option(help="Port (default: server.port).")] = None,
) -> None:
    """Run the normalization service (POST /normalize, POST /validate, GET /health)."""
    import uvicorn

    from sheetguard.api.server import create_app

    settings = Settings.load(config_file=config)
    overrides = {k: v for k, v in {"host": host, "port": port}.items() if v is not None}
    if overrides:
        settings.server = settings.server.model_copy(update=overrides)

    bind = f"{settings.server.host}:{settings.server.port}"
    auth = "token required" if settings.server.api_token else "no auth"
    console.print(f"[bold green]SheetGuard listening on {bind}[/bold green] ({auth})")

    # uvicorn would otherwise install its own handlers over configure_logging().
    uvicorn.run(
        create_app(settings=settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )


def status(
    config: ConfigOption = None,
    url: Annotated[
        str | None, typer.Option(help="Service base URL (default: from server.host/port).")
    ] = None,
) -> None:
    """Query ``GET /health`` of a running service."""
    if url is None:
        settings = Settings.load(config_file=config)
        url = f"http://{settings.server.host}:{settings.server.port}"

    try:
        resp = httpx.get(f"{url.rstrip('/')}/health", timeout=5.0)
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        console.print(f"[red]Service at {url} unreachable: {exc}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"SheetGuard at {url}", show_header=False)
    table.add_column(style="cyan")
    table.add_column(style="green")
    for key, value in data.items():
        table.add_row(key, ", ".join(map(str, value)) if isinstance(value, list) else str(value))
    console.print(table)
