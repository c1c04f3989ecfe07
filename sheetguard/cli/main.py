"""SheetGuard CLI — Entry point.

Usage:
    sheetguard parse "update cell B5 to 42"
    sheetguard parse - --json < model_output.txt
    sheetguard validate action.json
    sheetguard schema dump [ACTION]
    sheetguard serve
    sheetguard status
"""

from __future__ import annotations

import typer

from sheetguard.cli.commands import actions, schema, server

app = typer.Typer(
    name="sheetguard",
    help="SheetGuard — Guardrail pipeline for LLM-generated spreadsheet actions.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)


app.command("parse")(actions.parse)
app.command("validate")(actions.validate)
app.command("serve")(server.serve)
app.command("status")(server.status)
app.add_typer(schema.app, name="schema")


@app.callback()
def main_callback() -> None:
    pass


if __name__ == "__main__":
    app()
