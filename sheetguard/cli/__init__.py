"""CLI layer — Typer entry point and commands."""
