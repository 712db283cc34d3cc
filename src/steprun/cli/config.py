"""
CLI: ``steprun config`` — configuration inspection.
"""

from __future__ import annotations

from typing import Any

import typer

from steprun.cli.utils import console, echo_json, print_table
from steprun.core.config import get_settings

app = typer.Typer(no_args_is_help=True)


def _flatten(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{prefix}{key}__"))
        else:
            flat[f"{prefix}{key}"] = value
    return flat


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the effective configuration."""
    settings = get_settings()
    values = _flatten(settings.model_dump(mode="json"))

    if format == "json":
        echo_json(settings.model_dump(mode="json"))
        return

    if format == "env":
        for key, value in sorted(values.items()):
            typer.echo(f"STEPRUN_{key.upper()}={value}")
        return

    print_table([{"setting": k, "value": v} for k, v in values.items()], title="Settings")
    console.print(f"[bold]Default timeout:[/bold] {settings.default_timeout}")
