"""
Root Typer application for the steprun CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from steprun import __version__
from steprun.cli.config import app as config_app
from steprun.cli.render import render
from steprun.cli.results import results
from steprun.core.logging import configure_logging

app = Typer(
    name="steprun",
    help="steprun — run sequential-step tasks as single pods.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"steprun {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level for diagnostics."),
) -> None:
    """steprun CLI — render pods, read step results, inspect configuration."""
    configure_logging(level=log_level, json_format=False)


# ── Sub-commands ─────────────────────────────────────────────────────────

app.command("render")(render)
app.command("results")(results)
app.add_typer(config_app, name="config", help="Configuration inspection.")
