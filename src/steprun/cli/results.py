"""
CLI: ``steprun results`` — structured results from a step's log.
"""

from __future__ import annotations

from pathlib import Path

import typer

from steprun.cli.utils import echo_json, fail, print_table
from steprun.core.errors import ExtractionError
from steprun.reconciler.results import extract_results


def results(
    log_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Container log ending in a result array"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Extract the result array a step printed."""
    try:
        found = extract_results(log_file.read_bytes())
    except ExtractionError as e:
        fail(e.message)

    if as_json:
        echo_json([r.to_dict() for r in found])
        return
    print_table(
        [{"name": r.name, "value": r.value, "digest": r.digest} for r in found],
        title="Results",
    )
