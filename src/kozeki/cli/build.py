"""kozeki build: render the source tree into the destination.

Usage:
  kozeki build                 incremental when a completed build exists
  kozeki build site.yaml --full
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from kozeki.cli._common import DEFAULT_CONFIG, build_errors, console, load_or_exit, setup_logging
from kozeki.client import Client


def build_cmd(
    config: Annotated[
        Path,
        typer.Argument(help="Path to kozeki.yaml (or its directory)."),
    ] = DEFAULT_CONFIG,
    full: Annotated[
        bool,
        typer.Option("--full", help="Discard the state store and rebuild everything."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log every phase and event."),
    ] = False,
) -> None:
    """Build items, collections and collections.json."""
    setup_logging(verbose)
    cfg = load_or_exit(config)

    with build_errors(), Client(cfg) as client:
        build = client.build(incremental_build=not full)

    kind = "Full" if build.full_build else "Incremental"
    console.print(
        f"[green]✓[/] {kind} build #{build.build_id}: "
        f"[bold]{len(build.updated_files)}[/] written, "
        f"[bold]{len(build.deleted_files)}[/] deleted"
    )
