"""kozeki watch: rebuild incrementally whenever the source tree changes."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Annotated

import typer

from kozeki.cli._common import DEFAULT_CONFIG, build_errors, console, load_or_exit, setup_logging
from kozeki.client import Client


def watch_cmd(
    config: Annotated[
        Path,
        typer.Argument(help="Path to kozeki.yaml (or its directory)."),
    ] = DEFAULT_CONFIG,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log every phase and event."),
    ] = False,
) -> None:
    """Run one build, then rebuild on every source change until Ctrl-C."""
    setup_logging(verbose)
    cfg = load_or_exit(config)

    with build_errors(), Client(cfg) as client:
        client.build()
        handle = client.watch()
        console.print(f"[bold]Watching[/] {cfg.source_directory} [dim](Ctrl-C to stop)[/]")
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            console.print("[dim]Stopping…[/]")
        finally:
            handle.stop()
