"""Kozeki CLI entry point."""

from __future__ import annotations

from typing import Annotated

import typer

from kozeki.build import kozeki_version
from kozeki.cli.build import build_cmd
from kozeki.cli.debug_state import debug_state_cmd
from kozeki.cli.watch import watch_cmd


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"kozeki {kozeki_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="kozeki",
    help=(
        "Kozeki: incremental content builds.\n\n"
        "  kozeki build        Render Markdown sources into JSON items and collections.\n"
        "  kozeki watch        Rebuild on every source change.\n"
        "  kozeki debug-state  Inspect the build state store."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Kozeki: incremental content builds."""


app.command("build")(build_cmd)
app.command("watch")(watch_cmd)
app.command("debug-state")(debug_state_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Kozeki version."""
    typer.echo(f"kozeki {kozeki_version()}")


if __name__ == "__main__":
    app()
