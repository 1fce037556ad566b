"""kozeki debug-state: dump the state store as rich tables."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from kozeki.cli._common import DEFAULT_CONFIG, console, load_or_exit
from kozeki.cli.errors import err_no_state
from kozeki.db import State

_TABLES = ("records", "collection_memberships", "item_ids", "builds")
_HIDDEN_COLUMNS = {"meta", "build"}


def debug_state_cmd(
    config: Annotated[
        Path,
        typer.Argument(help="Path to kozeki.yaml (or its directory)."),
    ] = DEFAULT_CONFIG,
    show_meta: Annotated[
        bool,
        typer.Option("--meta", help="Include the metadata columns of records."),
    ] = False,
) -> None:
    """Show records, collection memberships, item ids and builds."""
    cfg = load_or_exit(config)
    if cfg.state_path is None:
        console.print(err_no_state(config))
        raise typer.Exit(1)

    state = State.open(cfg.state_path)
    try:
        for name in _TABLES:
            console.print(_render_table(name, state.dump_table(name), show_meta))
    finally:
        state.close()


def _render_table(name: str, rows: list[dict], show_meta: bool) -> Table:
    table = Table(title=f"[bold]{name}[/] [dim]({len(rows)})[/]", title_justify="left")
    if not rows:
        table.add_column("[dim](empty)[/]")
        return table

    columns = [c for c in rows[0] if show_meta or c not in _HIDDEN_COLUMNS]
    for column in columns:
        table.add_column(column, overflow="fold")
    for row in rows:
        table.add_row(*("" if row[c] is None else str(row[c]) for c in columns))
    return table
