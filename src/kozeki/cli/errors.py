"""Kozeki rich error messages with actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from kozeki.cli.errors import err_config
    console.print(err_config(exc))
    raise typer.Exit(1)
"""

from __future__ import annotations

from pathlib import Path


def err_config(message: str) -> str:
    """kozeki.yaml is missing or invalid."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix kozeki.yaml and run the command again."
    )


def err_duplicated_id(message: str) -> str:
    """Two source documents declare the same item id."""
    return (
        f"[red]Error:[/] Duplicated item id.\n"
        f"  {message}\n"
        "  Give one of the documents a different 'id' (or delete it), then run:  kozeki build"
    )


def err_loader(message: str) -> str:
    """No loader claims a file in the source directory."""
    return (
        f"[red]Error:[/] Unreadable source file.\n"
        f"  {message}\n"
        "  Only .md, .mkd and .markdown files are supported; move other files out of source_directory."
    )


def err_no_state(config_path: Path) -> str:
    """debug-state on a configuration without a cache_directory."""
    return (
        f"[red]Error:[/] No state store configured in '{config_path}'.\n"
        "  Set:  cache_directory: ./.kozeki"
    )
