"""Helpers shared by the kozeki CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from kozeki.build import LoaderError
from kozeki.cli.errors import err_config, err_duplicated_id, err_loader
from kozeki.config import ConfigError, KozekiConfig, load_config
from kozeki.db import DuplicatedItemIdError

console = Console()

DEFAULT_CONFIG = Path("kozeki.yaml")


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def load_or_exit(config_path: Path) -> KozekiConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from None


@contextmanager
def build_errors() -> Iterator[None]:
    """Turn expected build failures into a message and exit code 1."""
    try:
        yield
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from None
    except DuplicatedItemIdError as exc:
        console.print(err_duplicated_id(str(exc)))
        raise typer.Exit(1) from None
    except LoaderError as exc:
        console.print(err_loader(str(exc)))
        raise typer.Exit(1) from None
