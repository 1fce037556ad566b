"""Kozeki: incremental content builds from Markdown to JSON."""

from kozeki.build import Build, BuildError, LoaderError, UnknownEventError, kozeki_version
from kozeki.client import Client
from kozeki.config import ConfigError, KozekiConfig, load_config

__version__ = kozeki_version()

__all__ = [
    "Build",
    "BuildError",
    "Client",
    "ConfigError",
    "KozekiConfig",
    "LoaderError",
    "UnknownEventError",
    "__version__",
    "load_config",
]
