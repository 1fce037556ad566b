"""Kozeki configuration loader.

Priority (high → low):
  1. CLI flags              (handled at the call site, not in this module)
  2. Environment variables  (KOZEKI_CACHE_DIRECTORY, KOZEKI_DESTINATION_THREADS)
  3. The kozeki.yaml file passed to load_config()
  4. Hardcoded defaults

Relative directories resolve against the directory holding the config file.
Callables (metadata decorators, build info generators, after-build hooks)
cannot be expressed in YAML; set them on the returned KozekiConfig.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import warnings
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from kozeki.collection import CollectionOptions
from kozeki.filesystem import Filesystem, LocalFilesystem, QueuedFilesystem, S3Filesystem
from kozeki.loaders import Loader, LoaderChain, MarkdownLoader, MetadataDecorator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_CONFIG_NAME: str = "kozeki.yaml"
STATE_FILE_NAME: str = "state.sqlite3"

_KNOWN_KEYS: frozenset[str] = frozenset(
    [
        "source_directory",
        "destination_directory",
        "cache_directory",
        "collection_list_included_prefix",
        "collection_options",
        "hide_collections_in_item",
        "use_event_time_as_mtime",
        "mtime_tolerance_ms",
        "build_info",
        "destination_threads",
        "watch_interval",
        "destination",
    ]
)

_COLLECTION_OPTION_KEYS: frozenset[str] = frozenset(
    ["prefix", "max_items", "paginate", "meta_keys", "hide_collections"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class S3DestinationCfg:
    """Object-storage destination (kozeki.yaml: destination: {type: s3})."""

    bucket: str
    prefix: str = ""
    delimiter: str = "/"
    region: str | None = None


@dataclass
class KozekiConfig:
    """Root configuration object, built by load_config() or directly in code.

    Attributes:
        base_directory: Directory relative paths are resolved against.
        source_directory: Source tree root (local disk).
        destination_directory: Output root (local disk) unless ``destination``
            selects object storage.
        cache_directory: Directory for ``state.sqlite3``; None keeps the state
            in memory, so every build is a full build.
        collection_list_included_prefix: Prefixes filtering ``collections.json``.
        collection_options: Option sets resolved by longest prefix.
        hide_collections_in_item: Strip ``collections`` from item metadata.
        use_event_time_as_mtime: Take record mtimes from change events.
        mtime_tolerance_ms: Skip update events not newer than the stored mtime
            by more than this many milliseconds (0 = strictly newer).
        build_info: Static mapping merged into every ``kozeki_build`` block.
        destination_threads: >0 wraps the destination in a QueuedFilesystem.
        watch_interval: Polling interval (seconds) for ``kozeki watch``.
    """

    base_directory: Path = field(default_factory=Path.cwd)
    source_directory: str | None = None
    destination_directory: str | None = None
    cache_directory: str | None = None
    collection_list_included_prefix: list[str] | None = None
    collection_options: list[CollectionOptions] = field(default_factory=list)
    hide_collections_in_item: bool = False
    use_event_time_as_mtime: bool = False
    mtime_tolerance_ms: int = 0
    build_info: dict[str, Any] | None = None
    destination_threads: int = 0
    watch_interval: float = 1.0
    destination: S3DestinationCfg | None = None

    # Programmatic-only settings.
    metadata_decorators: list[MetadataDecorator] = field(default_factory=list)
    build_info_generators: list[Callable[[Any], dict[str, Any]]] = field(default_factory=list)
    after_build_callbacks: list[Callable[[Any], None]] = field(default_factory=list)
    source_filesystem: Filesystem | None = None
    destination_filesystem: Filesystem | None = None
    loader: Loader | None = None

    @property
    def state_path(self) -> Path | None:
        if self.cache_directory is None:
            return None
        return self._resolve(self.cache_directory) / STATE_FILE_NAME

    def get_source_filesystem(self) -> Filesystem:
        if self.source_filesystem is None:
            if self.source_directory is None:
                raise ConfigError("source_directory is required")
            self.source_filesystem = LocalFilesystem(
                self._resolve(self.source_directory), watch_interval=self.watch_interval
            )
        return self.source_filesystem

    def get_destination_filesystem(self) -> Filesystem:
        if self.destination_filesystem is None:
            backend: Filesystem
            if self.destination is not None:
                backend = S3Filesystem(
                    self.destination.bucket,
                    self.destination.prefix,
                    delimiter=self.destination.delimiter,
                    region=self.destination.region,
                )
            elif self.destination_directory is not None:
                backend = LocalFilesystem(self._resolve(self.destination_directory))
            else:
                raise ConfigError("destination_directory (or destination) is required")
            if self.destination_threads > 0:
                backend = QueuedFilesystem(backend, threads=self.destination_threads)
            self.destination_filesystem = backend
        return self.destination_filesystem

    def get_loader(self) -> Loader:
        if self.loader is None:
            self.loader = LoaderChain(
                loaders=[MarkdownLoader()],
                decorators=self.metadata_decorators,
            )
        return self.loader

    def _resolve(self, directory: str) -> Path:
        return (self.base_directory / Path(directory).expanduser()).resolve()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_KEYS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _optional_str(value: Any, key: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, (str, os.PathLike)):
        raise ConfigError(f"{key} must be a path string, got {value!r}")
    return os.fspath(value)


def _parse_prefixes(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(
            f"collection_list_included_prefix must be a string or a list of strings, got {value!r}"
        )
    return [str(v) for v in value]


def _parse_collection_option(raw: Any, index: int) -> CollectionOptions:
    where = f"collection_options[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be a mapping, got {raw!r}")
    unknown = set(raw) - _COLLECTION_OPTION_KEYS
    if unknown:
        raise ConfigError(
            f"{where} has unknown keys: {', '.join(sorted(unknown))}\n"
            f"  Allowed: {', '.join(sorted(_COLLECTION_OPTION_KEYS))}"
        )
    prefix = raw.get("prefix")
    if not isinstance(prefix, str):
        raise ConfigError(
            f"{where}.prefix is required and must be a string\n"
            "  Example:\n"
            "    collection_options:\n"
            "      - prefix: blog\n"
            "        max_items: 10\n"
            "        paginate: true"
        )
    max_items = raw.get("max_items")
    if max_items is not None:
        if isinstance(max_items, bool) or not isinstance(max_items, int) or max_items < 1:
            raise ConfigError(f"{where}.max_items must be a positive integer, got {max_items!r}")
    meta_keys = raw.get("meta_keys")
    if meta_keys is not None:
        if not isinstance(meta_keys, list):
            raise ConfigError(f"{where}.meta_keys must be a list, got {meta_keys!r}")
        meta_keys = tuple(str(k) for k in meta_keys)
    hide = raw.get("hide_collections")
    return CollectionOptions(
        prefix=prefix,
        max_items=max_items,
        paginate=bool(raw.get("paginate", False)),
        meta_keys=meta_keys,
        hide_collections=None if hide is None else bool(hide),
    )


def _parse_destination(raw: Any) -> S3DestinationCfg | None:
    if raw is None:
        return None
    if not isinstance(raw, dict) or raw.get("type") != "s3":
        raise ConfigError(
            f"destination must be a mapping with type: s3, got {raw!r}\n"
            "  Use destination_directory for local output."
        )
    if not raw.get("bucket"):
        raise ConfigError("destination.bucket is required for type: s3")
    return S3DestinationCfg(
        bucket=str(raw["bucket"]),
        prefix=str(raw.get("prefix", "")),
        delimiter=str(raw.get("delimiter", "/")),
        region=raw.get("region"),
    )


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


def _number(data: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}") from None


def _cfg_from_dict(data: dict[str, Any], base_directory: Path) -> KozekiConfig:
    """Build a *KozekiConfig* from a raw YAML dict."""
    cfg = KozekiConfig(base_directory=base_directory)

    cfg.source_directory = _optional_str(data.get("source_directory"), "source_directory")
    cfg.destination_directory = _optional_str(
        data.get("destination_directory"), "destination_directory"
    )
    cfg.cache_directory = _optional_str(data.get("cache_directory"), "cache_directory")
    cfg.collection_list_included_prefix = _parse_prefixes(
        data.get("collection_list_included_prefix")
    )

    raw_options = data.get("collection_options") or []
    if not isinstance(raw_options, list):
        raise ConfigError(f"collection_options must be a list, got {raw_options!r}")
    cfg.collection_options = [
        _parse_collection_option(raw, i) for i, raw in enumerate(raw_options)
    ]

    cfg.hide_collections_in_item = bool(data.get("hide_collections_in_item", False))
    cfg.use_event_time_as_mtime = bool(data.get("use_event_time_as_mtime", False))
    cfg.mtime_tolerance_ms = _number(data, "mtime_tolerance_ms", int, 0)
    if cfg.mtime_tolerance_ms < 0:
        raise ConfigError(f"mtime_tolerance_ms must be >= 0, got {cfg.mtime_tolerance_ms}")

    build_info = data.get("build_info")
    if build_info is not None and not isinstance(build_info, dict):
        raise ConfigError(f"build_info must be a mapping, got {build_info!r}")
    cfg.build_info = build_info

    cfg.destination_threads = _number(data, "destination_threads", int, 0)
    if cfg.destination_threads < 0:
        raise ConfigError(f"destination_threads must be >= 0, got {cfg.destination_threads}")
    cfg.watch_interval = _number(data, "watch_interval", float, 1.0)
    if cfg.watch_interval <= 0:
        raise ConfigError(f"watch_interval must be > 0, got {cfg.watch_interval}")
    cfg.destination = _parse_destination(data.get("destination"))

    if cfg.source_directory is None:
        raise ConfigError("source_directory is required\n  Example:  source_directory: ./src")
    if cfg.destination_directory is None and cfg.destination is None:
        raise ConfigError(
            "destination_directory is required\n  Example:  destination_directory: ./public"
        )
    return cfg


def _apply_env_overrides(cfg: KozekiConfig) -> KozekiConfig:
    """Apply KOZEKI_* environment variable overrides."""
    if cache_dir := os.environ.get("KOZEKI_CACHE_DIRECTORY"):
        cfg.cache_directory = cache_dir
    if threads := os.environ.get("KOZEKI_DESTINATION_THREADS"):
        try:
            cfg.destination_threads = int(threads)
        except ValueError:
            raise ConfigError(
                f"KOZEKI_DESTINATION_THREADS must be an integer, got {threads!r}"
            ) from None
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: Path | str) -> KozekiConfig:
    """Load and return a *KozekiConfig* from the YAML file at *path*.

    Args:
        path: Path to kozeki.yaml (or a directory containing one).

    Returns:
        *KozekiConfig* with env var overrides applied.

    Raises:
        ConfigError: If the file is missing or contains invalid values.
    """
    config_path = Path(path)
    if config_path.is_dir():
        config_path = config_path / DEFAULT_CONFIG_NAME
    if not config_path.exists():
        raise ConfigError(f"Config file not found: '{config_path}'")

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file '{config_path}' is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{config_path}' must contain a mapping at top level")

    _warn_unknown_keys(raw, config_path)
    cfg = _cfg_from_dict(raw, config_path.parent.resolve())
    return _apply_env_overrides(cfg)
