"""Client: runs builds for one configuration against its State Store."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from kozeki.build import Build
from kozeki.config import KozekiConfig
from kozeki.db import State
from kozeki.filesystem import Event, WatchHandle

logger = logging.getLogger(__name__)


class Client:
    """Owns the State Store for *config*; builds never overlap.

    Usage::

        with Client(load_config("kozeki.yaml")) as client:
            client.build()
    """

    def __init__(self, config: KozekiConfig) -> None:
        self.config = config
        self.state = State.open(config.state_path)
        self._lock = threading.Lock()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def close(self) -> None:
        close = getattr(self.config.destination_filesystem, "close", None)
        if close is not None:
            close()
        self.state.close()

    def build(
        self,
        incremental_build: bool = True,
        events: Iterable[Event] | None = None,
    ) -> Build:
        """Run one build and the configured after-build callbacks.

        Args:
            incremental_build: Reuse prior state when a completed build exists.
            events: Explicit change events; None scans the source tree.

        Returns:
            The performed Build (``updated_files`` / ``deleted_files``).
        """
        cfg = self.config
        with self._lock:
            build = Build(
                state=self.state,
                source_filesystem=cfg.get_source_filesystem(),
                destination_filesystem=cfg.get_destination_filesystem(),
                loader=cfg.get_loader(),
                incremental_build=incremental_build,
                events=events,
                collection_list_included_prefix=cfg.collection_list_included_prefix,
                collection_options=cfg.collection_options,
                hide_collections_in_item=cfg.hide_collections_in_item,
                use_event_time_as_mtime=cfg.use_event_time_as_mtime,
                mtime_tolerance_ms=cfg.mtime_tolerance_ms,
                build_info=cfg.build_info,
                build_info_generators=cfg.build_info_generators,
            )
            build.perform()
            for callback in cfg.after_build_callbacks:
                callback(build)
        logger.info(
            "Build %d done: %d written, %d deleted",
            build.build_id,
            len(build.updated_files),
            len(build.deleted_files),
        )
        return build

    def watch(self) -> WatchHandle:
        """Run an incremental build for every batch of source changes.

        Builds run one at a time on the watcher's thread; call ``stop()`` on
        the returned handle to unsubscribe. An in-flight build is not
        interrupted.
        """
        return self.config.get_source_filesystem().watch(self._on_events)

    def _on_events(self, events: list[Event]) -> None:
        logger.debug("Received %d events", len(events))
        self.build(incremental_build=True, events=events)
