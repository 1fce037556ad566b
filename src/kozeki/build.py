"""Build orchestrator: one incremental or full build over a State Store.

Phases run in order, each inside its own state transaction, and the
destination filesystem is flushed after every transaction that wrote
artifacts:

  1. prepare + events     clear state (full build), open a build row, ingest
                          change events into Records
  2. items                delete items of removed Records, render updated ones
  3. garbage              delete items whose id no Record claims any more
  4. collections          render changed collections and collections.json
  5. commit               retire pending markers, prune stale output (full
                          build), mark the build completed

A failing phase rolls back its own state mutations and propagates; later
phases do not run. Artifact writes are idempotent, so rerunning is safe.
"""

from __future__ import annotations

import importlib.metadata
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import Any

from kozeki.collection import (
    Collection,
    CollectionList,
    CollectionOptions,
    CollectionOptionsResolver,
)
from kozeki.db import NotFound, PendingAction, State
from kozeki.filesystem import Event, EventOp, Filesystem
from kozeki.filesystem.base import Path
from kozeki.item import item_path_for
from kozeki.loaders import Loader
from kozeki.serialization import dump_json, to_millis
from kozeki.source import Source

logger = logging.getLogger(__name__)

BuildInfoGenerator = Callable[["Build"], dict[str, Any]]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class BuildError(Exception):
    """Base class for build orchestration failures."""


class UnknownEventError(BuildError):
    """Raised for a change event whose op is neither update nor delete."""


class LoaderError(BuildError):
    """Raised when no loader claims a source path that must be read."""


class BuildReusedError(BuildError):
    """Raised when perform() is called on a Build that already ran."""


def kozeki_version() -> str:
    try:
        return importlib.metadata.version("kozeki")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class Build:
    """A single-use build session.

    ``updated_files``, ``deleted_files`` and the per-path source cache belong
    to this instance only; create a new Build for every run.
    """

    def __init__(
        self,
        *,
        state: State,
        source_filesystem: Filesystem,
        destination_filesystem: Filesystem,
        loader: Loader,
        incremental_build: bool,
        events: Iterable[Event] | None = None,
        collection_list_included_prefix: Sequence[str] | None = None,
        collection_options: Iterable[CollectionOptions] = (),
        hide_collections_in_item: bool = False,
        use_event_time_as_mtime: bool = False,
        mtime_tolerance_ms: int = 0,
        build_info: dict[str, Any] | None = None,
        build_info_generators: Iterable[BuildInfoGenerator] = (),
    ) -> None:
        self.state = state
        self.source_filesystem = source_filesystem
        self.destination_filesystem = destination_filesystem
        self.loader = loader
        self.incremental_build = incremental_build
        self.events = list(events) if events is not None else None
        self.collection_list_included_prefix = list(collection_list_included_prefix or [])
        self.hide_collections_in_item = hide_collections_in_item
        self.use_event_time_as_mtime = use_event_time_as_mtime
        self.mtime_tolerance_ms = mtime_tolerance_ms
        self.build_info = build_info
        self.build_info_generators = list(build_info_generators)
        self._options = CollectionOptionsResolver(
            collection_options, hide_collections_in_item=hide_collections_in_item
        )

        self.build_id: int | None = None
        self.build_data: dict[str, Any] = {}
        self.updated_files: list[Path] = []
        self.deleted_files: list[Path] = []
        self._loader_cache: dict[Path, Source] = {}
        self._full_build: bool | None = None

    def __repr__(self) -> str:
        return f"<Build id={self.build_id!r} full={self.full_build}>"

    @property
    def incremental_build_possible(self) -> bool:
        return self.state.build_exist()

    @property
    def full_build(self) -> bool:
        # Decided once; the build row created in prepare must not flip it.
        if self._full_build is None:
            self._full_build = not (self.incremental_build and self.incremental_build_possible)
        return self._full_build

    def perform(self) -> Build:
        """Run every phase. Returns self so callers can inspect the outputs.

        Raises:
            BuildReusedError: This instance already ran.
            DuplicatedItemIdError: Two active Records claim the same id.
            LoaderError: No loader claims a source path.
            UnknownEventError: An event carries an unrecognised op.
        """
        if self.build_id is not None:
            raise BuildReusedError("a Build instance can only be performed once")
        logger.info("Starting %s build", "full" if self.full_build else "incremental")

        with self.state.transaction():
            self._process_prepare()
            self._process_events()
        with self.state.transaction():
            self._process_items_remove()
            self._process_items_update()
            self.destination_filesystem.flush()
        with self.state.transaction():
            self._process_garbage()
            self.destination_filesystem.flush()
        with self.state.transaction():
            self._process_collections()
            self.destination_filesystem.flush()
        with self.state.transaction():
            self._process_commit()
            self.destination_filesystem.flush()
        return self

    # ----- Phases ----------------------------------------------------------

    def _process_prepare(self) -> None:
        logger.debug("=== Prepare ===")
        if self.full_build:
            self.state.clear_all()
        self.build_id = self.state.create_build()
        logger.debug("Build ID: %d", self.build_id)
        self.build_data = self._make_build_data()

    def _process_events(self) -> None:
        logger.debug("=== Process incoming events ===")
        enumerated = self.full_build or self.events is None
        if enumerated:
            events = [
                Event.update(entry.path, None if self.full_build else entry.mtime)
                for entry in self.source_filesystem.list_entries()
            ]
            seen = {event.path for event in events}
            events.extend(
                Event.delete(path) for path in self.state.list_record_paths() if path not in seen
            )
        else:
            events = list(self.events)

        for event in events:
            if not enumerated:
                logger.debug("> %r", event)
            op = event.op
            if op == EventOp.UPDATE:
                self._ingest_update(event)
            elif op == EventOp.DELETE:
                self._ingest_delete(event)
            else:
                raise UnknownEventError(f"unknown op {op!r} in {event!r}")

    def _ingest_update(self, event: Event) -> None:
        if event.time is not None and self._is_stale(event):
            return
        source = self._load_source(event.path, mtime=event.time)
        record = self.state.save_record(source.to_record())
        self.state.set_record_pending_action(record, PendingAction.UPDATE)
        if record.id_changed:
            logger.info("ID change: %r; %r => %r", event.path, record.id_was, record.id)

    def _is_stale(self, event: Event) -> bool:
        try:
            record = self.state.find_record_by_path(event.path)
        except NotFound:
            return False
        diff = to_millis(event.time) - to_millis(record.mtime)
        if diff > self.mtime_tolerance_ms:
            logger.debug("> %r is newer than %s", event, record.mtime.isoformat())
            return False
        return True

    def _ingest_delete(self, event: Event) -> None:
        try:
            record = self.state.find_record_by_path(event.path)
        except NotFound:
            return
        self.state.set_record_pending_action(record, PendingAction.REMOVE)

    def _process_items_remove(self) -> None:
        logger.debug("=== Delete items for removed sources ===")
        for record in self.state.list_records_by_pending_action(PendingAction.REMOVE):
            siblings = self.state.list_records_by_id(record.id)
            # Another live record still owns this id and its artifact.
            if any(
                r.path != record.path and r.pending_build_action is not PendingAction.REMOVE
                for r in siblings
            ):
                logger.warning("Skip deletion: %r (%r)", record.id, record.path_row)
                continue
            logger.info("Delete: %r (%r)", record.id, record.path_row)
            self._delete(item_path_for(record.id))
            self.state.set_record_collections_pending(record.id, [])

    def _process_items_update(self) -> None:
        logger.debug("=== Render items for updated sources ===")
        for record in self.state.list_records_by_pending_action(PendingAction.UPDATE):
            logger.info("Render: %r (%r)", record.id, record.path_row)
            source = self._load_source(record.path)
            # Raises DuplicatedItemIdError before anything is written for this id.
            try:
                self.state.find_record(source.id)
            except NotFound:
                pass
            item = source.build_item()
            doc = item.as_json(hide_collections=self.hide_collections_in_item)
            self._write(source.item_path, dump_json(doc))
            self.state.set_record_collections_pending(item.id, item.collections)

    def _process_garbage(self) -> None:
        logger.debug("=== Collect garbage; items without source ===")
        for item_id in self.state.list_item_ids_for_garbage_collection():
            logger.debug("Checking: %r", item_id)
            if self.state.list_records_by_id(item_id):
                continue
            logger.info("Garbage: %r", item_id)
            self.state.mark_item_id_to_remove(item_id)
            self.state.set_record_collections_pending(item_id, [])
            self._delete(item_path_for(item_id))

    def _process_collections(self) -> None:
        logger.debug("=== Render updated collections ===")
        names = self.state.list_collection_names_pending()
        if not names:
            return

        for name in names:
            records = self.state.list_collection_records(name)
            record_count_was = self.state.count_collection_records(name)
            collection = Collection(name, records, self._options.resolve(name))
            for page in collection.pages:
                logger.info("Render: collection %r (%r)", name, page.item_path)
                self._write(page.item_path, dump_json(page.as_json(self.build_data)))
            for path in collection.item_paths_for_missing_pages(record_count_was):
                logger.info("Delete: collection %r (%r)", name, path)
                self._delete(path)

        logger.info("Render: collection list")
        collection_list = CollectionList(
            self.state.list_collection_names_with_prefix(*self.collection_list_included_prefix)
        )
        self._write(collection_list.item_path, dump_json(collection_list.as_json(self.build_data)))

    def _process_commit(self) -> None:
        logger.debug("=== Finishing build ===")
        self.state.process_markers()
        if self.full_build:
            logger.info("Delete: untouched files from destination")
            self.deleted_files.extend(self.destination_filesystem.retain_only(self.updated_files))
        self.state.mark_build_completed(self.build_id)
        logger.debug("Build %d completed", self.build_id)

    # ----- Helpers ---------------------------------------------------------

    def _make_build_data(self) -> dict[str, Any]:
        if self.build_info is None and not self.build_info_generators:
            return {}
        data: dict[str, Any] = {
            "build": {"id": str(self.build_id), "version": kozeki_version()}
        }
        data.update(self.build_info or {})
        for generator in self.build_info_generators:
            data.update(generator(self))
        return data

    def _load_source(self, path: Sequence[str], mtime: datetime | None = None) -> Source:
        key = tuple(path)
        source = self._loader_cache.get(key)
        if source is None:
            logger.debug("Load: %r", key)
            source = self.loader.try_read(key, self.source_filesystem)
            if source is None:
                raise LoaderError(f"can't read {'/'.join(key)!r}: no loader claims it")
            source.build = self.build_data
            if mtime is not None and self.use_event_time_as_mtime:
                source.mtime = mtime
            self._loader_cache[key] = source
        return source

    def _write(self, path: Path, content: str) -> None:
        self.destination_filesystem.write(path, content)
        self.updated_files.append(tuple(path))

    def _delete(self, path: Path) -> None:
        self.destination_filesystem.delete(path)
        self.deleted_files.append(tuple(path))
