"""Collection and pagination engine.

Pure functions of a record set plus per-collection options: ordering,
page splitting, navigation metadata and the collection index. Nothing here
touches the state store or a filesystem.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from kozeki.db.models import PATH_SEPARATOR, Record
from kozeki.item import item_path_for
from kozeki.serialization import to_epoch_seconds

COLLECTIONS_DIR = "collections"
COLLECTION_LIST_FILE = "collections.json"


@dataclass(frozen=True)
class CollectionOptions:
    """Rendering options for collections whose name starts with ``prefix``.

    Attributes:
        prefix: Collection name prefix these options apply to ('' = all).
        max_items: Items per page (with ``paginate``) or hard cap (without).
        paginate: Split into pages of ``max_items``; ignored without max_items.
        meta_keys: Allow-list of metadata keys copied into each entry.
        hide_collections: Strip the ``collections`` key from entry metadata.
            None means "inherit hide_collections_in_item".
    """

    prefix: str = ""
    max_items: int | None = None
    paginate: bool = False
    meta_keys: tuple[str, ...] | None = None
    hide_collections: bool | None = None


class CollectionOptionsResolver:
    """Longest-prefix lookup over configured option sets, cached per name."""

    def __init__(
        self,
        option_sets: Iterable[CollectionOptions] = (),
        *,
        hide_collections_in_item: bool = False,
    ) -> None:
        # Stable sort: among equal prefixes the first configured set wins.
        self._option_sets = sorted(option_sets, key=lambda o: len(o.prefix), reverse=True)
        self._hide_collections_in_item = hide_collections_in_item
        self._cache: dict[str, CollectionOptions] = {}

    def resolve(self, name: str) -> CollectionOptions:
        if name not in self._cache:
            self._cache[name] = self._resolve(name)
        return self._cache[name]

    def _resolve(self, name: str) -> CollectionOptions:
        options = next(
            (o for o in self._option_sets if name.startswith(o.prefix)),
            CollectionOptions(),
        )
        if options.hide_collections is None and self._hide_collections_in_item:
            options = replace(options, hide_collections=True)
        return options


def _join(path: Sequence[str]) -> str:
    return PATH_SEPARATOR.join(path)


def _sort_key(record: Record) -> tuple[int, str]:
    # Untimestamped records sort as if stamped at the epoch.
    primary = -to_epoch_seconds(record.timestamp) if record.timestamp is not None else 0
    return (primary, record.id)


class Collection:
    """A named group of records, ordered newest first and split into pages."""

    def __init__(
        self,
        name: str,
        records: Iterable[Record],
        options: CollectionOptions | None = None,
    ) -> None:
        if PATH_SEPARATOR in name:
            raise ValueError(f"collection name cannot include {PATH_SEPARATOR!r}: {name!r}")
        self.name = name
        self.options = options or CollectionOptions()
        self.records: list[Record] = sorted(records, key=_sort_key)

    def __repr__(self) -> str:
        return f"<Collection {self.name!r} records={len(self.records)}>"

    @property
    def paginated(self) -> bool:
        return bool(self.options.paginate and self.options.max_items)

    def total_pages_for(self, count: int) -> int:
        if self.paginated:
            return math.ceil(count / self.options.max_items)
        return 1 if count > 0 else 0

    @property
    def total_pages(self) -> int:
        return self.total_pages_for(len(self.records))

    def item_path_for_page(self, page: int) -> tuple[str, ...]:
        if page == 1:
            return (COLLECTIONS_DIR, f"{self.name}.json")
        return (COLLECTIONS_DIR, self.name, f"page-{page}.json")

    @property
    def pages(self) -> list[Page]:
        if self.paginated:
            size = self.options.max_items
            return [
                Page(self, number, self.records[(number - 1) * size : number * size])
                for number in range(1, self.total_pages + 1)
            ]
        if not self.records:
            return []
        records = self.records
        if self.options.max_items:
            records = records[: self.options.max_items]
        return [Page(self, 1, records)]

    def item_paths_for_missing_pages(self, record_count_was: int) -> list[tuple[str, ...]]:
        """Paths of pages that existed for *record_count_was* records but not now."""
        was = self.total_pages_for(record_count_was)
        return [self.item_path_for_page(n) for n in range(self.total_pages + 1, was + 1)]

    def entry_meta(self, record: Record) -> dict[str, Any]:
        meta = dict(record.meta)
        if self.options.meta_keys is not None:
            meta = {k: meta[k] for k in self.options.meta_keys if k in meta}
        if self.options.hide_collections:
            meta.pop("collections", None)
        return meta


class Page:
    """One page of a collection (page 1 lives at the bare collection path)."""

    def __init__(self, collection: Collection, number: int, records: Sequence[Record]) -> None:
        self.collection = collection
        self.number = number
        self.records = list(records)

    def __repr__(self) -> str:
        return f"<Page {self.collection.name!r} #{self.number}>"

    @property
    def item_path(self) -> tuple[str, ...]:
        return self.collection.item_path_for_page(self.number)

    def page_info(self) -> dict[str, Any]:
        collection = self.collection
        total = collection.total_pages

        def path_of(number: int) -> str | None:
            if 1 <= number <= total:
                return _join(collection.item_path_for_page(number))
            return None

        info: dict[str, Any] = {
            "self": self.number,
            "total_pages": total,
            "first": path_of(1),
            "last": path_of(total),
            "prev": path_of(self.number - 1),
            "next": path_of(self.number + 1),
        }
        if self.number == 1:
            info["pages"] = [path_of(n) for n in range(1, total + 1)]
        return info

    def as_json(self, build: dict[str, Any] | None = None) -> dict[str, Any]:
        collection = self.collection
        doc: dict[str, Any] = {
            "kind": "collection",
            "name": collection.name,
            "items": [
                {
                    "id": record.id,
                    "path": _join(item_path_for(record.id)),
                    "meta": collection.entry_meta(record),
                }
                for record in self.records
            ],
        }
        if collection.paginated:
            doc["page"] = self.page_info()
        doc["kozeki_build"] = build or {}
        return doc


class CollectionList:
    """The collection index written to ``collections.json``."""

    item_path: tuple[str, ...] = (COLLECTION_LIST_FILE,)

    def __init__(self, names: Iterable[str]) -> None:
        self.names = sorted(set(names))

    def as_json(self, build: dict[str, Any] | None = None) -> dict[str, Any]:
        return {
            "kind": "collection_list",
            "collections": [
                {"name": name, "path": _join((COLLECTIONS_DIR, f"{name}.json"))}
                for name in self.names
            ],
            "kozeki_build": build or {},
        }
