"""Source: a loaded source document, before rendering."""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

from kozeki.db.models import PATH_SEPARATOR, Record
from kozeki.item import Item, collection_names, item_path_for
from kozeki.serialization import parse_timestamp

if TYPE_CHECKING:
    from kozeki.loaders.base import Loader

_GENERATED_ID_PREFIX = "ao_"


class Source:
    """A source document as returned by a Loader.

    ``meta`` is the parsed front matter (conventionally ``id``, ``timestamp``
    and ``collections``). Metadata decorators may mutate it in place.
    """

    def __init__(
        self,
        path: Sequence[str],
        meta: dict[str, Any],
        mtime: datetime,
        content: str,
        loader: Loader,
    ) -> None:
        if any(PATH_SEPARATOR in segment for segment in path):
            raise ValueError(f"path segment cannot include {PATH_SEPARATOR!r}: {tuple(path)!r}")
        self.path: tuple[str, ...] = tuple(path)
        self.meta = meta
        self.mtime = mtime
        self.content = content
        self.loader = loader
        self.build: dict[str, Any] | None = None
        if PATH_SEPARATOR in self.id:
            raise ValueError(f"id cannot include {PATH_SEPARATOR!r}: {self.id!r}")

    def __repr__(self) -> str:
        return f"<Source {PATH_SEPARATOR.join(self.path)!r} id={self.id!r}>"

    @property
    def id(self) -> str:
        """``meta["id"]`` if present, else a stable hash of the path."""
        if "id" in self.meta and self.meta["id"] is not None:
            return str(self.meta["id"])
        digest = hashlib.sha256(PATH_SEPARATOR.join(self.path).encode("utf-8")).hexdigest()
        return f"{_GENERATED_ID_PREFIX}{digest}"

    @property
    def timestamp(self) -> datetime | None:
        return parse_timestamp(self.meta.get("timestamp"))

    @property
    def collections(self) -> list[str]:
        return collection_names(self.meta.get("collections"))

    @property
    def item_path(self) -> tuple[str, str]:
        return item_path_for(self.id)

    def to_record(self) -> Record:
        return Record(
            path=self.path,
            id=self.id,
            timestamp=self.timestamp,
            mtime=self.mtime,
            meta=self.meta,
        )

    def build_item(self) -> Item:
        return Item(
            id=self.id,
            data=self.loader.build(self),
            meta=self.meta,
            build=self.build or {},
        )
