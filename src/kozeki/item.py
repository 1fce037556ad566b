"""Item: the rendered output unit for one source document."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from kozeki.serialization import normalize_json


ITEMS_DIR = "items"


def item_path_for(item_id: str) -> tuple[str, str]:
    """Destination path of the rendered item with *item_id*."""
    return (ITEMS_DIR, f"{item_id}.json")


def collection_names(value: Any) -> list[str]:
    """Normalise a ``collections`` meta value; a bare string is one name."""
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(c) for c in value]


class ItemParseError(ValueError):
    """Raised when a JSON document is not a rendered item."""


@dataclass
class Item:
    id: str
    data: Any
    meta: dict[str, Any] = field(default_factory=dict)
    build: dict[str, Any] = field(default_factory=dict)

    @property
    def collections(self) -> list[str]:
        return collection_names(self.meta.get("collections"))

    def as_json(self, *, hide_collections: bool = False) -> dict[str, Any]:
        """JSON document for ``items/<id>.json``; datetimes become ISO-8601."""
        meta = normalize_json(self.meta)
        if hide_collections:
            meta.pop("collections", None)
        return {
            "kind": "item",
            "id": self.id,
            "meta": meta,
            "data": normalize_json(self.data),
            "kozeki_build": self.build,
        }

    @classmethod
    def load_from_json(cls, text: str) -> Item:
        doc = json.loads(text)
        if not isinstance(doc, dict) or doc.get("kind") != "item":
            raise ItemParseError(".kind must be 'item'")
        try:
            return cls(
                id=doc["id"],
                data=doc["data"],
                meta=doc.get("meta", {}),
                build=doc.get("kozeki_build", {}),
            )
        except KeyError as exc:
            raise ItemParseError(f"missing key {exc.args[0]!r}") from None
