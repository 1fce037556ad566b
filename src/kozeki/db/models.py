"""Domain models for the build state store."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from kozeki.serialization import (
    from_epoch_seconds,
    from_millis,
    json_default,
    to_epoch_seconds,
    to_millis,
)

PATH_SEPARATOR = "/"


class PendingAction(str, Enum):
    """Uncommitted intent recorded on a row; cleared only by process_markers()."""

    NONE = "none"
    UPDATE = "update"
    REMOVE = "remove"
    GARBAGE_COLLECTION = "garbage_collection"


@dataclass(frozen=True)
class Record:
    """Persisted fingerprint of one source document.

    ``path`` is the primary key. ``id_was`` is only set on the value returned
    by State.save_record() when the upsert changed the id of an existing row.
    """

    path: tuple[str, ...]
    id: str
    mtime: datetime
    timestamp: datetime | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    build: dict[str, Any] | None = None
    pending_build_action: PendingAction = PendingAction.NONE
    id_was: str | None = None

    @property
    def path_row(self) -> str:
        return PATH_SEPARATOR.join(self.path)

    @property
    def id_changed(self) -> bool:
        return self.id_was is not None and self.id_was != self.id

    def with_id_was(self, id_was: str | None) -> Record:
        return replace(self, id_was=id_was)

    def to_row(self) -> dict[str, Any]:
        return {
            "path": self.path_row,
            "id": self.id,
            "timestamp": to_epoch_seconds(self.timestamp) if self.timestamp else None,
            "mtime": to_millis(self.mtime),
            "meta": json.dumps(self.meta, default=json_default),
            "build": json.dumps(self.build, default=json_default) if self.build is not None else None,
            "pending_build_action": self.pending_build_action.value,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Record:
        timestamp = row["timestamp"]
        build = row["build"]
        return cls(
            path=tuple(row["path"].split(PATH_SEPARATOR)),
            id=row["id"],
            timestamp=from_epoch_seconds(timestamp) if timestamp is not None else None,
            mtime=from_millis(row["mtime"]),
            meta=json.loads(row["meta"]),
            build=json.loads(build) if build is not None else None,
            pending_build_action=PendingAction(row["pending_build_action"]),
            id_was=row["id_was"],
        )
