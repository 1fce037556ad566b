"""Build state store: records, item-id registry, collection memberships, builds.

Single interface for everything the build orchestrator persists between
builds. Every mutation records a pending build action instead of finalising
immediately; process_markers() retires all pending state in one sweep at the
end of a successful build. The connection is owned by the State instance.
"""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from kozeki.db.connection import Database
from kozeki.db.models import PATH_SEPARATOR, PendingAction, Record
from kozeki.db.schema import ensure_schema

_DEBUG_TABLES = {
    "records": "path",
    "collection_memberships": "collection, record_id",
    "item_ids": "id",
    "builds": "id",
}


class NotFound(LookupError):
    """Raised when a record lookup by path or id matches nothing."""


class DuplicatedItemIdError(Exception):
    """Raised when more than one non-removed record claims the same item id."""


class State:
    """Transactional persistence for incremental builds.

    Wraps a sqlite3 connection in autocommit mode; group mutations with
    ``with state.transaction():`` to make them atomic. One build owns the
    store for its whole duration.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open connection whose schema is at EPOCH.

        Args:
            conn: Connection from Database.connect(); see State.open().
        """
        self._conn = conn
        self._savepoint_depth = 0

    @classmethod
    def open(cls, path: Path | str | None = None) -> State:
        """Open (creating if needed) the state store at *path*; None ⇒ in-memory."""
        conn = Database(path).connect()
        ensure_schema(conn)
        return cls(conn)

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[State]:
        """Run the block as one atomic unit; any exception rolls it back.

        Nested use creates a savepoint inside the outer transaction.
        """
        name = f"kozeki_sp_{self._savepoint_depth}"
        self._conn.execute(f"SAVEPOINT {name}")
        self._savepoint_depth += 1
        try:
            yield self
        except BaseException:
            self._savepoint_depth -= 1
            self._conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self._conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            self._savepoint_depth -= 1
            self._conn.execute(f"RELEASE SAVEPOINT {name}")

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def clear_all(self) -> None:
        """Wipe every table. Only a full build calls this."""
        self._conn.execute("DELETE FROM records")
        self._conn.execute("DELETE FROM collection_memberships")
        self._conn.execute("DELETE FROM item_ids")
        self._conn.execute("DELETE FROM builds")

    def build_exist(self) -> bool:
        """True if at least one build has completed (incremental builds possible)."""
        row = self._conn.execute(
            "SELECT id FROM builds WHERE completed = 1 LIMIT 1"
        ).fetchone()
        return row is not None

    def create_build(self, built_at: float | None = None) -> int:
        built_at = time.time() if built_at is None else built_at
        cur = self._conn.execute(
            "INSERT INTO builds (built_at) VALUES (?)", (int(built_at),)
        )
        return cur.lastrowid

    def mark_build_completed(self, build_id: int) -> None:
        self._conn.execute("UPDATE builds SET completed = 1 WHERE id = ?", (build_id,))

    def process_markers(self) -> None:
        """Delete rows marked 'remove' and reset every other marker to 'none'."""
        for table in ("records", "collection_memberships", "item_ids"):
            self._conn.execute(
                f"DELETE FROM {table} WHERE pending_build_action = 'remove'"  # noqa: S608
            )
        self._conn.execute(
            "UPDATE records SET pending_build_action = 'none', id_was = NULL "
            "WHERE pending_build_action <> 'none' OR id_was IS NOT NULL"
        )
        self._conn.execute(
            "UPDATE collection_memberships SET pending_build_action = 'none' "
            "WHERE pending_build_action <> 'none'"
        )
        self._conn.execute(
            "UPDATE item_ids SET pending_build_action = 'none' "
            "WHERE pending_build_action <> 'none'"
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def find_record_by_path(self, path: Iterable[str]) -> Record:
        """Return the record stored at *path*.

        Raises:
            NotFound: No record exists for the path.
        """
        path_row = PATH_SEPARATOR.join(path)
        row = self._conn.execute(
            "SELECT * FROM records WHERE path = ?", (path_row,)
        ).fetchone()
        if row is None:
            raise NotFound(f"record not found for path={path_row!r}")
        return Record.from_row(row)

    def find_record(self, record_id: str) -> Record:
        """Return the single non-removed record claiming *record_id*.

        Raises:
            NotFound: No non-removed record has this id.
            DuplicatedItemIdError: More than one non-removed record has this id.
        """
        rows = self._conn.execute(
            "SELECT * FROM records WHERE id = ? AND pending_build_action <> 'remove'",
            (record_id,),
        ).fetchall()
        if not rows:
            raise NotFound(f"record not found for id={record_id!r}")
        if len(rows) > 1:
            paths = ", ".join(repr(r["path"]) for r in rows)
            raise DuplicatedItemIdError(
                f"multiple records found for id={record_id!r} ({paths}), resolve conflict first"
            )
        return Record.from_row(rows[0])

    def list_records_by_pending_action(self, action: PendingAction) -> list[Record]:
        rows = self._conn.execute(
            "SELECT * FROM records WHERE pending_build_action = ? ORDER BY path",
            (PendingAction(action).value,),
        ).fetchall()
        return [Record.from_row(r) for r in rows]

    def list_records_by_id(self, record_id: str) -> list[Record]:
        rows = self._conn.execute(
            "SELECT * FROM records WHERE id = ? ORDER BY path", (record_id,)
        ).fetchall()
        return [Record.from_row(r) for r in rows]

    def list_record_paths(self) -> list[tuple[str, ...]]:
        rows = self._conn.execute("SELECT path FROM records ORDER BY path").fetchall()
        return [tuple(r["path"].split(PATH_SEPARATOR)) for r in rows]

    def save_record(self, record: Record) -> Record:
        """Upsert *record* keyed by path and keep the item-id registry in sync.

        The previous id of an overwritten row is stored in ``id_was``. When the
        id actually changed, the old id is queued for garbage collection and
        the returned record carries ``id_was``.

        Returns:
            *record*, augmented with ``id_was`` on an id-changing upsert.
        """
        row = record.to_row()
        previous = self._conn.execute(
            "SELECT id FROM records WHERE path = ?", (row["path"],)
        ).fetchone()
        id_was = previous["id"] if previous else None

        self._conn.execute(
            """
            INSERT INTO records
                (path, id, timestamp, mtime, meta, build, pending_build_action)
            VALUES
                (:path, :id, :timestamp, :mtime, :meta, :build, :pending_build_action)
            ON CONFLICT(path) DO UPDATE SET
                id = excluded.id,
                timestamp = excluded.timestamp,
                mtime = excluded.mtime,
                meta = excluded.meta,
                build = excluded.build,
                pending_build_action = excluded.pending_build_action,
                id_was = records.id
            """,
            row,
        )
        self._conn.execute(
            """
            INSERT INTO item_ids (id) VALUES (?)
            ON CONFLICT(id) DO UPDATE SET pending_build_action = 'none'
            """,
            (record.id,),
        )

        if id_was is None or id_was == record.id:
            return record

        self._conn.execute(
            """
            INSERT INTO item_ids (id, pending_build_action) VALUES (?, 'garbage_collection')
            ON CONFLICT(id) DO UPDATE SET pending_build_action = 'garbage_collection'
            """,
            (id_was,),
        )
        return record.with_id_was(id_was)

    def set_record_pending_action(self, record: Record, action: PendingAction) -> None:
        """Mark the record at ``record.path`` with *action*.

        Marking ``remove`` also queues the record's id for garbage collection.

        Raises:
            NotFound: The path no longer has a record.
        """
        action = PendingAction(action)
        cur = self._conn.execute(
            "UPDATE records SET pending_build_action = ? WHERE path = ?",
            (action.value, record.path_row),
        )
        if cur.rowcount == 0:
            raise NotFound(f"record not found to update for path={record.path_row!r}")
        if action is PendingAction.REMOVE:
            self._conn.execute(
                "UPDATE item_ids SET pending_build_action = 'garbage_collection' WHERE id = ?",
                (record.id,),
            )

    # ------------------------------------------------------------------
    # Item-id registry
    # ------------------------------------------------------------------

    def list_item_ids_for_garbage_collection(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT id FROM item_ids WHERE pending_build_action = 'garbage_collection' ORDER BY id"
        ).fetchall()
        return [r["id"] for r in rows]

    def mark_item_id_to_remove(self, item_id: str) -> None:
        self._conn.execute(
            "UPDATE item_ids SET pending_build_action = 'remove' WHERE id = ?", (item_id,)
        )

    # ------------------------------------------------------------------
    # Collection memberships
    # ------------------------------------------------------------------

    def set_record_collections_pending(
        self, record_id: str, collection_names: Iterable[str]
    ) -> None:
        """Replace the membership set of *record_id* with *collection_names*.

        Existing memberships are marked 'remove'; the new set is upserted as
        'update' (so an unchanged membership ends up 'update', not removed).
        """
        self._conn.execute(
            "UPDATE collection_memberships SET pending_build_action = 'remove' WHERE record_id = ?",
            (record_id,),
        )
        names = list(dict.fromkeys(collection_names))
        if not names:
            return
        self._conn.executemany(
            """
            INSERT INTO collection_memberships (collection, record_id, pending_build_action)
            VALUES (?, ?, 'update')
            ON CONFLICT(collection, record_id) DO UPDATE SET
                pending_build_action = excluded.pending_build_action
            """,
            [(name, record_id) for name in names],
        )

    def list_collection_names_pending(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT collection FROM collection_memberships "
            "WHERE pending_build_action <> 'none' ORDER BY collection"
        ).fetchall()
        return [r["collection"] for r in rows]

    def list_collection_names(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT collection FROM collection_memberships "
            "WHERE pending_build_action <> 'remove' ORDER BY collection"
        ).fetchall()
        return [r["collection"] for r in rows]

    def list_collection_names_with_prefix(self, *prefixes: str) -> list[str]:
        """Collection names starting with any of *prefixes*; no prefixes ⇒ all."""
        if not prefixes:
            return self.list_collection_names()
        conditions = " OR ".join(
            "substr(collection, 1, length(?)) = ?" for _ in prefixes
        )
        params: list[str] = []
        for prefix in prefixes:
            params.extend([prefix, prefix])
        rows = self._conn.execute(
            f"SELECT DISTINCT collection FROM collection_memberships "  # noqa: S608
            f"WHERE ({conditions}) AND pending_build_action <> 'remove' "
            f"ORDER BY collection",
            params,
        ).fetchall()
        return [r["collection"] for r in rows]

    def list_collection_records(self, collection: str) -> list[Record]:
        rows = self._conn.execute(
            """
            SELECT records.*
            FROM collection_memberships
            INNER JOIN records ON collection_memberships.record_id = records.id
            WHERE collection_memberships.collection = ?
              AND collection_memberships.pending_build_action <> 'remove'
              AND records.pending_build_action <> 'remove'
            ORDER BY records.path
            """,
            (collection,),
        ).fetchall()
        return [Record.from_row(r) for r in rows]

    def count_collection_records(self, collection: str) -> int:
        """Raw membership count, ignoring pending state (used for shrink detection)."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM collection_memberships WHERE collection = ?",
            (collection,),
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Debugging
    # ------------------------------------------------------------------

    def dump_table(self, table: str) -> list[dict[str, Any]]:
        """Return every row of a state table as plain dicts (debug-state)."""
        order = _DEBUG_TABLES.get(table)
        if order is None:
            raise ValueError(f"unknown state table {table!r}")
        rows = self._conn.execute(
            f"SELECT * FROM {table} ORDER BY {order}"  # noqa: S608
        ).fetchall()
        return [dict(r) for r in rows]
