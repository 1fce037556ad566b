"""State store schema DDL and epoch check.

The state store is a cache of the source tree, not a system of record: when
the stored epoch differs from EPOCH every table is dropped and recreated.
"""

from __future__ import annotations

import sqlite3

EPOCH = 1

_EPOCH_TABLE = "kozeki_schema_epoch"

_SCHEMA_SQL = """
DROP TABLE IF EXISTS kozeki_schema_epoch;
CREATE TABLE kozeki_schema_epoch (
    epoch       INTEGER NOT NULL
);

DROP TABLE IF EXISTS records;
CREATE TABLE records (
    path                  TEXT NOT NULL UNIQUE,
    id                    TEXT NOT NULL,
    timestamp             INTEGER,
    mtime                 INTEGER NOT NULL,
    meta                  TEXT NOT NULL,
    build                 TEXT,
    pending_build_action  TEXT NOT NULL DEFAULT 'none',
    id_was                TEXT
);

-- Non-unique: duplicated ids are tolerated while events are processed one by one.
DROP INDEX IF EXISTS idx_records_id;
CREATE INDEX idx_records_id ON records (id);
DROP INDEX IF EXISTS idx_records_pending;
CREATE INDEX idx_records_pending ON records (pending_build_action);

DROP TABLE IF EXISTS item_ids;
CREATE TABLE item_ids (
    id                    TEXT NOT NULL UNIQUE,
    pending_build_action  TEXT NOT NULL DEFAULT 'none'
);
DROP INDEX IF EXISTS idx_item_ids_pending;
CREATE INDEX idx_item_ids_pending ON item_ids (pending_build_action);

DROP TABLE IF EXISTS collection_memberships;
CREATE TABLE collection_memberships (
    collection            TEXT NOT NULL,
    record_id             TEXT NOT NULL,
    pending_build_action  TEXT NOT NULL DEFAULT 'none'
);
DROP INDEX IF EXISTS idx_col_record;
CREATE UNIQUE INDEX idx_col_record ON collection_memberships (collection, record_id);
DROP INDEX IF EXISTS idx_col_pending;
CREATE INDEX idx_col_pending ON collection_memberships (pending_build_action, collection);

DROP TABLE IF EXISTS builds;
CREATE TABLE builds (
    id          INTEGER PRIMARY KEY,
    built_at    INTEGER NOT NULL,
    completed   INTEGER NOT NULL DEFAULT 0
);
"""


def current_epoch(conn: sqlite3.Connection) -> int | None:
    """Return the stored schema epoch, or None for a fresh/foreign database."""
    table = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        (_EPOCH_TABLE,),
    ).fetchone()
    if table is None:
        return None
    row = conn.execute(
        "SELECT epoch FROM kozeki_schema_epoch ORDER BY epoch DESC LIMIT 1"
    ).fetchone()
    return row["epoch"] if row else None


def ensure_schema(conn: sqlite3.Connection) -> bool:
    """Create (or destructively reset) the schema unless it is at EPOCH.

    Returns:
        True if the schema was (re)created, False if it was already current.
    """
    if current_epoch(conn) == EPOCH:
        return False
    # executescript() issues an implicit COMMIT before running.
    conn.executescript(_SCHEMA_SQL)
    conn.execute("INSERT INTO kozeki_schema_epoch (epoch) VALUES (?)", (EPOCH,))
    return True
