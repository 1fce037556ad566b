"""Tests for state store schema creation and epoch reset."""

from __future__ import annotations

import pytest

from kozeki.db.connection import Database
from kozeki.db.schema import EPOCH, current_epoch, ensure_schema


@pytest.fixture
def conn():
    c = Database().connect()
    yield c
    c.close()


def _table_columns(conn, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row["name"] for row in rows}


def test_fresh_database_has_no_epoch(conn):
    assert current_epoch(conn) is None


def test_ensure_schema_creates_tables(conn):
    assert ensure_schema(conn) is True
    assert current_epoch(conn) == EPOCH
    assert _table_columns(conn, "records") == {
        "path", "id", "timestamp", "mtime", "meta", "build", "pending_build_action", "id_was",
    }
    assert _table_columns(conn, "item_ids") == {"id", "pending_build_action"}
    assert _table_columns(conn, "collection_memberships") == {
        "collection", "record_id", "pending_build_action",
    }
    assert _table_columns(conn, "builds") == {"id", "built_at", "completed"}


def test_ensure_schema_idempotent(conn):
    ensure_schema(conn)
    conn.execute(
        "INSERT INTO records (path, id, mtime, meta) VALUES ('a.md', 'a', 0, '{}')"
    )
    assert ensure_schema(conn) is False
    assert conn.execute("SELECT COUNT(*) FROM records").fetchone()[0] == 1


def test_epoch_mismatch_resets_everything(conn):
    ensure_schema(conn)
    conn.execute(
        "INSERT INTO records (path, id, mtime, meta) VALUES ('a.md', 'a', 0, '{}')"
    )
    conn.execute("UPDATE kozeki_schema_epoch SET epoch = ?", (EPOCH + 1,))

    assert ensure_schema(conn) is True
    assert current_epoch(conn) == EPOCH
    assert conn.execute("SELECT COUNT(*) FROM records").fetchone()[0] == 0


def test_path_is_unique_but_id_is_not(conn):
    ensure_schema(conn)
    conn.execute("INSERT INTO records (path, id, mtime, meta) VALUES ('a.md', 'x', 0, '{}')")
    conn.execute("INSERT INTO records (path, id, mtime, meta) VALUES ('b.md', 'x', 0, '{}')")
    with pytest.raises(Exception):
        conn.execute("INSERT INTO records (path, id, mtime, meta) VALUES ('a.md', 'y', 0, '{}')")
