"""SQLite connection layer for the build state store."""

from __future__ import annotations

import sqlite3
from pathlib import Path

_MEMORY = ":memory:"


class Database:
    """Build state database; a file on disk or an in-memory store."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
                ``None`` or ``":memory:"`` selects a private in-memory store.
        """
        if db_path is None or str(db_path) == _MEMORY:
            self.db_path: Path | None = None
        else:
            self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return self.db_path is None

    def connect(self) -> sqlite3.Connection:
        """Open a connection and return it.

        The connection runs in autocommit mode (``isolation_level=None``);
        atomicity is provided by explicit transactions in State.transaction().
        """
        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(self.db_path)
        else:
            target = _MEMORY
        conn = sqlite3.connect(target, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if self.db_path is not None:
            conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
