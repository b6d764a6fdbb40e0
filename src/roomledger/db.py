"""SQLite key-value storage for RoomLedger."""

import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from .exceptions import PersistenceError


class Database:
    """SQLite database manager holding opaque ledger blobs by key."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        # Flushes run on a background worker; the lock serializes access.
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS blobs (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """
            )
            self.conn.commit()

    def close(self):
        """Close database connection."""
        with self._lock:
            self.conn.close()

    def get_blob(self, key: str) -> str | None:
        """Get a stored blob by key."""
        try:
            with self._lock:
                cursor = self.conn.cursor()
                cursor.execute("SELECT value FROM blobs WHERE key = ?", (key,))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read {key!r}: {e}") from e
        return str(row["value"]) if row else None

    def set_blob(self, key: str, value: str):
        """Insert or replace a blob."""
        try:
            with self._lock:
                cursor = self.conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO blobs (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, datetime.now().isoformat()),
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write {key!r}: {e}") from e


class DatabaseStore:
    """Adapts one database key to the repository's load/save interface."""

    def __init__(self, database: Database, key: str = "ledger"):
        self.database = database
        self.key = key

    def load(self) -> str | None:
        return self.database.get_blob(self.key)

    def save(self, blob: str):
        self.database.set_blob(self.key, blob)
