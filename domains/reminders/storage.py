"""SQLite persistence for reminder collections.

Each collection (reminders, logs) is stored as one JSON document, so every
write replaces the whole collection inside a single transaction. A crash
before commit leaves the previous document intact.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from logger import logger
from . import config
from .errors import StorageError


class CollectionStorage:
    """Load/save whole JSON collections by name."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.REMINDER_DB_PATH
        self._connection: Optional[sqlite3.Connection] = None
        # One connection is shared by worker threads; sqlite transactions must not interleave
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection with WAL mode."""
        if self._connection is not None:
            return self._connection

        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,  # Used from asyncio.to_thread workers
                timeout=10.0
            )
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._init_schema(conn)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open reminder database {self.db_path}: {e}") from e

        self._connection = conn
        logger.info(f"Reminder storage initialized: {self.db_path}")
        return conn

    @staticmethod
    def _init_schema(conn: sqlite3.Connection) -> None:
        """Create tables if they don't exist."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS collections (
                name TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
        """)
        conn.commit()

    @contextmanager
    def _transaction(self):
        """Context manager for database transactions."""
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def load(self, name: str) -> list[dict]:
        """Read a collection.

        A missing collection is empty. So is an unparsable one: history is
        secondary bookkeeping, so availability wins over strictness here.

        Raises:
            StorageError: If the database itself cannot be read
        """
        try:
            with self._lock:
                row = self._get_connection().execute(
                    "SELECT payload FROM collections WHERE name = ?",
                    (name,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read collection {name}: {e}") from e

        if row is None:
            return []

        try:
            records = json.loads(row[0])
        except (TypeError, ValueError) as e:
            logger.warning(f"Collection {name} is corrupt, treating as empty: {e}")
            return []

        if not isinstance(records, list):
            logger.warning(f"Collection {name} is not a list, treating as empty")
            return []

        return [r for r in records if isinstance(r, dict)]

    def save(self, name: str, records: list[dict]) -> None:
        """Replace a collection atomically.

        Raises:
            StorageError: If serialization or the write fails (nothing is committed)
        """
        try:
            payload = json.dumps(records, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Cannot serialize collection {name}: {e}") from e

        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO collections (name, payload, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                    """,
                    (name, payload, datetime.now(timezone.utc).isoformat())
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write collection {name}: {e}") from e

        logger.debug(f"Saved {len(records)} record(s) to {name}")

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
