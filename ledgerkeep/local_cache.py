"""
Durable local tier using SQLite.

Holds the principal → purpose-prefixed blob ID mappings that survive a
process restart and are shared by every process on the host pointed at the
same store directory.

This tier is authoritative for the current deployment. The ledger is only
a recovery path for hosts that do not have this file.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .types import NamespacedKey, Purpose, decode_value, encode_value, now_ms

logger = logging.getLogger(__name__)


@dataclass
class CachedValue:
    """A row from the local tier with its tag already stripped."""
    principal: str
    purpose: Purpose
    blob_id: str
    updated_at: int


class LocalMetadataCache:
    """
    SQLite-backed durable cache for metadata pointers.

    Writes are serialized by a process-wide lock and go through an
    IMMEDIATE transaction, so concurrent stores for different keys (from
    threads or from other processes) never clobber each other.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None gives us manual transaction control
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row

        # WAL for concurrent readers across processes
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS metadata_pointers (
                principal TEXT NOT NULL,
                purpose TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (principal, purpose)
            )
        """)

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def put(self, key: NamespacedKey, blob_id: str) -> bool:
        """
        Store a pointer, replacing any previous value for the key.

        Returns:
            True if the stored value changed, False if it was already current
        """
        value = encode_value(key.purpose, blob_id)
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute("""
                    SELECT value FROM metadata_pointers
                    WHERE principal = ? AND purpose = ?
                """, (key.principal, key.purpose.value)).fetchone()
                if row is not None and row["value"] == value:
                    self._conn.execute("COMMIT")
                    return False
                self._conn.execute("""
                    INSERT OR REPLACE INTO metadata_pointers
                    (principal, purpose, value, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (key.principal, key.purpose.value, value, now_ms()))
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
        return True

    def delete(self, key: NamespacedKey) -> bool:
        """Drop a pointer. Returns True if one existed."""
        with self._lock:
            cursor = self._conn.execute("""
                DELETE FROM metadata_pointers
                WHERE principal = ? AND purpose = ?
            """, (key.principal, key.purpose.value))
        return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, key: NamespacedKey) -> Optional[CachedValue]:
        """Read one pointer. A value with the wrong purpose tag reads as absent."""
        with self._lock:
            row = self._conn.execute("""
                SELECT principal, purpose, value, updated_at
                FROM metadata_pointers
                WHERE principal = ? AND purpose = ?
            """, (key.principal, key.purpose.value)).fetchone()
        if row is None:
            return None

        blob_id = decode_value(key.purpose, row["value"])
        if blob_id is None:
            logger.warning("Local entry for %s has mismatched tag, ignoring", key)
            return None
        return CachedValue(
            principal=row["principal"],
            purpose=key.purpose,
            blob_id=blob_id,
            updated_at=row["updated_at"],
        )

    def load_all(self, purpose: Optional[Purpose] = None) -> dict[NamespacedKey, str]:
        """Load every valid pointer (optionally for one purpose) into a dict."""
        with self._lock:
            if purpose is None:
                rows = self._conn.execute(
                    "SELECT principal, purpose, value FROM metadata_pointers"
                ).fetchall()
            else:
                rows = self._conn.execute("""
                    SELECT principal, purpose, value FROM metadata_pointers
                    WHERE purpose = ?
                """, (purpose.value,)).fetchall()

        results: dict[NamespacedKey, str] = {}
        for row in rows:
            try:
                row_purpose = Purpose(row["purpose"])
                key = NamespacedKey(row["principal"], row_purpose)
            except ValueError:
                continue
            blob_id = decode_value(row_purpose, row["value"])
            if blob_id is not None:
                results[key] = blob_id
        return results

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM metadata_pointers").fetchone()[0]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
