"""Local library state for the sync client.

This module provides:
- LocalLibraryStore: SQLite-based store for saved entries, progress records
  and key/value settings (sync cursors, active engine, tokens), plus the
  keys last seen on each backend

Architecture:
    Versions are stored as integer milliseconds so ``get_since`` and
    ``get_latest`` are plain indexed comparisons. Batch writes run in a
    single transaction; the sync engine only ever writes through
    ``upsert_*`` and ``delete_*``.
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from readsync.core.entities import ProgressRecord, SavedEntry
from readsync.core.timestamps import from_iso, from_millis, to_iso, to_millis
from readsync.core.types import CompositeKey, EntityKind

logger = logging.getLogger(__name__)


def collection_digest(keys: Iterable[CompositeKey]) -> str:
    """SHA-256 over the sorted ``manga_id|plugin_id`` keys of a collection."""
    digest = hashlib.sha256()
    for key in sorted(keys):
        digest.update(f"{key.manga_id}|{key.plugin_id}".encode())
    return digest.hexdigest()


def _saved_from_row(row: sqlite3.Row) -> SavedEntry:
    return SavedEntry(
        manga_id=row["manga_id"],
        plugin_id=row["plugin_id"],
        datetime=from_millis(row["datetime"]),
        has_unread_update=bool(row["has_unread_update"]),
        latest_chapter=row["latest_chapter"],
    )


def _progress_from_row(row: sqlite3.Row) -> ProgressRecord:
    return ProgressRecord(
        manga_id=row["manga_id"],
        plugin_id=row["plugin_id"],
        datetime=from_millis(row["datetime"]),
        chapter_id=row["chapter_id"],
        chapter_title=row["chapter_title"],
        page=row["page"],
    )


class LocalLibraryStore:
    """SQLite-backed local replica of the library.

    Thread-safe: every statement runs under a re-entrant lock, so the
    async accessors may call in from worker threads.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize local store database.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            isolation_level=None,  # Autocommit; batches open explicit transactions
        )
        self._conn.row_factory = sqlite3.Row
        if self._db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS saved (
                manga_id TEXT NOT NULL,
                plugin_id TEXT NOT NULL,
                datetime INTEGER NOT NULL,
                has_unread_update INTEGER NOT NULL DEFAULT 0,
                latest_chapter TEXT NOT NULL DEFAULT '',
                PRIMARY KEY (manga_id, plugin_id)
            );
            CREATE INDEX IF NOT EXISTS idx_saved_datetime ON saved (datetime);

            CREATE TABLE IF NOT EXISTS progress (
                manga_id TEXT NOT NULL,
                plugin_id TEXT NOT NULL,
                datetime INTEGER NOT NULL,
                chapter_id TEXT,
                chapter_title TEXT,
                page INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (manga_id, plugin_id)
            );
            CREATE INDEX IF NOT EXISTS idx_progress_datetime ON progress (datetime);

            -- Key-value settings (cursors, active engine, tokens)
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            );

            -- Keys last known to exist on each backend
            CREATE TABLE IF NOT EXISTS remote_keys (
                backend_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                manga_id TEXT NOT NULL,
                plugin_id TEXT NOT NULL,
                PRIMARY KEY (backend_id, kind, manga_id, plugin_id)
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _fetch(self, query: str, params: tuple[object, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    # === Saved entries ===

    def get_saved(self, key: CompositeKey) -> SavedEntry | None:
        """Get a saved entry by key."""
        rows = self._fetch(
            "SELECT * FROM saved WHERE manga_id = ? AND plugin_id = ?", tuple(key)
        )
        return _saved_from_row(rows[0]) if rows else None

    def list_saved(self) -> list[SavedEntry]:
        """List all saved entries, newest first."""
        rows = self._fetch("SELECT * FROM saved ORDER BY datetime DESC")
        return [_saved_from_row(row) for row in rows]

    def saved_since(self, since: datetime | None) -> list[SavedEntry]:
        """List saved entries with a version strictly after ``since``, oldest first."""
        if since is None:
            rows = self._fetch("SELECT * FROM saved ORDER BY datetime ASC")
        else:
            rows = self._fetch(
                "SELECT * FROM saved WHERE datetime > ? ORDER BY datetime ASC",
                (to_millis(since),),
            )
        return [_saved_from_row(row) for row in rows]

    def latest_saved(self) -> SavedEntry | None:
        """Get the saved entry with the greatest version."""
        rows = self._fetch(
            "SELECT * FROM saved ORDER BY datetime DESC, manga_id, plugin_id LIMIT 1"
        )
        return _saved_from_row(rows[0]) if rows else None

    def upsert_saved(self, entries: Iterable[SavedEntry]) -> int:
        """Insert or replace saved entries in one transaction.

        Returns:
            Number of entries written.
        """
        values = [
            (
                e.manga_id,
                e.plugin_id,
                to_millis(e.datetime),
                int(e.has_unread_update),
                e.latest_chapter,
            )
            for e in entries
        ]
        if not values:
            return 0
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO saved (
                    manga_id, plugin_id, datetime, has_unread_update, latest_chapter
                ) VALUES (?, ?, ?, ?, ?)
                """,
                values,
            )
        logger.debug("Upserted %d saved entries", len(values))
        return len(values)

    def delete_saved(self, keys: Iterable[CompositeKey]) -> int:
        """Delete saved entries by key in one transaction.

        Returns:
            Number of entries actually removed.
        """
        return self._delete("saved", keys)

    def saved_digest(self) -> str:
        """Digest of the saved-entry key set (see ``collection_digest``)."""
        rows = self._fetch("SELECT manga_id, plugin_id FROM saved")
        return collection_digest(CompositeKey(r["manga_id"], r["plugin_id"]) for r in rows)

    # === Progress records ===

    def get_progress(self, key: CompositeKey) -> ProgressRecord | None:
        """Get a progress record by key."""
        rows = self._fetch(
            "SELECT * FROM progress WHERE manga_id = ? AND plugin_id = ?", tuple(key)
        )
        return _progress_from_row(rows[0]) if rows else None

    def list_progress(self, limit: int | None = None, offset: int = 0) -> list[ProgressRecord]:
        """List progress records, most recently read first."""
        if limit is None:
            rows = self._fetch("SELECT * FROM progress ORDER BY datetime DESC")
        else:
            rows = self._fetch(
                "SELECT * FROM progress ORDER BY datetime DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
        return [_progress_from_row(row) for row in rows]

    def progress_since(self, since: datetime | None) -> list[ProgressRecord]:
        """List progress records with a version strictly after ``since``, oldest first."""
        if since is None:
            rows = self._fetch("SELECT * FROM progress ORDER BY datetime ASC")
        else:
            rows = self._fetch(
                "SELECT * FROM progress WHERE datetime > ? ORDER BY datetime ASC",
                (to_millis(since),),
            )
        return [_progress_from_row(row) for row in rows]

    def latest_progress(self) -> ProgressRecord | None:
        """Get the progress record with the greatest version."""
        rows = self._fetch(
            "SELECT * FROM progress ORDER BY datetime DESC, manga_id, plugin_id LIMIT 1"
        )
        return _progress_from_row(rows[0]) if rows else None

    def upsert_progress(self, records: Iterable[ProgressRecord]) -> int:
        """Insert or replace progress records in one transaction.

        Returns:
            Number of records written.
        """
        values = [
            (
                r.manga_id,
                r.plugin_id,
                to_millis(r.datetime),
                r.chapter_id,
                r.chapter_title,
                r.page,
            )
            for r in records
        ]
        if not values:
            return 0
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO progress (
                    manga_id, plugin_id, datetime, chapter_id, chapter_title, page
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                values,
            )
        logger.debug("Upserted %d progress records", len(values))
        return len(values)

    def delete_progress(self, keys: Iterable[CompositeKey]) -> int:
        """Delete progress records by key in one transaction."""
        return self._delete("progress", keys)

    def progress_digest(self) -> str:
        """Digest of the progress-record key set."""
        rows = self._fetch("SELECT manga_id, plugin_id FROM progress")
        return collection_digest(CompositeKey(r["manga_id"], r["plugin_id"]) for r in rows)

    def _delete(self, table: str, keys: Iterable[CompositeKey]) -> int:
        params = [tuple(key) for key in keys]
        if not params:
            return 0
        removed = 0
        with self._transaction() as conn:
            for param in params:
                cursor = conn.execute(
                    f"DELETE FROM {table} WHERE manga_id = ? AND plugin_id = ?", param
                )
                removed += cursor.rowcount
        logger.debug("Deleted %d rows from %s", removed, table)
        return removed

    # === Settings ===

    def get_setting(self, key: str) -> str | None:
        """Get a settings value."""
        rows = self._fetch("SELECT value FROM settings WHERE key = ?", (key,))
        return rows[0]["value"] if rows else None

    def set_setting(self, key: str, value: str | None) -> None:
        """Set a settings value; ``None`` removes the key."""
        with self._lock:
            if value is None:
                self._conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            else:
                self._conn.execute(
                    "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                    (key, value),
                )

    def _get_time(self, key: str) -> datetime | None:
        value = self.get_setting(key)
        return from_iso(value) if value else None

    def _set_time(self, key: str, value: datetime | None) -> None:
        self.set_setting(key, to_iso(value) if value is not None else None)

    # === Sync cursors ===

    def get_cursor(self, backend_id: str, kind: EntityKind) -> datetime | None:
        """Get the last-successful-sync cursor for a backend and entity kind."""
        return self._get_time(f"cursor.{backend_id}.{kind.value}")

    def set_cursor(self, backend_id: str, kind: EntityKind, value: datetime | None) -> None:
        """Set (or clear, with ``None``) a sync cursor."""
        self._set_time(f"cursor.{backend_id}.{kind.value}", value)

    def get_remote_mark(self, backend_id: str, kind: EntityKind) -> datetime | None:
        """Get the remote modification mark (server clock) of the last pass."""
        return self._get_time(f"mark.{backend_id}.{kind.value}")

    def set_remote_mark(self, backend_id: str, kind: EntityKind, value: datetime | None) -> None:
        """Set (or clear, with ``None``) a remote modification mark."""
        self._set_time(f"mark.{backend_id}.{kind.value}", value)

    def clear_cursors(self, backend_id: str) -> None:
        """Clear every entity cursor and mark of a backend, forcing full reconciliation."""
        for kind in EntityKind:
            self.set_cursor(backend_id, kind, None)
            self.set_remote_mark(backend_id, kind, None)

    def get_last_full_sync(self, backend_id: str, kind: EntityKind) -> datetime | None:
        """Get when a full reconciliation last completed against a backend.

        Unlike cursors this survives backend switches.
        """
        return self._get_time(f"full.{backend_id}.{kind.value}")

    def set_last_full_sync(self, backend_id: str, kind: EntityKind, value: datetime) -> None:
        """Record a completed full reconciliation."""
        self._set_time(f"full.{backend_id}.{kind.value}", value)

    def get_last_sync_at(self) -> datetime | None:
        """Get when the last sync invocation completed."""
        return self._get_time("last_sync_at")

    def set_last_sync_at(self, value: datetime) -> None:
        """Set when the last sync invocation completed."""
        self._set_time("last_sync_at", value)

    # === Remote key ledger ===

    def get_remote_keys(self, backend_id: str, kind: EntityKind) -> set[CompositeKey]:
        """Keys this replica last saw on a backend.

        A local-only key in this set was deleted remotely; any other
        local-only key has never reached the backend.
        """
        rows = self._fetch(
            "SELECT manga_id, plugin_id FROM remote_keys WHERE backend_id = ? AND kind = ?",
            (backend_id, kind.value),
        )
        return {CompositeKey(r["manga_id"], r["plugin_id"]) for r in rows}

    def set_remote_keys(
        self, backend_id: str, kind: EntityKind, keys: Iterable[CompositeKey]
    ) -> None:
        """Replace the key ledger of a backend in one transaction."""
        values = [(backend_id, kind.value, k.manga_id, k.plugin_id) for k in keys]
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM remote_keys WHERE backend_id = ? AND kind = ?",
                (backend_id, kind.value),
            )
            conn.executemany(
                "INSERT OR IGNORE INTO remote_keys VALUES (?, ?, ?, ?)",
                values,
            )

    def add_remote_keys(
        self, backend_id: str, kind: EntityKind, keys: Iterable[CompositeKey]
    ) -> None:
        """Record keys as present on a backend."""
        values = [(backend_id, kind.value, k.manga_id, k.plugin_id) for k in keys]
        if not values:
            return
        with self._transaction() as conn:
            conn.executemany("INSERT OR IGNORE INTO remote_keys VALUES (?, ?, ?, ?)", values)

    def discard_remote_keys(
        self, backend_id: str, kind: EntityKind, keys: Iterable[CompositeKey]
    ) -> None:
        """Forget keys removed from a backend."""
        values = [(backend_id, kind.value, k.manga_id, k.plugin_id) for k in keys]
        if not values:
            return
        with self._transaction() as conn:
            conn.executemany(
                "DELETE FROM remote_keys"
                " WHERE backend_id = ? AND kind = ? AND manga_id = ? AND plugin_id = ?",
                values,
            )
