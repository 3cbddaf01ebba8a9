"""Tests for the local library store."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from readsync.client.state import LocalLibraryStore, collection_digest
from readsync.core.entities import ProgressRecord, SavedEntry
from readsync.core.types import CompositeKey, EntityKind

T0 = datetime(2025, 1, 1, tzinfo=UTC)


def at(ms: int) -> datetime:
    return T0 + timedelta(milliseconds=ms)


@pytest.fixture
def store(tmp_path: Path) -> Iterator[LocalLibraryStore]:
    """Create a local store."""
    store = LocalLibraryStore(tmp_path / "library.db")
    yield store
    store.close()


class TestStoreCreation:
    """Tests for LocalLibraryStore initialization."""

    def test_creates_database(self, tmp_path: Path) -> None:
        """Should create database file."""
        db_path = tmp_path / "library.db"
        store = LocalLibraryStore(db_path)

        assert db_path.exists()
        store.close()

    def test_creates_parent_dirs(self, tmp_path: Path) -> None:
        """Should create parent directories."""
        db_path = tmp_path / "subdir" / "nested" / "library.db"
        store = LocalLibraryStore(db_path)

        assert db_path.exists()
        store.close()

    def test_reopens_existing_db(self, tmp_path: Path) -> None:
        """Should reopen existing database with data preserved."""
        db_path = tmp_path / "library.db"

        store1 = LocalLibraryStore(db_path)
        store1.upsert_saved([SavedEntry("m1", "p1", at(5), latest_chapter="x")])
        store1.close()

        store2 = LocalLibraryStore(db_path)
        entry = store2.get_saved(CompositeKey("m1", "p1"))
        assert entry is not None
        assert entry.latest_chapter == "x"
        assert entry.datetime == at(5)
        store2.close()

    def test_in_memory(self) -> None:
        """Should support an in-memory database."""
        store = LocalLibraryStore(":memory:")
        store.upsert_progress([ProgressRecord("m1", "p1", at(1))])
        assert len(store.list_progress()) == 1
        store.close()


class TestSavedEntries:
    """Tests for saved-entry operations."""

    def test_upsert_and_get(self, store: LocalLibraryStore) -> None:
        """Should store every attribute."""
        entry = SavedEntry("m1", "p1", at(10), has_unread_update=True, latest_chapter='{"id":"c1"}')

        assert store.upsert_saved([entry]) == 1
        assert store.get_saved(entry.key) == entry

    def test_upsert_replaces(self, store: LocalLibraryStore) -> None:
        """Should replace an existing entry with the same key."""
        store.upsert_saved([SavedEntry("m1", "p1", at(1))])
        store.upsert_saved([SavedEntry("m1", "p1", at(2), has_unread_update=True)])

        entries = store.list_saved()
        assert len(entries) == 1
        assert entries[0].has_unread_update is True

    def test_upsert_empty(self, store: LocalLibraryStore) -> None:
        """Should accept an empty batch."""
        assert store.upsert_saved([]) == 0

    def test_list_newest_first(self, store: LocalLibraryStore) -> None:
        """Should list entries by descending version."""
        store.upsert_saved([SavedEntry("a", "p", at(1)), SavedEntry("b", "p", at(3))])

        assert [e.manga_id for e in store.list_saved()] == ["b", "a"]

    def test_since_is_strict(self, store: LocalLibraryStore) -> None:
        """Should return only entries strictly newer than the bound."""
        store.upsert_saved(
            [SavedEntry("a", "p", at(1)), SavedEntry("b", "p", at(2)), SavedEntry("c", "p", at(3))]
        )

        assert [e.manga_id for e in store.saved_since(at(2))] == ["c"]
        assert len(store.saved_since(None)) == 3

    def test_latest(self, store: LocalLibraryStore) -> None:
        """Should return the entry with the greatest version."""
        assert store.latest_saved() is None
        store.upsert_saved([SavedEntry("a", "p", at(5)), SavedEntry("b", "p", at(1))])

        latest = store.latest_saved()
        assert latest is not None
        assert latest.manga_id == "a"

    def test_delete(self, store: LocalLibraryStore) -> None:
        """Should delete by key and count removed rows."""
        store.upsert_saved([SavedEntry("a", "p", at(1)), SavedEntry("b", "p", at(1))])

        removed = store.delete_saved([CompositeKey("a", "p"), CompositeKey("zz", "p")])

        assert removed == 1
        assert [e.manga_id for e in store.list_saved()] == ["b"]

    def test_digest_depends_on_keys_only(self, store: LocalLibraryStore) -> None:
        """The digest should match the key-set digest regardless of versions."""
        store.upsert_saved([SavedEntry("b", "p", at(1)), SavedEntry("a", "p", at(2))])

        expected = collection_digest([CompositeKey("a", "p"), CompositeKey("b", "p")])
        assert store.saved_digest() == expected
        store.upsert_saved([SavedEntry("a", "p", at(9))])
        assert store.saved_digest() == expected


class TestProgressRecords:
    """Tests for progress-record operations."""

    def test_upsert_and_get(self, store: LocalLibraryStore) -> None:
        """Should store nullable chapter fields."""
        record = ProgressRecord("m1", "p1", at(1), chapter_id=None, chapter_title=None, page=0)
        store.upsert_progress([record])

        assert store.get_progress(record.key) == record

    def test_list_with_limit(self, store: LocalLibraryStore) -> None:
        """Should page through records most recent first."""
        store.upsert_progress([ProgressRecord(f"m{i}", "p", at(i)) for i in range(5)])

        page = store.list_progress(limit=2, offset=1)
        assert [r.manga_id for r in page] == ["m3", "m2"]

    def test_since_and_latest(self, store: LocalLibraryStore) -> None:
        """Should filter by version and find the latest record."""
        store.upsert_progress([ProgressRecord("a", "p", at(1)), ProgressRecord("b", "p", at(2))])

        assert [r.manga_id for r in store.progress_since(at(1))] == ["b"]
        latest = store.latest_progress()
        assert latest is not None
        assert latest.manga_id == "b"

    def test_delete(self, store: LocalLibraryStore) -> None:
        """Should delete records by key."""
        store.upsert_progress([ProgressRecord("a", "p", at(1))])

        assert store.delete_progress([CompositeKey("a", "p")]) == 1
        assert store.list_progress() == []


class TestSettings:
    """Tests for settings, cursors and sync markers."""

    def test_set_get_delete(self, store: LocalLibraryStore) -> None:
        """Should store a value and remove it when set to None."""
        store.set_setting("engine.active", "rest")
        assert store.get_setting("engine.active") == "rest"

        store.set_setting("engine.active", None)
        assert store.get_setting("engine.active") is None

    def test_cursor_per_backend_and_kind(self, store: LocalLibraryStore) -> None:
        """Cursors should be scoped by backend and entity kind."""
        store.set_cursor("rest", EntityKind.SAVED, at(100))

        assert store.get_cursor("rest", EntityKind.SAVED) == at(100)
        assert store.get_cursor("rest", EntityKind.PROGRESS) is None
        assert store.get_cursor("postgrest", EntityKind.SAVED) is None

    def test_clear_cursors_keeps_full_marker(self, store: LocalLibraryStore) -> None:
        """Clearing cursors should keep the last-full-sync marker."""
        store.set_cursor("rest", EntityKind.SAVED, at(1))
        store.set_cursor("rest", EntityKind.PROGRESS, at(1))
        store.set_last_full_sync("rest", EntityKind.SAVED, at(1))

        store.clear_cursors("rest")

        assert store.get_cursor("rest", EntityKind.SAVED) is None
        assert store.get_cursor("rest", EntityKind.PROGRESS) is None
        assert store.get_last_full_sync("rest", EntityKind.SAVED) == at(1)

    def test_last_sync_at(self, store: LocalLibraryStore) -> None:
        """Should round-trip the last sync time."""
        assert store.get_last_sync_at() is None
        store.set_last_sync_at(at(42))
        assert store.get_last_sync_at() == at(42)


class TestRemoteLedger:
    """Tests for the remote key ledger and modification marks."""

    def test_mark_per_backend_and_kind(self, store: LocalLibraryStore) -> None:
        """Marks should be scoped like cursors and cleared with them."""
        store.set_remote_mark("rest", EntityKind.SAVED, at(5))

        assert store.get_remote_mark("rest", EntityKind.SAVED) == at(5)
        assert store.get_remote_mark("rest", EntityKind.PROGRESS) is None
        assert store.get_remote_mark("postgrest", EntityKind.SAVED) is None

        store.clear_cursors("rest")
        assert store.get_remote_mark("rest", EntityKind.SAVED) is None

    def test_set_replaces_keys(self, store: LocalLibraryStore) -> None:
        """Setting the ledger should drop keys not in the new set."""
        store.set_remote_keys("rest", EntityKind.SAVED, [CompositeKey("m1", "p1")])
        store.set_remote_keys("rest", EntityKind.SAVED, [CompositeKey("m2", "p1")])

        assert store.get_remote_keys("rest", EntityKind.SAVED) == {CompositeKey("m2", "p1")}

    def test_scoped_per_backend_and_kind(self, store: LocalLibraryStore) -> None:
        """Ledgers of other backends and kinds should be untouched."""
        store.set_remote_keys("rest", EntityKind.SAVED, [CompositeKey("m1", "p1")])
        store.set_remote_keys("postgrest", EntityKind.SAVED, [CompositeKey("m2", "p1")])

        assert store.get_remote_keys("rest", EntityKind.PROGRESS) == set()
        assert store.get_remote_keys("postgrest", EntityKind.SAVED) == {CompositeKey("m2", "p1")}

    def test_add_and_discard(self, store: LocalLibraryStore) -> None:
        """Adding should be idempotent and discarding should remove only the given keys."""
        keys = [CompositeKey("m1", "p1"), CompositeKey("m2", "p1")]
        store.add_remote_keys("rest", EntityKind.PROGRESS, keys)
        store.add_remote_keys("rest", EntityKind.PROGRESS, keys[:1])
        store.add_remote_keys("rest", EntityKind.PROGRESS, [])

        store.discard_remote_keys("rest", EntityKind.PROGRESS, keys[1:])

        assert store.get_remote_keys("rest", EntityKind.PROGRESS) == {keys[0]}

    def test_survives_cursor_reset(self, store: LocalLibraryStore) -> None:
        """Switching engines should keep what was seen remotely."""
        store.set_remote_keys("rest", EntityKind.SAVED, [CompositeKey("m1", "p1")])

        store.clear_cursors("rest")

        assert store.get_remote_keys("rest", EntityKind.SAVED) == {CompositeKey("m1", "p1")}
