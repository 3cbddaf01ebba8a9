"""Tests for the library update pass."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from readsync.client.notifications import NotificationCenter, NotificationType
from readsync.client.state import LocalLibraryStore
from readsync.client.sync import EngineSelector
from readsync.client.update import LibraryUpdater
from readsync.core.entities import Chapter
from readsync.core.errors import SyncError
from readsync.core.types import CompositeKey
from tests.client.fakes import FakeBackend, saved

T0 = datetime(2025, 1, 1, tzinfo=UTC)


class FakeSource:
    """Content source returning fixed chapters."""

    def __init__(self, source_id: str, chapters: dict[str, Chapter], error: Exception | None = None):
        self._id = source_id
        self.chapters = chapters
        self.error = error
        self.requested: list[list[str]] = []

    @property
    def id(self) -> str:
        return self._id

    async def get_latest_chapters(self, manga_ids: list[str]) -> dict[str, Chapter]:
        self.requested.append(sorted(manga_ids))
        if self.error is not None:
            raise self.error
        return {m: c for m, c in self.chapters.items() if m in manga_ids}


@pytest.fixture
def store(tmp_path: Path) -> Iterator[LocalLibraryStore]:
    """Create a local store with two titles from one source."""
    store = LocalLibraryStore(tmp_path / "library.db")
    store.upsert_saved(
        [
            saved("m1", T0, latest_chapter=Chapter("c1", "One").encode()),
            saved("m2", T0, latest_chapter=Chapter("c5", "Five").encode()),
        ]
    )
    yield store
    store.close()


class TestLibraryUpdater:
    """Tests for LibraryUpdater.update()."""

    @pytest.mark.asyncio
    async def test_marks_new_chapters(self, store: LocalLibraryStore) -> None:
        """Titles with a new latest chapter should be flagged and re-versioned."""
        source = FakeSource("p1", {"m1": Chapter("c2", "Two"), "m2": Chapter("c5", "Five")})
        updater = LibraryUpdater(store, {"p1": source})

        result = await updater.update()

        assert [e.manga_id for e in result.updated] == ["m1"]
        assert source.requested == [["m1", "m2"]]
        entry = store.get_saved(CompositeKey("m1", "p1"))
        assert entry is not None
        assert entry.has_unread_update is True
        assert Chapter.decode(entry.latest_chapter) == Chapter("c2", "Two")
        assert entry.datetime > T0
        unchanged = store.get_saved(CompositeKey("m2", "p1"))
        assert unchanged is not None
        assert unchanged.has_unread_update is False
        assert updater.last_update is not None

    @pytest.mark.asyncio
    async def test_compares_titles_without_ids(self, store: LocalLibraryStore) -> None:
        """Chapters without ids should be compared by title."""
        store.upsert_saved([saved("m3", T0, latest_chapter=Chapter(None, "Ten").encode())])
        source = FakeSource("p1", {"m3": Chapter(None, "Ten")})

        result = await LibraryUpdater(store, {"p1": source}).update()

        assert result.updated == []

    @pytest.mark.asyncio
    async def test_failing_source_warns(self, store: LocalLibraryStore) -> None:
        """A failing source should be skipped with a warning notification."""
        notifier = NotificationCenter()
        source = FakeSource("p1", {}, error=RuntimeError("offline"))

        result = await LibraryUpdater(store, {"p1": source}, notifier=notifier).update()

        assert result.failed_sources == ["p1"]
        assert result.updated == []
        assert notifier.pending[0].type == NotificationType.WARNING

    @pytest.mark.asyncio
    async def test_missing_source_skipped(self, store: LocalLibraryStore) -> None:
        """Titles whose source is not installed should be skipped."""
        notifier = NotificationCenter()

        result = await LibraryUpdater(store, {}, notifier=notifier).update()

        assert result.checked == 0
        assert notifier.pending == []

    @pytest.mark.asyncio
    async def test_syncs_before_and_after(self, store: LocalLibraryStore) -> None:
        """With an engine active it should sync first and push the updates afterwards."""
        backend = FakeBackend("rest")
        selector = EngineSelector(store, [backend])
        selector.select("rest")
        source = FakeSource("p1", {"m1": Chapter("c2", "Two")})

        await LibraryUpdater(store, {"p1": source}, selector=selector).update()

        remote = backend.saved.records[CompositeKey("m1", "p1")]
        assert remote.has_unread_update is True
        assert store.get_last_sync_at() is not None

    @pytest.mark.asyncio
    async def test_skips_sync_within_cooldown(self, store: LocalLibraryStore) -> None:
        """A recent sync should not be repeated before the pass."""
        backend = FakeBackend("rest")
        selector = EngineSelector(store, [backend])
        selector.select("rest")
        await selector.sync()
        backend.saved.calls.clear()

        await LibraryUpdater(store, {}, selector=selector, cooldown=3600).update()

        assert backend.saved.calls == []

    @pytest.mark.asyncio
    async def test_failed_sync_before_raises(self, store: LocalLibraryStore) -> None:
        """A failed sync before the pass should abort it with an error notification."""
        backend = FakeBackend("rest")
        backend.saved.fail_on.add("fetch_since")
        notifier = NotificationCenter()
        selector = EngineSelector(store, [backend])
        selector.select("rest")
        updater = LibraryUpdater(store, {}, selector=selector, notifier=notifier)

        with pytest.raises(SyncError):
            await updater.update()

        assert any(n.type == NotificationType.ERROR for n in notifier.pending)
        assert updater.last_update is None
