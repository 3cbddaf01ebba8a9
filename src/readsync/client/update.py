"""Library update pass: look for new chapters of every saved title.

This module provides:
- ContentSource: Protocol a content source implements for update checks
- UpdateResult: Outcome of one update pass
- LibraryUpdater: Runs the pass and syncs the changes

Flow:
    1. Sync first when an engine is active and the last sync is older
       than the cool-down (waiting for any pass in flight)
    2. Ask each content source for the latest chapter of its titles
    3. Mark titles whose latest chapter changed as having an unread update
    4. Store the changes in one batch and sync again
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from readsync.client.sync.scheduler import needs_sync
from readsync.core.entities import Chapter, SavedEntry
from readsync.core.errors import SyncError
from readsync.core.timestamps import from_iso, to_iso, utc_now

if TYPE_CHECKING:
    from readsync.client.notifications import NotificationCenter
    from readsync.client.state import LocalLibraryStore
    from readsync.client.sync.selector import EngineSelector

logger = logging.getLogger(__name__)

LAST_UPDATE_KEY = "update.last_run"


class ContentSource(Protocol):
    """A content source (plugin) able to report new chapters."""

    @property
    def id(self) -> str: ...

    async def get_latest_chapters(self, manga_ids: list[str]) -> dict[str, Chapter]:
        """Latest chapter per title id; unknown titles are left out."""
        ...


@dataclass
class UpdateResult:
    """Outcome of one update pass."""

    checked: int = 0
    updated: list[SavedEntry] = field(default_factory=list)
    failed_sources: list[str] = field(default_factory=list)
    skipped: bool = False


class LibraryUpdater:
    """Refreshes the latest-chapter snapshot of saved titles."""

    def __init__(
        self,
        store: LocalLibraryStore,
        sources: Mapping[str, ContentSource],
        selector: EngineSelector | None = None,
        notifier: NotificationCenter | None = None,
        cooldown: float = 60.0,
    ) -> None:
        """Initialize the updater.

        Args:
            store: Local library.
            sources: Content sources by plugin id.
            selector: Engine selector used to sync around the pass.
            notifier: Receives warnings for failing sources.
            cooldown: Seconds since the last sync before syncing first.
        """
        self._store = store
        self._sources = dict(sources)
        self._selector = selector
        self._notifier = notifier
        self._cooldown = cooldown
        self._running = asyncio.Lock()

    @property
    def last_update(self) -> datetime | None:
        value = self._store.get_setting(LAST_UPDATE_KEY)
        return from_iso(value) if value else None

    @property
    def is_updating(self) -> bool:
        return self._running.locked()

    async def update(self) -> UpdateResult:
        """Run one update pass; a pass already in progress makes this a no-op.

        Raises:
            SyncError: If the sync before the pass fails.
        """
        if self._running.locked():
            logger.debug("Update already in progress, skipping")
            return UpdateResult(skipped=True)

        async with self._running:
            await self._sync_before()
            result = await self._check_sources()

            if result.updated:
                await asyncio.to_thread(self._store.upsert_saved, result.updated)
                logger.info("Marked %d titles as updated", len(result.updated))
                await self._sync_after()
            else:
                logger.debug("No updates found")

            await asyncio.to_thread(self._store.set_setting, LAST_UPDATE_KEY, to_iso(utc_now()))
            return result

    async def _sync_before(self) -> None:
        if self._selector is None or self._selector.active is None:
            return
        last_sync = await asyncio.to_thread(self._store.get_last_sync_at)
        if not needs_sync(last_sync, self._cooldown):
            return

        logger.info("Syncing before update (last sync: %s)", last_sync)
        report = await self._selector.sync(wait=True)
        if report is not None and not report.ok:
            message = "; ".join(report.errors)
            if self._notifier is not None:
                self._notifier.error("Sync failed", message)
            raise SyncError(f"Sync before update failed: {message}")

    async def _sync_after(self) -> None:
        if self._selector is None:
            return
        try:
            report = await self._selector.sync()
        except Exception:
            logger.exception("Sync failed after update")
            return
        if report is not None and not report.ok:
            logger.error("Sync failed after update: %s", "; ".join(report.errors))

    async def _check_sources(self) -> UpdateResult:
        result = UpdateResult()
        saved = await asyncio.to_thread(self._store.list_saved)

        by_plugin: dict[str, list[SavedEntry]] = defaultdict(list)
        for entry in saved:
            by_plugin[entry.plugin_id].append(entry)

        now = utc_now()
        for plugin_id, entries in by_plugin.items():
            source = self._sources.get(plugin_id)
            if source is None:
                logger.warning("Content source not found: %s", plugin_id)
                continue

            try:
                latest = await source.get_latest_chapters([e.manga_id for e in entries])
            except Exception as e:
                logger.warning("Error checking updates for %s: %s", plugin_id, e)
                result.failed_sources.append(plugin_id)
                if self._notifier is not None:
                    self._notifier.warning(
                        "Update check failed", f"Could not check {plugin_id} for updates"
                    )
                continue

            result.checked += len(entries)
            for entry in entries:
                chapter = latest.get(entry.manga_id)
                if chapter is None:
                    continue
                if chapter.differs_from(Chapter.decode(entry.latest_chapter)):
                    logger.info("Found update for %s (%s)", entry.manga_id, plugin_id)
                    result.updated.append(
                        entry.touched(
                            now, latest_chapter=chapter.encode(), has_unread_update=True
                        )
                    )

        return result
