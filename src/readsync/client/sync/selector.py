"""Engine selection: which backend (if any) the library syncs with.

The active backend id is persisted in the local settings table so the
choice survives restarts. Switching backends clears the new backend's
cursors, so the next pass against it is a full reconciliation. Data is
never migrated between backends.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from readsync.client.sync.coordinator import LockRegistry, SyncCoordinator
from readsync.client.sync.types import SyncEvent, SyncEventType
from readsync.core.config import SyncSettings
from readsync.core.errors import BackendNotConfigured

if TYPE_CHECKING:
    from readsync.client.backends.base import BackendAdapter
    from readsync.client.notifications import NotificationCenter
    from readsync.client.state import LocalLibraryStore
    from readsync.client.sync.types import SyncEventCallback, SyncReport
    from readsync.core.types import EntityKind

logger = logging.getLogger(__name__)

ACTIVE_ENGINE_KEY = "engine.active"

EngineObserver = Callable[[str | None], None]


class EngineSelector:
    """Holds the single active backend."""

    def __init__(
        self,
        store: LocalLibraryStore,
        backends: Iterable[BackendAdapter],
        settings: SyncSettings | None = None,
        notifier: NotificationCenter | None = None,
    ) -> None:
        self._store = store
        self._backends = {backend.id: backend for backend in backends}
        self._settings = settings or SyncSettings()
        self._notifier = notifier
        self._locks: LockRegistry = {}
        self._observers: list[EngineObserver] = []
        self._event_callbacks: list[SyncEventCallback] = []

        active = store.get_setting(ACTIVE_ENGINE_KEY)
        if active is not None and active not in self._backends:
            logger.warning("Ignoring unknown active engine %r", active)
            active = None
        self._active_id: str | None = active

    @property
    def settings(self) -> SyncSettings:
        return self._settings

    @property
    def backends(self) -> dict[str, BackendAdapter]:
        return dict(self._backends)

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active(self) -> BackendAdapter | None:
        if self._active_id is None:
            return None
        return self._backends[self._active_id]

    def subscribe(self, observer: EngineObserver) -> Callable[[], None]:
        """Observe engine changes; returns a function that unsubscribes."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def on_sync_event(self, callback: SyncEventCallback) -> None:
        """Receive sync events from every coordinator this selector builds."""
        self._event_callbacks.append(callback)

    def select(self, backend_id: str | None) -> None:
        """Make ``backend_id`` the active backend (``None`` disables sync).

        Raises:
            KeyError: If no backend has that id.
        """
        if backend_id is not None and backend_id not in self._backends:
            raise KeyError(f"Unknown engine: {backend_id}")

        if backend_id is not None:
            self._store.clear_cursors(backend_id)
        self._store.set_setting(ACTIVE_ENGINE_KEY, backend_id)
        previous, self._active_id = self._active_id, backend_id
        logger.info("Sync engine changed from %s to %s", previous, backend_id)

        for observer in list(self._observers):
            try:
                observer(backend_id)
            except Exception:
                logger.exception("Engine observer failed")
        event = SyncEvent(SyncEventType.ENGINE_CHANGED, backend_id)
        for callback in list(self._event_callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception("Sync event callback failed")

    def coordinator(self) -> SyncCoordinator | None:
        """Build a coordinator for the active backend, or None."""
        backend = self.active
        if backend is None:
            return None
        coordinator = SyncCoordinator(
            self._store,
            backend,
            settings=self._settings,
            notifier=self._notifier,
            locks=self._locks,
        )
        for callback in self._event_callbacks:
            coordinator.subscribe(callback)
        return coordinator

    async def sync(
        self,
        kinds: Iterable[EntityKind] | None = None,
        wait: bool = True,
        full: bool = False,
    ) -> SyncReport | None:
        """Sync with the active backend.

        Returns:
            The report, or None when no backend is active or configured.
        """
        coordinator = self.coordinator()
        if coordinator is None:
            logger.debug("No sync engine selected, skipping sync")
            return None
        try:
            return await coordinator.sync(kinds, wait=wait, full=full)
        except BackendNotConfigured as e:
            logger.warning("%s", e)
            return None

    async def aclose(self) -> None:
        """Close every backend."""
        await asyncio.gather(*(backend.aclose() for backend in self._backends.values()))
