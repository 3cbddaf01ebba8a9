"""Sync coordinator for reconciling the local library with a backend.

This module provides:
- SyncCoordinator: Runs full and incremental passes per entity kind

A pass either reconciles everything (no cursor yet) or only what changed
since the last pass. Local changes are found by version (the cursor);
remote changes by the server-side modification mark, since a replica that
was offline can push records whose versions predate the cursor. Cursor,
mark and the remote key ledger move once every write of the pass has
succeeded, so a failed or cancelled pass is simply redone.

The key ledger holds the keys last seen on the backend. It tells a record
deleted remotely apart from one that never reached the backend.

Full reconciliation, per key:
    | Local   | Remote  | Condition                     | Action          |
    |---------|---------|-------------------------------|-----------------|
    | present | absent  | key in ledger                 | delete locally  |
    | present | absent  | otherwise                     | push            |
    | absent  | present | -                             | apply locally   |
    | present | present | resolve() -> KEEP_LOCAL       | push            |
    | present | present | resolve() -> KEEP_REMOTE      | apply locally   |

Incremental passes apply the same rules to records changed on either side,
and delete locally every ledger key missing from the remote key set.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from readsync.client.backends.base import collection_for
from readsync.client.sync.accessors import EntityAccessor, accessor_for
from readsync.client.sync.conflict import Decision, resolve
from readsync.client.sync.types import (
    KindResult,
    SyncEvent,
    SyncEventCallback,
    SyncEventType,
    SyncReport,
)
from readsync.core.config import SyncSettings
from readsync.core.errors import BackendNotConfigured, ReadSyncError
from readsync.core.timestamps import utc_now, versions_equal
from readsync.core.types import CompositeKey, EntityKind, SyncMode

if TYPE_CHECKING:
    from readsync.client.backends.base import BackendAdapter, RemoteCollection
    from readsync.client.notifications import NotificationCenter
    from readsync.client.state import LocalLibraryStore

logger = logging.getLogger(__name__)

LockRegistry = dict[tuple[str, EntityKind], asyncio.Lock]


def same_latest(local: Any, remote: Any) -> bool:
    """Whether two "latest" records show the replicas are in step."""
    if local is None or remote is None:
        return local is None and remote is None
    return local.key == remote.key and versions_equal(local.version, remote.version)


def same_mark(a: datetime | None, b: datetime | None) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return versions_equal(a, b)


class SyncCoordinator:
    """Reconciles the local store with one backend.

    Usage:
        coordinator = SyncCoordinator(store, backend)
        report = await coordinator.sync()
        if not report.ok:
            print(report.errors)
    """

    def __init__(
        self,
        store: LocalLibraryStore,
        backend: BackendAdapter,
        settings: SyncSettings | None = None,
        notifier: NotificationCenter | None = None,
        locks: LockRegistry | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Local replica.
            backend: Remote replica.
            settings: Sync settings (defaults used when omitted).
            notifier: Receives a notification for every failed pass.
            locks: Single-flight locks, shared between coordinators built
                for the same store.
        """
        self._store = store
        self._backend = backend
        self._settings = settings or SyncSettings()
        self._notifier = notifier
        self._locks: LockRegistry = locks if locks is not None else {}
        self._callbacks: list[SyncEventCallback] = []

    @property
    def backend(self) -> BackendAdapter:
        return self._backend

    def subscribe(self, callback: SyncEventCallback) -> None:
        """Register a callback for sync events."""
        self._callbacks.append(callback)

    def unsubscribe(self, callback: SyncEventCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _emit(self, event_type: SyncEventType, report: SyncReport | None = None) -> None:
        event = SyncEvent(event_type, self._backend.id, report)
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception("Sync event callback failed")

    def _lock(self, kind: EntityKind) -> asyncio.Lock:
        key = (self._backend.id, kind)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _accessor(self, kind: EntityKind) -> tuple[EntityAccessor[Any], RemoteCollection[Any]]:
        return accessor_for(self._store, kind), collection_for(self._backend, kind)

    # === Public API ===

    async def sync(
        self,
        kinds: Iterable[EntityKind] | None = None,
        wait: bool = True,
        full: bool = False,
    ) -> SyncReport:
        """Sync the given entity kinds (all by default) concurrently.

        Args:
            kinds: Entity kinds to sync.
            wait: Wait for an in-flight pass of the same kind instead of
                skipping this one.
            full: Force full reconciliation even when a cursor exists.

        Raises:
            BackendNotConfigured: If the backend has no credentials.
        """
        if not self._backend.is_configured:
            raise BackendNotConfigured(f"Backend {self._backend.id!r} is not configured")

        kind_list = list(kinds) if kinds is not None else list(EntityKind)
        report = SyncReport(backend_id=self._backend.id, started_at=utc_now())
        self._emit(SyncEventType.STARTED, report)

        results = await asyncio.gather(
            *(self._run_kind(kind, wait=wait, full=full) for kind in kind_list)
        )
        for result in results:
            report.results[result.kind] = result

        if report.ok:
            await asyncio.to_thread(self._store.set_last_sync_at, utc_now())
            self._emit(SyncEventType.COMPLETED, report)
        else:
            if self._notifier is not None:
                self._notifier.error(
                    f"Sync with {self._backend.name} failed", "; ".join(report.errors)
                )
            self._emit(SyncEventType.FAILED, report)
        return report

    async def push_all(self, kind: EntityKind) -> int:
        """Push the whole local collection of one kind.

        Returns:
            Number of records pushed.
        """
        accessor, remote = self._accessor(kind)
        async with self._lock(kind):
            records = await accessor.get_all()
            if records:
                await remote.push(records)
                await asyncio.to_thread(
                    self._store.add_remote_keys,
                    self._backend.id,
                    kind,
                    [accessor.key(r) for r in records],
                )
        logger.info("Pushed %d %s records to %s", len(records), kind.value, self._backend.id)
        return len(records)

    async def delete(self, kind: EntityKind, keys: Iterable[CompositeKey]) -> int:
        """Delete records on both replicas.

        The remote delete runs first so a failure leaves the local copy in
        place.

        Returns:
            Number of local records removed.
        """
        key_list = list(keys)
        if not key_list:
            return 0
        accessor, remote = self._accessor(kind)
        async with self._lock(kind):
            await remote.delete(key_list)
            await asyncio.to_thread(
                self._store.discard_remote_keys, self._backend.id, kind, key_list
            )
            return await accessor.delete(key_list)

    # === Passes ===

    async def _run_kind(self, kind: EntityKind, wait: bool, full: bool) -> KindResult:
        lock = self._lock(kind)
        if lock.locked() and not wait:
            logger.debug("Skipping %s sync, a pass is already running", kind.value)
            return KindResult(kind, SyncMode.SKIPPED)

        async with lock:
            mode = SyncMode.FULL
            try:
                cursor = await asyncio.to_thread(self._store.get_cursor, self._backend.id, kind)
                if cursor is None or full:
                    return await self._full_reconcile(kind)
                mode = SyncMode.INCREMENTAL
                return await self._incremental_sync(kind)
            except ReadSyncError as e:
                logger.error("%s sync with %s failed: %s", kind.value, self._backend.id, e)
                return KindResult(kind, mode, error=str(e))
            except Exception as e:
                logger.exception("%s sync with %s failed", kind.value, self._backend.id)
                return KindResult(kind, mode, error=f"{type(e).__name__}: {e}")

    async def full_reconcile(self, kind: EntityKind) -> KindResult:
        """Reconcile the entire collection of one kind."""
        async with self._lock(kind):
            return await self._full_reconcile(kind)

    async def incremental_sync(self, kind: EntityKind) -> KindResult:
        """Reconcile what changed since the cursor; falls back to a full pass."""
        async with self._lock(kind):
            cursor = await asyncio.to_thread(self._store.get_cursor, self._backend.id, kind)
            if cursor is None:
                return await self._full_reconcile(kind)
            return await self._incremental_sync(kind)

    async def _full_reconcile(self, kind: EntityKind) -> KindResult:
        started = utc_now()
        backend_id = self._backend.id
        accessor, remote = self._accessor(kind)
        result = KindResult(kind, SyncMode.FULL)
        logger.info("Full reconciliation of %s with %s", kind.value, backend_id)

        last_full = await asyncio.to_thread(self._store.get_last_full_sync, backend_id, kind)
        mark = await remote.fetch_mark()

        if last_full is not None and await self._digest_matches(accessor, remote):
            logger.info("%s already in step with %s", kind.value, backend_id)
            keys = {accessor.key(r) for r in await accessor.get_all()}
            await self._mark_synced(kind, started, mark, keys, full=True)
            result.mode = SyncMode.UP_TO_DATE
            return result

        seen = await asyncio.to_thread(self._store.get_remote_keys, backend_id, kind)
        remote_by_key = {r.key: r for r in await remote.fetch_since(None)}
        local_by_key = {accessor.key(r): r for r in await accessor.get_all()}

        to_push: list[Any] = []
        to_apply: list[Any] = []
        to_delete: list[CompositeKey] = []

        for key, local in local_by_key.items():
            remote_record = remote_by_key.get(key)
            if remote_record is None:
                # Seen remotely before, so it was deleted there
                if key in seen:
                    to_delete.append(key)
                else:
                    to_push.append(local)
                continue
            resolution = resolve(local, remote_record)
            if resolution.decision is Decision.KEEP_LOCAL:
                to_push.append(local)
            elif resolution.decision is Decision.KEEP_REMOTE:
                to_apply.append(remote_record)

        to_apply.extend(r for key, r in remote_by_key.items() if key not in local_by_key)

        if to_push:
            await remote.push(to_push)
        result.applied = await accessor.batch_upsert(to_apply)
        result.deleted = await accessor.delete(to_delete)
        result.pushed = len(to_push)

        keys = set(remote_by_key) | {accessor.key(r) for r in to_push}
        await self._mark_synced(kind, started, mark, keys, full=True)
        logger.info(
            "Full reconciliation of %s done: %d pushed, %d applied, %d deleted",
            kind.value,
            result.pushed,
            result.applied,
            result.deleted,
        )
        return result

    async def _incremental_sync(self, kind: EntityKind) -> KindResult:
        started = utc_now()
        backend_id = self._backend.id
        accessor, remote = self._accessor(kind)
        cursor = await asyncio.to_thread(self._store.get_cursor, backend_id, kind)
        last_mark = await asyncio.to_thread(self._store.get_remote_mark, backend_id, kind)

        remote_latest = await remote.fetch_latest()
        local_latest = await accessor.get_latest()
        mark = await remote.fetch_mark()
        if same_latest(local_latest, remote_latest) and same_mark(mark, last_mark):
            logger.debug("%s in step with %s", kind.value, backend_id)
            return KindResult(kind, SyncMode.UP_TO_DATE)

        result = KindResult(kind, SyncMode.INCREMENTAL)
        seen = await asyncio.to_thread(self._store.get_remote_keys, backend_id, kind)
        remote_keys = await remote.fetch_all_keys()
        local_by_key = {accessor.key(r): r for r in await accessor.get_all()}
        local_changed = {accessor.key(r): r for r in await accessor.get_since(cursor)}
        remote_changed = {r.key: r for r in await remote.fetch_modified_since(last_mark)}

        gone = (seen - remote_keys - set(remote_changed)) & set(local_by_key)

        to_push: list[Any] = []
        to_apply: list[Any] = []

        for key, remote_record in remote_changed.items():
            local = local_by_key.get(key)
            if local is None:
                to_apply.append(remote_record)
                continue
            resolution = resolve(local, remote_record)
            if resolution.decision is Decision.KEEP_LOCAL:
                to_push.append(local)
            elif resolution.decision is Decision.KEEP_REMOTE:
                to_apply.append(remote_record)

        to_push.extend(
            r for key, r in local_changed.items() if key not in remote_changed and key not in gone
        )

        if to_push:
            await remote.push(to_push)
        result.applied = await accessor.batch_upsert(to_apply)
        result.deleted = await accessor.delete(gone)
        result.pushed = len(to_push)

        keys = remote_keys | set(remote_changed) | {accessor.key(r) for r in to_push}
        await self._mark_synced(kind, started, mark, keys, full=False)
        logger.info(
            "Incremental sync of %s done: %d pushed, %d applied, %d deleted",
            kind.value,
            result.pushed,
            result.applied,
            result.deleted,
        )
        return result

    async def _digest_matches(
        self, accessor: EntityAccessor[Any], remote: RemoteCollection[Any]
    ) -> bool:
        remote_digest = await remote.digest()
        if remote_digest is None or remote_digest != await accessor.digest():
            return False
        return same_latest(await accessor.get_latest(), await remote.fetch_latest())

    async def _mark_synced(
        self,
        kind: EntityKind,
        started: datetime,
        mark: datetime | None,
        remote_keys: set[CompositeKey],
        full: bool,
    ) -> None:
        backend_id = self._backend.id
        await asyncio.to_thread(self._store.set_remote_keys, backend_id, kind, remote_keys)
        await asyncio.to_thread(self._store.set_remote_mark, backend_id, kind, mark)
        await asyncio.to_thread(self._store.set_cursor, backend_id, kind, started)
        if full:
            await asyncio.to_thread(self._store.set_last_full_sync, backend_id, kind, started)
