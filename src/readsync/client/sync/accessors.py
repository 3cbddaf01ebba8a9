"""Entity accessors: one bundle of local-store operations per entity kind.

The coordinator runs a single reconciliation routine for both kinds; the
accessor supplies everything kind-specific. Store calls are blocking
sqlite3 work, so they run in a worker thread.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from readsync.core.types import CompositeKey, EntityKind

if TYPE_CHECKING:
    from readsync.client.state import LocalLibraryStore

R = TypeVar("R")


@dataclass(frozen=True)
class EntityAccessor(Generic[R]):
    """Local operations for one entity kind."""

    kind: EntityKind
    get_all_fn: Callable[[], list[R]]
    get_since_fn: Callable[[datetime | None], list[R]]
    get_latest_fn: Callable[[], R | None]
    upsert_fn: Callable[[Iterable[R]], int]
    delete_fn: Callable[[Iterable[CompositeKey]], int]
    digest_fn: Callable[[], str]

    @staticmethod
    def key(record: Any) -> CompositeKey:
        return record.key

    @staticmethod
    def version(record: Any) -> datetime:
        return record.version

    async def get_all(self) -> list[R]:
        return await asyncio.to_thread(self.get_all_fn)

    async def get_since(self, since: datetime | None) -> list[R]:
        return await asyncio.to_thread(self.get_since_fn, since)

    async def get_latest(self) -> R | None:
        return await asyncio.to_thread(self.get_latest_fn)

    async def batch_upsert(self, records: list[R]) -> int:
        if not records:
            return 0
        return await asyncio.to_thread(self.upsert_fn, records)

    async def delete(self, keys: Iterable[CompositeKey]) -> int:
        key_list = list(keys)
        if not key_list:
            return 0
        return await asyncio.to_thread(self.delete_fn, key_list)

    async def digest(self) -> str:
        return await asyncio.to_thread(self.digest_fn)


def accessor_for(store: LocalLibraryStore, kind: EntityKind) -> EntityAccessor[Any]:
    """Build the accessor for ``kind`` on top of a local store."""
    if kind is EntityKind.SAVED:
        return EntityAccessor(
            kind=kind,
            get_all_fn=store.list_saved,
            get_since_fn=store.saved_since,
            get_latest_fn=store.latest_saved,
            upsert_fn=store.upsert_saved,
            delete_fn=store.delete_saved,
            digest_fn=store.saved_digest,
        )
    return EntityAccessor(
        kind=kind,
        get_all_fn=store.list_progress,
        get_since_fn=store.progress_since,
        get_latest_fn=store.latest_progress,
        upsert_fn=store.upsert_progress,
        delete_fn=store.delete_progress,
        digest_fn=store.progress_digest,
    )
