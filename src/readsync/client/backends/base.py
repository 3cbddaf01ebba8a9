"""Backend adapter contract.

A backend is a stateless transport to one remote store. It exposes one
``RemoteCollection`` per entity kind; the sync coordinator only talks to
those collections, so every transport is interchangeable.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Protocol, TypeVar

from readsync.core.entities import ProgressRecord, SavedEntry
from readsync.core.errors import (
    APIError,
    AuthenticationError,
    BackendAuthExpired,
    BackendUnavailable,
    MalformedRemoteRecord,
)
from readsync.core.types import CompositeKey, EntityKind

logger = logging.getLogger(__name__)

R = TypeVar("R")


class RemoteCollection(Protocol[R]):
    """Remote side of one entity kind."""

    async def fetch_latest(self) -> R | None:
        """The remote record with the greatest version, or None if empty."""
        ...

    async def fetch_all_keys(self) -> set[CompositeKey]:
        """Every remote key for the current user."""
        ...

    async def fetch_since(self, since: datetime | None) -> list[R]:
        """Every remote record with a version strictly after ``since``.

        ``None`` fetches the whole collection.
        """
        ...

    async def fetch_mark(self) -> datetime | None:
        """Server time of the most recent remote write, or None if empty.

        Unlike versions, marks come from the server clock, so a record
        edited offline and pushed late still moves the mark.
        """
        ...

    async def fetch_modified_since(self, mark: datetime | None) -> list[R]:
        """Every remote record written at or after ``mark``.

        ``None`` fetches the whole collection.
        """
        ...

    async def push(self, records: list[R]) -> None:
        """Idempotently upsert records, keeping their own versions."""
        ...

    async def delete(self, keys: Iterable[CompositeKey]) -> None:
        """Delete records by key."""
        ...

    async def digest(self) -> str | None:
        """Equality token for the whole collection, or None if unsupported."""
        ...


class BackendAdapter(Protocol):
    """A remote store reachable through one transport."""

    @property
    def id(self) -> str:
        """Stable identifier, used to scope sync cursors."""
        ...

    @property
    def name(self) -> str:
        """Human-readable name."""
        ...

    @property
    def is_configured(self) -> bool:
        """Whether credentials or a session are available."""
        ...

    @property
    def saved(self) -> RemoteCollection[SavedEntry]: ...

    @property
    def progress(self) -> RemoteCollection[ProgressRecord]: ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


def collection_for(backend: BackendAdapter, kind: EntityKind) -> RemoteCollection[Any]:
    """Select the backend collection serving an entity kind."""
    if kind is EntityKind.SAVED:
        return backend.saved
    return backend.progress


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Map transport failures onto the backend error taxonomy."""
    try:
        yield
    except AuthenticationError as e:
        raise BackendAuthExpired(f"{operation}: {e}") from e
    except APIError as e:
        raise BackendUnavailable(f"{operation}: {e}") from e


def decode_rows(rows: Any, decode: Callable[[Any], R], source: str) -> list[R]:
    """Decode a JSON array, skipping (and logging) malformed rows."""
    if not isinstance(rows, list):
        raise BackendUnavailable(f"{source}: expected a JSON array, got {type(rows).__name__}")
    records: list[R] = []
    for row in rows:
        try:
            records.append(decode(row))
        except MalformedRemoteRecord as e:
            logger.warning("Skipping malformed row from %s: %s (%r)", source, e, e.payload)
    return records


def chunked(items: list[R], size: int) -> Iterator[list[R]]:
    """Split a list into consecutive chunks of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]
