"""Backend adapter for a PostgREST-style managed database.

Tables ``Saved`` and ``Record`` hold one row per (userId, mangaId,
pluginId) with columns mirroring the entity attributes plus a
server-maintained ``updatedAt``. Incremental reads filter on ``updatedAt``
because a record version can predate the previous pass. Reads page with
``Range`` headers of at most 1000 rows; deletes are issued per key since
there is no composite-key batch delete.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import httpx

from readsync.client.api import HTTPClient
from readsync.client.auth import PostgrestSession
from readsync.client.backends.base import chunked, decode_rows, translate_errors
from readsync.client.backends.dto import (
    POSTGREST_PROGRESS,
    POSTGREST_SAVED,
    WireFormat,
    decode_key,
    decode_postgrest_mark,
)
from readsync.client.sync.pager import drain_range
from readsync.core.config import SyncSettings
from readsync.core.entities import ProgressRecord, SavedEntry
from readsync.core.errors import BackendUnavailable, MalformedRemoteRecord
from readsync.core.timestamps import to_iso
from readsync.core.types import CompositeKey

if TYPE_CHECKING:
    from readsync.client.state import LocalLibraryStore
    from readsync.core.config import PostgrestConfig

logger = logging.getLogger(__name__)

R = TypeVar("R")

UPSERT_BATCH_SIZE = 1000


class PostgrestCollection(Generic[R]):
    """One user-scoped table."""

    def __init__(
        self,
        http: HTTPClient,
        table: str,
        user_id: str,
        wire: WireFormat[R],
        page_size: int,
    ) -> None:
        self._http = http
        self._table = table
        self._path = f"/{table}"
        self._user_id = user_id
        self._wire = wire
        self._page_size = page_size

    def _scope(self) -> dict[str, Any]:
        return {"userId": f"eq.{self._user_id}"}

    async def _select(self, params: dict[str, Any], headers: dict[str, str] | None = None) -> Any:
        with translate_errors(f"GET {self._path}"):
            response = await self._http.get(self._path, params=params, headers=headers)
        try:
            rows = response.json()
        except ValueError as e:
            raise BackendUnavailable(f"GET {self._path}: invalid JSON response") from e
        if not isinstance(rows, list):
            raise BackendUnavailable(f"GET {self._path}: expected a JSON array")
        return rows

    async def _select_all(self, params: dict[str, Any]) -> list[Any]:
        async def page(first: int, last: int) -> Sequence[Any]:
            return await self._select(
                params, headers={"Range-Unit": "items", "Range": f"{first}-{last}"}
            )

        return await drain_range(page, self._page_size)

    async def fetch_latest(self) -> R | None:
        params = {**self._scope(), "select": "*", "order": "datetime.desc", "limit": 1}
        rows = decode_rows(await self._select(params), self._wire.decode, self._table)
        return rows[0] if rows else None

    async def fetch_all_keys(self) -> set[CompositeKey]:
        params = {**self._scope(), "select": "mangaId,pluginId", "order": "mangaId,pluginId"}
        rows = await self._select_all(params)
        return set(decode_rows(rows, decode_key, self._table))

    async def fetch_since(self, since: datetime | None) -> list[R]:
        params = {**self._scope(), "select": "*", "order": "datetime.desc,mangaId,pluginId"}
        if since is not None:
            params["datetime"] = f"gt.{to_iso(since)}"
        rows = await self._select_all(params)
        records = decode_rows(rows, self._wire.decode, self._table)
        logger.debug("Fetched %d rows from %s since %s", len(records), self._table, since)
        return records

    async def fetch_mark(self) -> datetime | None:
        params = {**self._scope(), "select": "updatedAt", "order": "updatedAt.desc", "limit": 1}
        rows = await self._select(params)
        if not rows:
            return None
        try:
            return decode_postgrest_mark(rows[0])
        except MalformedRemoteRecord as e:
            raise BackendUnavailable(f"GET {self._path}: {e}") from e

    async def fetch_modified_since(self, mark: datetime | None) -> list[R]:
        params = {**self._scope(), "select": "*", "order": "mangaId,pluginId"}
        if mark is not None:
            params["updatedAt"] = f"gte.{to_iso(mark)}"
        rows = await self._select_all(params)
        records = decode_rows(rows, self._wire.decode, self._table)
        logger.debug("Fetched %d rows from %s written since %s", len(records), self._table, mark)
        return records

    async def push(self, records: list[R]) -> None:
        for batch in chunked(records, UPSERT_BATCH_SIZE):
            body = [{**self._wire.encode(r), "userId": self._user_id} for r in batch]
            with translate_errors(f"POST {self._path}"):
                await self._http.post(
                    self._path,
                    params={"on_conflict": "userId,mangaId,pluginId"},
                    json=body,
                    headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
                )
        if records:
            logger.info("Upserted %d rows into %s", len(records), self._table)

    async def delete(self, keys: Iterable[CompositeKey]) -> None:
        count = 0
        for key in keys:
            params = {
                **self._scope(),
                "mangaId": f"eq.{key.manga_id}",
                "pluginId": f"eq.{key.plugin_id}",
            }
            with translate_errors(f"DELETE {self._path}"):
                await self._http.delete(self._path, params=params)
            count += 1
        if count:
            logger.info("Deleted %d rows from %s", count, self._table)

    async def digest(self) -> str | None:
        return None


class PostgrestBackend:
    """Backend adapter for the managed database."""

    def __init__(
        self,
        config: PostgrestConfig,
        settings: SyncSettings | None = None,
        store: LocalLibraryStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or SyncSettings()
        self._config = config
        self.session = PostgrestSession(config, store)
        self._http = HTTPClient(
            config.rest_url,
            auth=self.session,
            timeout=config.timeout,
            transport=transport,
        )
        self._saved: PostgrestCollection[SavedEntry] = PostgrestCollection(
            self._http, "Saved", config.user_id, POSTGREST_SAVED, settings.postgrest_page_size
        )
        self._progress: PostgrestCollection[ProgressRecord] = PostgrestCollection(
            self._http, "Record", config.user_id, POSTGREST_PROGRESS, settings.postgrest_page_size
        )

    @property
    def id(self) -> str:
        return "postgrest"

    @property
    def name(self) -> str:
        return "Managed database"

    @property
    def is_configured(self) -> bool:
        return bool(self._config.url and self._config.api_key and self._config.user_id)

    @property
    def saved(self) -> PostgrestCollection[SavedEntry]:
        return self._saved

    @property
    def progress(self) -> PostgrestCollection[ProgressRecord]:
        return self._progress

    async def aclose(self) -> None:
        await self._http.aclose()
