"""Backend adapter for the bespoke token-authenticated REST API.

Endpoints (per collection, ``/saveds`` or ``/records``):

    GET    <path>?lm=1                       latest record (0 or 1 items)
    GET    <path>?os=<offset>&lm=<limit>[&ts=<ms>]   page, newest first
    GET    <path>?os=<offset>&lm=<limit>&us=<ms>     page written since <ms>
    GET    <path>/mark                       {"updatedAt": <ms> | null}
    GET    <path>/keys?os=<offset>&lm=<limit>        key page
    GET    <path>/hash                       {"hash": ...}
    PUT    <path>                            upsert batch
    DELETE <path>                            delete batch of keys

Versions travel as integer milliseconds since the epoch. ``ts`` filters on
the record version (strictly after); ``us`` filters on the time the server
last stored the row (at or after), and ``/mark`` returns the greatest such
time. Only ``us`` catches records edited offline and pushed late.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import httpx

from readsync.client.api import HTTPClient
from readsync.client.auth import RestSession
from readsync.client.backends.base import chunked, decode_rows, translate_errors
from readsync.client.backends.dto import (
    REST_PROGRESS,
    REST_SAVED,
    WireFormat,
    decode_key,
    decode_rest_mark,
    encode_key,
)
from readsync.client.sync.pager import drain_offset
from readsync.core.config import SyncSettings
from readsync.core.entities import ProgressRecord, SavedEntry
from readsync.core.errors import BackendUnavailable, MalformedRemoteRecord
from readsync.core.timestamps import to_millis
from readsync.core.types import CompositeKey

if TYPE_CHECKING:
    from readsync.client.state import LocalLibraryStore
    from readsync.core.config import RestConfig

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Upper bound on records per PUT/DELETE body
PUSH_BATCH_SIZE = 500


class RestCollection(Generic[R]):
    """One REST collection endpoint."""

    def __init__(
        self,
        http: HTTPClient,
        path: str,
        wire: WireFormat[R],
        page_size: int,
        key_page_size: int,
    ) -> None:
        self._http = http
        self._path = path
        self._wire = wire
        self._page_size = page_size
        self._key_page_size = key_page_size

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        with translate_errors(f"GET {path}"):
            response = await self._http.get(path, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise BackendUnavailable(f"GET {path}: invalid JSON response") from e

    async def fetch_latest(self) -> R | None:
        rows = decode_rows(await self._get_json(self._path, {"lm": 1}), self._wire.decode, self._path)
        return rows[0] if rows else None

    async def fetch_all_keys(self) -> set[CompositeKey]:
        path = f"{self._path}/keys"

        async def page(offset: int, limit: int) -> Sequence[Any]:
            rows = await self._get_json(path, {"os": offset, "lm": limit})
            if not isinstance(rows, list):
                raise BackendUnavailable(f"GET {path}: expected a JSON array")
            return rows

        rows = await drain_offset(page, self._key_page_size)
        return set(decode_rows(rows, decode_key, path))

    async def _fetch_pages(self, filters: dict[str, Any]) -> list[R]:
        async def page(offset: int, limit: int) -> Sequence[Any]:
            rows = await self._get_json(self._path, {"os": offset, "lm": limit, **filters})
            if not isinstance(rows, list):
                raise BackendUnavailable(f"GET {self._path}: expected a JSON array")
            return rows

        # Count raw rows for termination, decode afterwards
        rows = await drain_offset(page, self._page_size)
        return decode_rows(rows, self._wire.decode, self._path)

    async def fetch_since(self, since: datetime | None) -> list[R]:
        filters = {} if since is None else {"ts": to_millis(since)}
        records = await self._fetch_pages(filters)
        logger.debug("Fetched %d records from %s since %s", len(records), self._path, since)
        return records

    async def fetch_mark(self) -> datetime | None:
        path = f"{self._path}/mark"
        try:
            return decode_rest_mark(await self._get_json(path))
        except MalformedRemoteRecord as e:
            raise BackendUnavailable(f"GET {path}: {e}") from e

    async def fetch_modified_since(self, mark: datetime | None) -> list[R]:
        filters = {} if mark is None else {"us": to_millis(mark)}
        records = await self._fetch_pages(filters)
        logger.debug("Fetched %d records from %s written since %s", len(records), self._path, mark)
        return records

    async def push(self, records: list[R]) -> None:
        for batch in chunked(records, PUSH_BATCH_SIZE):
            with translate_errors(f"PUT {self._path}"):
                await self._http.put(self._path, json=[self._wire.encode(r) for r in batch])
        if records:
            logger.info("Pushed %d records to %s", len(records), self._path)

    async def delete(self, keys: Iterable[CompositeKey]) -> None:
        key_list = list(keys)
        for batch in chunked(key_list, PUSH_BATCH_SIZE):
            with translate_errors(f"DELETE {self._path}"):
                await self._http.delete(self._path, json=[encode_key(k) for k in batch])
        if key_list:
            logger.info("Deleted %d records from %s", len(key_list), self._path)

    async def digest(self) -> str | None:
        data = await self._get_json(f"{self._path}/hash")
        if not isinstance(data, dict) or not isinstance(data.get("hash"), str):
            logger.warning("Ignoring malformed digest from %s/hash", self._path)
            return None
        return str(data["hash"])


class RestBackend:
    """Backend adapter for the REST API."""

    def __init__(
        self,
        config: RestConfig,
        settings: SyncSettings | None = None,
        store: LocalLibraryStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            config: Server URL and credentials.
            settings: Page sizes (defaults used when omitted).
            store: Local store used to persist session tokens.
            transport: Custom httpx transport (tests).
        """
        settings = settings or SyncSettings()
        self._config = config
        self.session = RestSession(config, store)
        self._http = HTTPClient(
            config.server_url,
            auth=self.session,
            timeout=config.timeout,
            verify_ssl=config.verify_ssl,
            transport=transport,
        )
        self._saved: RestCollection[SavedEntry] = RestCollection(
            self._http, "/saveds", REST_SAVED, settings.rest_page_size, settings.key_page_size
        )
        self._progress: RestCollection[ProgressRecord] = RestCollection(
            self._http, "/records", REST_PROGRESS, settings.rest_page_size, settings.key_page_size
        )

    @property
    def id(self) -> str:
        return "rest"

    @property
    def name(self) -> str:
        return "REST server"

    @property
    def is_configured(self) -> bool:
        return bool(self._config.server_url and self._config.email and self._config.password)

    @property
    def saved(self) -> RestCollection[SavedEntry]:
        return self._saved

    @property
    def progress(self) -> RestCollection[ProgressRecord]:
        return self._progress

    async def aclose(self) -> None:
        await self._http.aclose()
