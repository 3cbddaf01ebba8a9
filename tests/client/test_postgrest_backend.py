"""Tests for the Postgrest backend adapter."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from readsync.client.backends import PostgrestBackend
from readsync.core.config import PostgrestConfig, SyncSettings
from readsync.core.entities import SavedEntry
from readsync.core.errors import BackendUnavailable
from readsync.core.types import CompositeKey

WHEN = datetime(2025, 3, 1, 12, 30, 15, 123000, tzinfo=UTC)
WHEN_ISO = "2025-03-01T12:30:15.123+00:00"
BASE = "http://db.test/rest/v1"


def saved_row(manga_id: str) -> dict:
    return {
        "userId": "u1",
        "mangaId": manga_id,
        "pluginId": "p1",
        "datetime": WHEN_ISO,
        "updates": True,
        "latestChapter": "",
        "updatedAt": WHEN_ISO,
    }


def make_backend(page_size: int = 1000) -> PostgrestBackend:
    config = PostgrestConfig(
        url="http://db.test",
        api_key="anon",
        refresh_token="r1",
        user_id="u1",
        access_token="a1",
    )
    return PostgrestBackend(config, SyncSettings(postgrest_page_size=page_size))


class TestPostgrestReads:
    """Tests for Postgrest reads."""

    @pytest.mark.asyncio
    async def test_fetch_latest(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should order by datetime and limit to one row for the user."""
        httpx_mock.add_response(json=[saved_row("m1")])

        backend = make_backend()
        latest = await backend.saved.fetch_latest()
        await backend.aclose()

        assert latest == SavedEntry("m1", "p1", WHEN, has_unread_update=True)
        request = httpx_mock.get_requests()[0]
        assert request.url.path == "/rest/v1/Saved"
        assert request.url.params["userId"] == "eq.u1"
        assert request.url.params["order"] == "datetime.desc"
        assert request.url.params["limit"] == "1"
        assert request.headers["apikey"] == "anon"
        assert request.headers["Authorization"] == "Bearer a1"

    @pytest.mark.asyncio
    async def test_fetch_since_uses_range_headers(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should page with inclusive Range headers and filter by datetime."""
        httpx_mock.add_response(json=[saved_row("m1"), saved_row("m2")])
        httpx_mock.add_response(json=[saved_row("m3")])

        backend = make_backend(page_size=2)
        records = await backend.saved.fetch_since(WHEN)
        await backend.aclose()

        assert [r.manga_id for r in records] == ["m1", "m2", "m3"]
        requests = httpx_mock.get_requests()
        assert [r.headers["Range"] for r in requests] == ["0-1", "2-3"]
        assert requests[0].headers["Range-Unit"] == "items"
        assert requests[0].url.params["datetime"] == f"gt.{WHEN_ISO}"

    @pytest.mark.asyncio
    async def test_fetch_mark(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should read the newest updatedAt of the user's rows."""
        httpx_mock.add_response(json=[{"updatedAt": WHEN_ISO}])

        backend = make_backend()
        mark = await backend.saved.fetch_mark()
        await backend.aclose()

        assert mark == WHEN
        request = httpx_mock.get_requests()[0]
        assert request.url.params["select"] == "updatedAt"
        assert request.url.params["order"] == "updatedAt.desc"
        assert request.url.params["limit"] == "1"
        assert request.url.params["userId"] == "eq.u1"

    @pytest.mark.asyncio
    async def test_fetch_mark_empty(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return None for an empty table."""
        httpx_mock.add_response(json=[])

        backend = make_backend()
        assert await backend.progress.fetch_mark() is None
        await backend.aclose()

    @pytest.mark.asyncio
    async def test_fetch_modified_since_filters_on_updated_at(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should filter on updatedAt inclusively, not on the record version."""
        httpx_mock.add_response(json=[saved_row("m1")])

        backend = make_backend()
        records = await backend.saved.fetch_modified_since(WHEN)
        await backend.aclose()

        assert [r.manga_id for r in records] == ["m1"]
        params = httpx_mock.get_requests()[0].url.params
        assert params["updatedAt"] == f"gte.{WHEN_ISO}"
        assert "datetime" not in params

    @pytest.mark.asyncio
    async def test_fetch_modified_since_none_fetches_everything(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should omit the filter without a mark."""
        httpx_mock.add_response(json=[saved_row("m1")])

        backend = make_backend()
        await backend.saved.fetch_modified_since(None)
        await backend.aclose()

        assert "updatedAt" not in httpx_mock.get_requests()[0].url.params

    @pytest.mark.asyncio
    async def test_fetch_all_keys(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should select only the key columns."""
        httpx_mock.add_response(json=[{"mangaId": "a", "pluginId": "p"}])

        backend = make_backend()
        keys = await backend.progress.fetch_all_keys()
        await backend.aclose()

        assert keys == {CompositeKey("a", "p")}
        request = httpx_mock.get_requests()[0]
        assert request.url.path == "/rest/v1/Record"
        assert request.url.params["select"] == "mangaId,pluginId"

    @pytest.mark.asyncio
    async def test_digest_unsupported(self) -> None:
        """Should not support collection digests."""
        backend = make_backend()
        assert await backend.saved.digest() is None
        await backend.aclose()

    @pytest.mark.asyncio
    async def test_non_array_response(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should reject a response that is not an array."""
        httpx_mock.add_response(json={"message": "oops"})

        backend = make_backend()
        with pytest.raises(BackendUnavailable):
            await backend.saved.fetch_since(None)
        await backend.aclose()


class TestPostgrestWrites:
    """Tests for Postgrest writes."""

    @pytest.mark.asyncio
    async def test_push_upserts(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should upsert on the composite key with merge-duplicates."""
        httpx_mock.add_response(method="POST", status_code=201)

        backend = make_backend()
        await backend.saved.push([SavedEntry("m1", "p1", WHEN)])
        await backend.aclose()

        request = httpx_mock.get_requests()[0]
        assert request.url.params["on_conflict"] == "userId,mangaId,pluginId"
        assert "resolution=merge-duplicates" in request.headers["Prefer"]
        body = json.loads(request.content)
        assert body == [
            {
                "mangaId": "m1",
                "pluginId": "p1",
                "datetime": WHEN_ISO,
                "updates": False,
                "latestChapter": "",
                "userId": "u1",
            }
        ]

    @pytest.mark.asyncio
    async def test_push_nothing(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should not send a request for an empty batch."""
        backend = make_backend()
        await backend.saved.push([])
        await backend.aclose()

        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_delete_per_key(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should send one scoped DELETE per key."""
        httpx_mock.add_response(method="DELETE", status_code=204)
        httpx_mock.add_response(method="DELETE", status_code=204)

        backend = make_backend()
        await backend.progress.delete([CompositeKey("a", "p"), CompositeKey("b", "p")])
        await backend.aclose()

        requests = httpx_mock.get_requests()
        assert len(requests) == 2
        assert requests[0].url.params["userId"] == "eq.u1"
        assert requests[0].url.params["mangaId"] == "eq.a"
        assert requests[1].url.params["mangaId"] == "eq.b"
        assert requests[1].url.params["pluginId"] == "eq.p"
