"""Async HTTP client shared by the backend adapters.

This module provides:
- HTTPClient: httpx.AsyncClient wrapper with JSON error mapping
- TokenAuth: protocol for the session objects in ``readsync.client.auth``

A 401 response triggers exactly one transparent renewal of the session
followed by a retry of the same request; a second 401 surfaces as
``AuthenticationError``. Renewal names the rejected token so that
concurrent requests failing together refresh only once.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from readsync.core.errors import APIError, AuthenticationError

logger = logging.getLogger(__name__)


class TokenAuth(Protocol):
    """Session that can authorize requests and refresh itself."""

    @property
    def access_token(self) -> str | None: ...

    def headers(self) -> dict[str, str]:
        """Headers to attach to an authenticated request."""
        ...

    async def ensure(self, client: httpx.AsyncClient) -> None:
        """Obtain a token if the session has none yet."""
        ...

    async def renew(self, client: httpx.AsyncClient, rejected: str | None) -> None:
        """Replace ``rejected`` with a fresh access token."""
        ...


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP error {response.status_code}"
    if isinstance(data, dict):
        for field in ("detail", "message", "error_description", "error"):
            if data.get(field):
                return str(data[field])
    return f"HTTP error {response.status_code}"


class HTTPClient:
    """Async HTTP client for a JSON API."""

    def __init__(
        self,
        base_url: str,
        auth: TokenAuth | None = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL every request path is joined to.
            auth: Session used for authenticated requests.
            timeout: Request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
            headers: Extra headers sent with every request.
            transport: Custom httpx transport (tests).
        """
        self._auth = auth
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            verify=verify_ssl,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    async def __aenter__(self) -> HTTPClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    @property
    def raw(self) -> httpx.AsyncClient:
        """The underlying httpx client (used by sessions for token calls)."""
        return self._client

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: Any,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        merged = dict(self._auth.headers()) if self._auth else {}
        if headers:
            merged.update(headers)
        logger.debug("%s %s params=%s", method, path, params)
        try:
            return await self._client.request(
                method, path, params=params, json=json, headers=merged
            )
        except httpx.RequestError as e:
            raise APIError(f"{method} {path} failed: {e}") from e

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request, refreshing the session once on 401.

        Raises:
            AuthenticationError: 401 persisted after a refresh.
            APIError: Network failure or any other non-2xx status.
        """
        if self._auth is not None:
            await self._auth.ensure(self._client)

        token = self._auth.access_token if self._auth is not None else None
        response = await self._send(method, path, params, json, headers)

        if response.status_code == 401 and self._auth is not None:
            logger.warning("%s %s returned 401, refreshing session and retrying", method, path)
            await self._auth.renew(self._client, token)
            response = await self._send(method, path, params, json, headers)

        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code >= 400:
            raise APIError(_error_detail(response), response.status_code)
        return response

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", path, **kwargs)
