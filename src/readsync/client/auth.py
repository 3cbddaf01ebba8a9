"""Token sessions for the backend transports.

This module provides:
- RestSession: email/password login yielding a refresh token, exchanged
  for short-lived access tokens
- PostgrestSession: refresh-token grant against the managed database's
  auth endpoint

Sessions persist the tokens they obtain in the local settings table when
given a store, so a restart does not force a new login. Concurrent
requests share one session; an ``asyncio.Lock`` makes sure only one of
them logs in or refreshes, and the others reuse its token.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from readsync.core.errors import AuthenticationError, BackendNotConfigured

if TYPE_CHECKING:
    from readsync.client.state import LocalLibraryStore
    from readsync.core.config import PostgrestConfig, RestConfig

logger = logging.getLogger(__name__)


def _json_field(response: httpx.Response, field: str) -> Any:
    try:
        data = response.json()
    except ValueError as e:
        raise AuthenticationError("Invalid JSON in auth response", response.status_code) from e
    if not isinstance(data, dict) or not data.get(field):
        raise AuthenticationError(f"No {field} in auth response", response.status_code)
    return data[field]


class RestSession:
    """Session for the REST backend.

    ``POST /auth/login`` exchanges credentials for a refresh token and
    ``POST /auth/refresh`` exchanges that for an access token. A rejected
    refresh token triggers one fresh login.
    """

    def __init__(self, config: RestConfig, store: LocalLibraryStore | None = None) -> None:
        self._config = config
        self._store = store
        self._refresh_token: str | None = None
        self._access_token: str | None = None
        self._lock = asyncio.Lock()
        if store is not None:
            self._refresh_token = store.get_setting("rest.refresh_token")
            self._access_token = store.get_setting("rest.access_token")

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def headers(self) -> dict[str, str]:
        if self._access_token:
            return {"Authorization": f"Bearer {self._access_token}"}
        return {}

    def _save(self) -> None:
        if self._store is not None:
            self._store.set_setting("rest.refresh_token", self._refresh_token)
            self._store.set_setting("rest.access_token", self._access_token)

    async def login(self, client: httpx.AsyncClient) -> None:
        """Obtain a refresh token with the configured credentials."""
        if not self._config.email or not self._config.password:
            raise BackendNotConfigured("Missing credentials for REST backend")

        logger.debug("Logging in to %s as %s", self._config.server_url, self._config.email)
        try:
            response = await client.post(
                "/auth/login",
                json={"email": self._config.email, "password": self._config.password},
            )
        except httpx.RequestError as e:
            raise AuthenticationError(f"Login request failed: {e}") from e

        if response.status_code != 200:
            raise AuthenticationError("Login failed", response.status_code)

        self._refresh_token = _json_field(response, "refreshToken")
        self._access_token = None
        self._save()

    async def refresh(self, client: httpx.AsyncClient, *, relogin: bool = True) -> None:
        """Exchange the refresh token for a new access token."""
        if self._refresh_token is None:
            await self.login(client)

        try:
            response = await client.post(
                "/auth/refresh", json={"refreshToken": self._refresh_token}
            )
        except httpx.RequestError as e:
            raise AuthenticationError(f"Token refresh request failed: {e}") from e

        if response.status_code == 401 and relogin:
            # Refresh token expired, log in again once
            logger.warning("Refresh token rejected, logging in again")
            await self.login(client)
            await self.refresh(client, relogin=False)
            return

        if response.status_code != 200:
            raise AuthenticationError("Token refresh failed", response.status_code)

        self._access_token = _json_field(response, "accessToken")
        self._save()
        logger.debug("Access token refreshed")

    async def ensure(self, client: httpx.AsyncClient) -> None:
        if self._access_token is not None:
            return
        async with self._lock:
            if self._access_token is None:
                await self.refresh(client)

    async def renew(self, client: httpx.AsyncClient, rejected: str | None) -> None:
        """Refresh after ``rejected`` got a 401, unless another request already did."""
        async with self._lock:
            if self._access_token != rejected:
                logger.debug("Access token already renewed")
                return
            await self.refresh(client)

    def logout(self) -> None:
        """Forget all tokens."""
        self._refresh_token = None
        self._access_token = None
        self._save()


class PostgrestSession:
    """Session for the managed-database backend.

    Requests carry the project ``apikey`` plus a bearer access token. The
    access token is renewed with the ``refresh_token`` grant; the provider
    rotates refresh tokens, so the new one replaces the old.
    """

    def __init__(self, config: PostgrestConfig, store: LocalLibraryStore | None = None) -> None:
        self._config = config
        self._store = store
        self._lock = asyncio.Lock()
        if store is not None:
            self._config.refresh_token = (
                store.get_setting("postgrest.refresh_token") or config.refresh_token
            )
            self._config.access_token = (
                store.get_setting("postgrest.access_token") or config.access_token
            )

    @property
    def user_id(self) -> str:
        return self._config.user_id

    @property
    def access_token(self) -> str | None:
        return self._config.access_token

    def headers(self) -> dict[str, str]:
        token = self._config.access_token or self._config.api_key
        return {"apikey": self._config.api_key, "Authorization": f"Bearer {token}"}

    async def refresh(self, client: httpx.AsyncClient) -> None:
        """Renew the access token with the refresh-token grant."""
        if not self._config.refresh_token:
            raise BackendNotConfigured("No session for Postgrest backend")

        try:
            response = await client.post(
                f"{self._config.url}/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": self._config.refresh_token},
                headers={"apikey": self._config.api_key},
            )
        except httpx.RequestError as e:
            raise AuthenticationError(f"Token refresh request failed: {e}") from e

        if response.status_code != 200:
            raise AuthenticationError("Session refresh failed", response.status_code)

        self._config.access_token = _json_field(response, "access_token")
        rotated = response.json().get("refresh_token")
        if rotated:
            self._config.refresh_token = rotated
        if self._store is not None:
            self._store.set_setting("postgrest.refresh_token", self._config.refresh_token)
            self._store.set_setting("postgrest.access_token", self._config.access_token)
        logger.debug("Postgrest session refreshed")

    async def ensure(self, client: httpx.AsyncClient) -> None:
        if self._config.access_token is not None:
            return
        async with self._lock:
            if self._config.access_token is None:
                await self.refresh(client)

    async def renew(self, client: httpx.AsyncClient, rejected: str | None) -> None:
        """Refresh after ``rejected`` got a 401, unless another request already did.

        The provider rotates refresh tokens, so two concurrent refreshes
        would invalidate each other.
        """
        async with self._lock:
            if self._config.access_token != rejected:
                logger.debug("Postgrest session already renewed")
                return
            await self.refresh(client)
