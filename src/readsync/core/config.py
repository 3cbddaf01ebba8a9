"""Configuration classes for readsync.

Backend connection settings and sync tuning knobs. The CLI persists these
as JSON; library users construct them directly.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RestConfig:
    """Configuration for the token-authenticated REST backend.

    Attributes:
        server_url: Base URL of the server (e.g., "https://sync.example.com").
        email: Account email used to obtain a refresh token.
        password: Account password.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates.
    """

    server_url: str
    email: str
    password: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")


@dataclass
class PostgrestConfig:
    """Configuration for the managed-database (PostgREST) backend.

    Attributes:
        url: Project URL; the REST API lives under ``/rest/v1`` and the
            token endpoint under ``/auth/v1``.
        api_key: Public (anon) API key sent as the ``apikey`` header.
        refresh_token: Session refresh token from the provider login.
        user_id: Owning-user identifier every row is scoped by.
        access_token: Last known access token, if any.
        timeout: Request timeout in seconds.
    """

    url: str
    api_key: str
    refresh_token: str
    user_id: str
    access_token: str | None = None
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Normalize project URL."""
        self.url = self.url.rstrip("/")

    @property
    def rest_url(self) -> str:
        return f"{self.url}/rest/v1"


@dataclass
class SyncSettings:
    """Tuning knobs for the sync engine.

    Attributes:
        interval: Seconds between periodic sync passes.
        cooldown: Minimum age in seconds of the last sync before the
            library update pass syncs again first.
        rest_page_size: Records per page on the REST backend.
        key_page_size: Keys per page when fetching key sets over REST.
        postgrest_page_size: Rows per page on the Postgrest backend (max 1000).
    """

    interval: float = 60.0
    cooldown: float = 60.0
    rest_page_size: int = 50
    key_page_size: int = 1000
    postgrest_page_size: int = 1000

    def __post_init__(self) -> None:
        for name in ("rest_page_size", "key_page_size", "postgrest_page_size"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.postgrest_page_size > 1000:
            raise ValueError("postgrest_page_size cannot exceed 1000")
