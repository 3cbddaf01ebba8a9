"""Exception hierarchy for readsync.

Transport failures are raised by the HTTP layer as ``APIError`` and
translated by backend adapters into ``BackendError`` subclasses, which
are the only failures the sync coordinator reasons about.
"""

from __future__ import annotations


class ReadSyncError(Exception):
    """Base exception for all readsync errors."""


class APIError(ReadSyncError):
    """HTTP request failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Credentials rejected, even after a token refresh."""


class BackendError(ReadSyncError):
    """Base exception for backend adapter failures."""


class BackendUnavailable(BackendError):
    """The remote store could not be reached or returned an error."""


class BackendAuthExpired(BackendError):
    """The session expired and re-authentication did not recover it."""


class BackendNotConfigured(BackendError):
    """No credentials or session are available for the backend."""


class MalformedRemoteRecord(ReadSyncError):
    """A single remote row failed validation.

    Attributes:
        payload: The offending row, as received.
    """

    def __init__(self, message: str, payload: object = None) -> None:
        super().__init__(message)
        self.payload = payload


class SyncError(ReadSyncError):
    """A sync pass failed."""
