"""Core module - Entities, keys, timestamps, configuration and errors."""

from readsync.core.config import PostgrestConfig, RestConfig, SyncSettings
from readsync.core.entities import Chapter, ProgressRecord, SavedEntry
from readsync.core.errors import (
    APIError,
    AuthenticationError,
    BackendAuthExpired,
    BackendError,
    BackendNotConfigured,
    BackendUnavailable,
    MalformedRemoteRecord,
    ReadSyncError,
    SyncError,
)
from readsync.core.timestamps import (
    VERSION_EPSILON,
    from_iso,
    from_millis,
    to_iso,
    to_millis,
    utc_now,
    versions_equal,
)
from readsync.core.types import CompositeKey, EntityKind, SyncMode

__all__ = [
    # Config
    "PostgrestConfig",
    "RestConfig",
    "SyncSettings",
    # Entities
    "Chapter",
    "ProgressRecord",
    "SavedEntry",
    # Errors
    "APIError",
    "AuthenticationError",
    "BackendAuthExpired",
    "BackendError",
    "BackendNotConfigured",
    "BackendUnavailable",
    "MalformedRemoteRecord",
    "ReadSyncError",
    "SyncError",
    # Timestamps
    "VERSION_EPSILON",
    "from_iso",
    "from_millis",
    "to_iso",
    "to_millis",
    "utc_now",
    "versions_equal",
    # Types
    "CompositeKey",
    "EntityKind",
    "SyncMode",
]
