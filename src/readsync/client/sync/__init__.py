"""Sync engine for the local library.

Architecture:
    PeriodicSync → EngineSelector → SyncCoordinator → BackendAdapter

Components:
- **EngineSelector**: Holds the active backend, builds coordinators
- **SyncCoordinator**: Full and incremental passes per entity kind
- **EntityAccessor**: Kind-specific local operations for the coordinator
- **resolve**: Last-write-wins conflict resolution
- **drain_offset / drain_range**: Pagination until a short page
- **PeriodicSync**: APScheduler job calling the selector
"""

from readsync.client.sync.accessors import EntityAccessor, accessor_for
from readsync.client.sync.conflict import Decision, Resolution, resolve
from readsync.client.sync.coordinator import SyncCoordinator, same_latest
from readsync.client.sync.pager import drain_offset, drain_range
from readsync.client.sync.scheduler import PeriodicSync, needs_sync
from readsync.client.sync.selector import ACTIVE_ENGINE_KEY, EngineSelector
from readsync.client.sync.types import (
    KindResult,
    SyncEvent,
    SyncEventCallback,
    SyncEventType,
    SyncReport,
)

__all__ = [
    "ACTIVE_ENGINE_KEY",
    "Decision",
    "EngineSelector",
    "EntityAccessor",
    "KindResult",
    "PeriodicSync",
    "Resolution",
    "SyncCoordinator",
    "SyncEvent",
    "SyncEventCallback",
    "SyncEventType",
    "SyncReport",
    "accessor_for",
    "drain_offset",
    "drain_range",
    "needs_sync",
    "resolve",
    "same_latest",
]
