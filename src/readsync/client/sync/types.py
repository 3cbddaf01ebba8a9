"""Shared types for sync passes.

This module provides:
- KindResult: Outcome of reconciling one entity kind
- SyncReport: Outcome of one sync invocation
- SyncEventType, SyncEvent: Notifications emitted by the coordinator
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto

from readsync.core.timestamps import utc_now
from readsync.core.types import EntityKind, SyncMode


@dataclass
class KindResult:
    """Result of reconciling one entity kind.

    Attributes:
        kind: Entity kind reconciled.
        mode: How the pass ran (full, incremental, shortcut, skipped).
        pushed: Records uploaded to the remote.
        applied: Records written to the local store.
        deleted: Local records removed because the remote no longer has them.
        error: Failure message, if the pass failed.
    """

    kind: EntityKind
    mode: SyncMode
    pushed: int = 0
    applied: int = 0
    deleted: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def changed(self) -> bool:
        return bool(self.pushed or self.applied or self.deleted)


@dataclass
class SyncReport:
    """Result of one sync invocation across entity kinds."""

    backend_id: str
    started_at: datetime
    results: dict[EntityKind, KindResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results.values())

    @property
    def errors(self) -> list[str]:
        return [f"{r.kind.value}: {r.error}" for r in self.results.values() if r.error]


class SyncEventType(Enum):
    """Lifecycle events of a sync invocation."""

    STARTED = auto()
    COMPLETED = auto()
    FAILED = auto()
    ENGINE_CHANGED = auto()


@dataclass(frozen=True)
class SyncEvent:
    """Notification emitted by the coordinator or the engine selector."""

    event_type: SyncEventType
    backend_id: str | None
    report: SyncReport | None = None
    timestamp: datetime = field(default_factory=utc_now)


# Type alias for event subscribers
SyncEventCallback = Callable[[SyncEvent], None]
