"""Shared types for readsync.

This module defines the small value types used by every layer:
entity kinds, composite keys and sync modes.
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple


class EntityKind(str, Enum):
    """Kind of synchronized entity.

    The value doubles as the settings-key fragment for sync cursors.
    """

    SAVED = "saved"
    PROGRESS = "progress"


class SyncMode(str, Enum):
    """How a sync pass reconciled one entity kind."""

    FULL = "full"
    INCREMENTAL = "incremental"
    UP_TO_DATE = "up_to_date"  # latest-record shortcut hit
    SKIPPED = "skipped"  # another pass held the lock


class CompositeKey(NamedTuple):
    """The (manga_id, plugin_id) pair identifying a saved entry or progress record.

    Being a tuple, keys order lexically by manga_id then plugin_id.
    """

    manga_id: str
    plugin_id: str

    def __str__(self) -> str:
        return f"{self.manga_id}|{self.plugin_id}"
