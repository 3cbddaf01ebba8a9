"""Entity model: saved entries, progress records and chapter snapshots.

Both entity kinds are keyed by a ``CompositeKey`` and versioned by their
``datetime`` attribute (last-mutation time, authoritative for
last-write-wins).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Protocol

from readsync.core.timestamps import truncate
from readsync.core.types import CompositeKey


class VersionedRecord(Protocol):
    """Anything with a composite key and a version timestamp."""

    @property
    def key(self) -> CompositeKey: ...

    @property
    def version(self) -> datetime: ...

    def payload(self) -> tuple[Any, ...]: ...


@dataclass(frozen=True)
class Chapter:
    """Reference to a chapter as reported by a content source.

    Saved entries store the latest chapter as an encoded snapshot string so
    the local store and the remote never need to understand its structure.
    """

    id: str | None = None
    title: str | None = None

    def encode(self) -> str:
        """Encode as a compact JSON snapshot."""
        data = {k: v for k, v in (("id", self.id), ("title", self.title)) if v is not None}
        return json.dumps(data, separators=(",", ":"), sort_keys=True)

    @classmethod
    def decode(cls, snapshot: str) -> Chapter:
        """Decode a snapshot; unreadable snapshots decode to an empty chapter."""
        try:
            data = json.loads(snapshot) if snapshot else {}
        except json.JSONDecodeError:
            return cls()
        if not isinstance(data, dict):
            return cls()
        return cls(id=data.get("id"), title=data.get("title"))

    def differs_from(self, other: Chapter) -> bool:
        """Check whether this chapter is a different chapter than ``other``.

        Compares ids when both have one, then titles; when neither can be
        compared the chapters are assumed to differ.
        """
        if self.id is not None and other.id is not None:
            return self.id != other.id
        if self.title is not None and other.title is not None:
            return self.title != other.title
        return True


@dataclass(frozen=True)
class SavedEntry:
    """A bookmarked title.

    Attributes:
        manga_id: Title identifier within its content source.
        plugin_id: Content source identifier.
        datetime: Last mutation time (the record version).
        has_unread_update: Whether a new chapter appeared since last read.
        latest_chapter: Encoded ``Chapter`` snapshot.
    """

    manga_id: str
    plugin_id: str
    datetime: datetime
    has_unread_update: bool = False
    latest_chapter: str = field(default="")

    def __post_init__(self) -> None:
        object.__setattr__(self, "datetime", truncate(self.datetime))

    @property
    def key(self) -> CompositeKey:
        return CompositeKey(self.manga_id, self.plugin_id)

    @property
    def version(self) -> datetime:
        return self.datetime

    def payload(self) -> tuple[Any, ...]:
        """Attributes compared when versions tie."""
        return (self.has_unread_update, self.latest_chapter)

    def touched(self, when: datetime, **changes: Any) -> SavedEntry:
        """Return a copy with ``changes`` applied and a new version."""
        return replace(self, datetime=when, **changes)


@dataclass(frozen=True)
class ProgressRecord:
    """The furthest-read position in a title.

    Attributes:
        manga_id: Title identifier within its content source.
        plugin_id: Content source identifier.
        datetime: Last mutation time (the record version).
        chapter_id: Chapter being read, if known.
        chapter_title: Display title of that chapter.
        page: Page index within the chapter.
    """

    manga_id: str
    plugin_id: str
    datetime: datetime
    chapter_id: str | None = None
    chapter_title: str | None = None
    page: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "datetime", truncate(self.datetime))

    @property
    def key(self) -> CompositeKey:
        return CompositeKey(self.manga_id, self.plugin_id)

    @property
    def version(self) -> datetime:
        return self.datetime

    def payload(self) -> tuple[Any, ...]:
        """Attributes compared when versions tie."""
        return (self.chapter_id, self.chapter_title, self.page)
