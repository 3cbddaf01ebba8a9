"""Typed wire formats for remote records.

Each transport names fields the same way (camelCase) but encodes the
version differently: the REST API uses integer milliseconds, the
Postgrest API ISO-8601 strings. Decoding validates required fields and
raises ``MalformedRemoteRecord`` instead of silently defaulting.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, TypeVar

from readsync.core.entities import ProgressRecord, SavedEntry
from readsync.core.errors import MalformedRemoteRecord
from readsync.core.timestamps import from_iso, from_millis, to_iso, to_millis
from readsync.core.types import CompositeKey

R = TypeVar("R")


def _require(data: dict[str, Any], field: str, kind: type | tuple[type, ...]) -> Any:
    if field not in data or data[field] is None:
        raise MalformedRemoteRecord(f"Missing field {field!r}", data)
    value = data[field]
    # bool is an int subclass; reject it where a number is expected
    if not isinstance(value, kind) or (isinstance(value, bool) and bool not in _as_tuple(kind)):
        raise MalformedRemoteRecord(f"Field {field!r} has type {type(value).__name__}", data)
    return value


def _optional(data: dict[str, Any], field: str, kind: type | tuple[type, ...]) -> Any:
    if data.get(field) is None:
        return None
    return _require(data, field, kind)


def _as_tuple(kind: type | tuple[type, ...]) -> tuple[type, ...]:
    return kind if isinstance(kind, tuple) else (kind,)


def _millis(data: dict[str, Any], field: str = "datetime") -> datetime:
    try:
        return from_millis(_require(data, field, (int, float)))
    except (OverflowError, ValueError) as e:
        raise MalformedRemoteRecord(f"Invalid datetime: {e}", data) from e


def _iso(data: dict[str, Any], field: str = "datetime") -> datetime:
    try:
        return from_iso(_require(data, field, str))
    except ValueError as e:
        raise MalformedRemoteRecord(f"Invalid datetime: {e}", data) from e


def _object(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedRemoteRecord(f"Expected object, got {type(data).__name__}", data)
    return data


def decode_key(data: Any) -> CompositeKey:
    """Decode a ``{mangaId, pluginId}`` key row."""
    data = _object(data)
    return CompositeKey(_require(data, "mangaId", str), _require(data, "pluginId", str))


def encode_key(key: CompositeKey) -> dict[str, str]:
    return {"mangaId": key.manga_id, "pluginId": key.plugin_id}


def decode_rest_mark(data: Any) -> datetime | None:
    """Decode a REST ``{"updatedAt": <ms> | null}`` mark."""
    data = _object(data)
    if data.get("updatedAt") is None:
        return None
    return _millis(data, "updatedAt")


def decode_postgrest_mark(data: Any) -> datetime:
    """Decode the ``updatedAt`` column of a Postgrest row."""
    return _iso(_object(data), "updatedAt")


@dataclass(frozen=True)
class WireFormat(Generic[R]):
    """Encoder/decoder pair for one entity kind on one transport."""

    encode: Callable[[R], dict[str, Any]]
    decode: Callable[[Any], R]


def _saved_decoder(timestamp: Callable[[dict[str, Any]], datetime]) -> Callable[[Any], SavedEntry]:
    def decode(data: Any) -> SavedEntry:
        data = _object(data)
        key = decode_key(data)
        return SavedEntry(
            manga_id=key.manga_id,
            plugin_id=key.plugin_id,
            datetime=timestamp(data),
            has_unread_update=_require(data, "updates", bool),
            latest_chapter=_optional(data, "latestChapter", str) or "",
        )

    return decode


def _progress_decoder(
    timestamp: Callable[[dict[str, Any]], datetime],
) -> Callable[[Any], ProgressRecord]:
    def decode(data: Any) -> ProgressRecord:
        data = _object(data)
        key = decode_key(data)
        return ProgressRecord(
            manga_id=key.manga_id,
            plugin_id=key.plugin_id,
            datetime=timestamp(data),
            chapter_id=_optional(data, "chapterId", str),
            chapter_title=_optional(data, "chapterTitle", str),
            page=_require(data, "page", int),
        )

    return decode


def _saved_encoder(timestamp: Callable[[datetime], Any]) -> Callable[[SavedEntry], dict[str, Any]]:
    def encode(entry: SavedEntry) -> dict[str, Any]:
        return {
            "mangaId": entry.manga_id,
            "pluginId": entry.plugin_id,
            "datetime": timestamp(entry.datetime),
            "updates": entry.has_unread_update,
            "latestChapter": entry.latest_chapter,
        }

    return encode


def _progress_encoder(
    timestamp: Callable[[datetime], Any],
) -> Callable[[ProgressRecord], dict[str, Any]]:
    def encode(record: ProgressRecord) -> dict[str, Any]:
        return {
            "mangaId": record.manga_id,
            "pluginId": record.plugin_id,
            "datetime": timestamp(record.datetime),
            "chapterId": record.chapter_id,
            "chapterTitle": record.chapter_title,
            "page": record.page,
        }

    return encode


REST_SAVED: WireFormat[SavedEntry] = WireFormat(_saved_encoder(to_millis), _saved_decoder(_millis))
REST_PROGRESS: WireFormat[ProgressRecord] = WireFormat(
    _progress_encoder(to_millis), _progress_decoder(_millis)
)
POSTGREST_SAVED: WireFormat[SavedEntry] = WireFormat(_saved_encoder(to_iso), _saved_decoder(_iso))
POSTGREST_PROGRESS: WireFormat[ProgressRecord] = WireFormat(
    _progress_encoder(to_iso), _progress_decoder(_iso)
)
