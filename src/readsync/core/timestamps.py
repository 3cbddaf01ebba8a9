"""Timestamp codec for cross-replica versions.

Versions are timezone-aware UTC datetimes truncated to millisecond
precision. The REST transport encodes them as integer milliseconds since
the Unix epoch, the Postgrest transport as ISO-8601 strings.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

# Two versions strictly closer than this are considered equal
VERSION_EPSILON = timedelta(milliseconds=1)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    """Current time, truncated to milliseconds."""
    return truncate(datetime.now(UTC))


def truncate(value: datetime) -> datetime:
    """Normalize to UTC and drop sub-millisecond precision.

    Naive datetimes are assumed to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    else:
        value = value.astimezone(UTC)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def to_millis(value: datetime) -> int:
    """Encode a datetime as integer milliseconds since the epoch."""
    delta = truncate(value) - EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_millis(millis: int | float) -> datetime:
    """Decode integer milliseconds since the epoch."""
    return truncate(EPOCH + timedelta(milliseconds=int(millis)))


def to_iso(value: datetime) -> str:
    """Encode a datetime as ISO-8601 with millisecond precision."""
    return truncate(value).isoformat(timespec="milliseconds")


def from_iso(text: str) -> datetime:
    """Decode an ISO-8601 string ("Z" suffix accepted)."""
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return truncate(datetime.fromisoformat(text))


def versions_equal(a: datetime, b: datetime) -> bool:
    """Check whether two versions differ by less than VERSION_EPSILON."""
    return abs(truncate(a) - truncate(b)) < VERSION_EPSILON
