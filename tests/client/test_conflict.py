"""Tests for last-write-wins conflict resolution."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from readsync.client.sync.conflict import Decision, resolve
from readsync.core.entities import ProgressRecord, SavedEntry

T0 = datetime(2025, 1, 1, tzinfo=UTC)


def at(ms: int, micros: int = 0) -> datetime:
    return T0 + timedelta(milliseconds=ms, microseconds=micros)


class TestResolve:
    """Tests for resolve()."""

    def test_only_local(self) -> None:
        """A record missing remotely should be adopted without conflict."""
        local = SavedEntry("m1", "p1", at(1))

        resolution = resolve(local, None)

        assert resolution.decision is Decision.NO_CONFLICT
        assert resolution.winner is local

    def test_only_remote(self) -> None:
        """A record missing locally should be adopted without conflict."""
        remote = SavedEntry("m1", "p1", at(1))

        resolution = resolve(None, remote)

        assert resolution.decision is Decision.NO_CONFLICT
        assert resolution.winner is remote

    def test_both_missing(self) -> None:
        """Resolving nothing should be an error."""
        with pytest.raises(ValueError):
            resolve(None, None)

    def test_local_newer(self) -> None:
        """The strictly newer local copy should win."""
        local = ProgressRecord("m1", "p1", at(200), page=9)
        remote = ProgressRecord("m1", "p1", at(100), page=2)

        resolution = resolve(local, remote)

        assert resolution.decision is Decision.KEEP_LOCAL
        assert resolution.winner is local

    def test_remote_newer(self) -> None:
        """The strictly newer remote copy should win."""
        local = SavedEntry("m1", "p1", at(100))
        remote = SavedEntry("m1", "p1", at(150))

        resolution = resolve(local, remote)

        assert resolution.decision is Decision.KEEP_REMOTE
        assert resolution.winner is remote

    def test_equal_and_identical(self) -> None:
        """Identical copies should not conflict."""
        local = SavedEntry("m1", "p1", at(100), latest_chapter="x")
        remote = SavedEntry("m1", "p1", at(100), latest_chapter="x")

        assert resolve(local, remote).decision is Decision.NO_CONFLICT

    def test_sub_millisecond_difference_is_equal(self) -> None:
        """Versions differing below a millisecond should count as equal."""
        local = SavedEntry("m1", "p1", at(100, micros=300))
        remote = SavedEntry("m1", "p1", at(100, micros=900))

        assert resolve(local, remote).decision is Decision.NO_CONFLICT

    def test_tie_break_is_deterministic(self) -> None:
        """Equal versions with different payloads should always pick the remote copy."""
        local = ProgressRecord("m1", "p1", at(100), page=3)
        remote = ProgressRecord("m1", "p1", at(100), page=7)

        for _ in range(10):
            resolution = resolve(local, remote)
            assert resolution.decision is Decision.KEEP_REMOTE
            assert resolution.winner is remote

    def test_one_millisecond_apart_is_not_a_tie(self) -> None:
        """A one-millisecond difference should be decisive."""
        local = SavedEntry("m1", "p1", at(101))
        remote = SavedEntry("m1", "p1", at(100))

        assert resolve(local, remote).decision is Decision.KEEP_LOCAL
