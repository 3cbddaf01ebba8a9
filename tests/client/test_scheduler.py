"""Tests for the periodic sync scheduler."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from readsync.client.sync.scheduler import JOB_ID, PeriodicSync, needs_sync

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


class TestNeedsSync:
    """Tests for the cool-down check."""

    def test_never_synced(self) -> None:
        """Should sync when there is no previous sync."""
        assert needs_sync(None, 60, now=NOW) is True

    def test_recent_sync(self) -> None:
        """Should not sync within the cool-down."""
        assert needs_sync(NOW - timedelta(seconds=30), 60, now=NOW) is False

    def test_old_sync(self) -> None:
        """Should sync once the cool-down has elapsed."""
        assert needs_sync(NOW - timedelta(seconds=61), 60, now=NOW) is True


class TestPeriodicSync:
    """Tests for PeriodicSync."""

    def test_rejects_non_positive_interval(self) -> None:
        """Should refuse a zero interval."""
        with pytest.raises(ValueError):
            PeriodicSync(MagicMock(), interval=0)

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        """Should schedule the sync job on start and remove it on stop."""
        scheduler = PeriodicSync(MagicMock(), interval=3600)

        scheduler.start()
        assert scheduler.running
        job = scheduler._scheduler.get_job(JOB_ID)  # type: ignore[union-attr]
        assert job is not None
        assert job.max_instances == 1

        scheduler.stop()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_start_twice(self) -> None:
        """Starting twice should keep the first scheduler."""
        scheduler = PeriodicSync(MagicMock(), interval=3600)
        scheduler.start()
        first = scheduler._scheduler

        scheduler.start()

        assert scheduler._scheduler is first
        scheduler.stop()

    @pytest.mark.asyncio
    async def test_job_does_not_wait_for_inflight_pass(self) -> None:
        """The scheduled job should skip kinds with a pass in flight."""
        selector = MagicMock()
        selector.sync = AsyncMock(return_value=None)

        await PeriodicSync(selector)._sync_job()

        selector.sync.assert_awaited_once_with(wait=False)

    @pytest.mark.asyncio
    async def test_job_swallows_errors(self) -> None:
        """A failing sync should be logged, not raised into the scheduler."""
        selector = MagicMock()
        selector.sync = AsyncMock(side_effect=RuntimeError("boom"))

        await PeriodicSync(selector)._sync_job()

    @pytest.mark.asyncio
    async def test_run_now_waits(self) -> None:
        """A manual run should wait for any pass in flight."""
        selector = MagicMock()
        selector.sync = AsyncMock(return_value="report")

        assert await PeriodicSync(selector).run_now() == "report"
        selector.sync.assert_awaited_once_with(wait=True)
