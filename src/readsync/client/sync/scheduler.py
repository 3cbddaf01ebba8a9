"""Scheduler for periodic background sync.

This module provides:
- PeriodicSync: Runs the active engine's sync on a fixed interval
- needs_sync: Cool-down check used before on-demand syncs
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from readsync.core.timestamps import utc_now

if TYPE_CHECKING:
    from readsync.client.sync.selector import EngineSelector
    from readsync.client.sync.types import SyncReport

logger = logging.getLogger(__name__)

JOB_ID = "periodic_sync"


def needs_sync(last_sync: datetime | None, cooldown: float, now: datetime | None = None) -> bool:
    """Check whether the last sync is older than the cool-down.

    Args:
        last_sync: When the last sync completed, or None if never.
        cooldown: Cool-down in seconds.
        now: Current time (defaults to now).
    """
    if last_sync is None:
        return True
    now = now or utc_now()
    return now - last_sync >= timedelta(seconds=cooldown)


class PeriodicSync:
    """Runs ``selector.sync()`` every ``interval`` seconds.

    Overlapping runs are prevented twice over: APScheduler keeps at most one
    instance of the job, and passes use ``wait=False`` so a tick that finds
    a user-triggered pass in flight is skipped.
    """

    def __init__(self, selector: EngineSelector, interval: float = 60.0) -> None:
        """Initialize the scheduler.

        Args:
            selector: Engine selector providing the active backend.
            interval: Seconds between runs.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._selector = selector
        self._interval = interval
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    async def _sync_job(self) -> None:
        """Job function for the scheduled sync."""
        logger.debug("Starting scheduled sync")
        try:
            report = await self._selector.sync(wait=False)
        except Exception:
            logger.exception("Error during scheduled sync")
            return
        if report is not None and not report.ok:
            logger.warning("Scheduled sync finished with errors: %s", "; ".join(report.errors))

    def start(self) -> None:
        """Start the scheduler. Must be called with a running event loop."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._sync_job,
            trigger=IntervalTrigger(seconds=self._interval),
            id=JOB_ID,
            name="Periodic sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Periodic sync started (every %.0f s)", self._interval)

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Periodic sync stopped")

    async def run_now(self) -> SyncReport | None:
        """Sync immediately (manual trigger), waiting for any pass in flight."""
        return await self._selector.sync(wait=True)
