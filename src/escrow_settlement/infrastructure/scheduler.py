"""APScheduler wiring for the periodic settlement sweep.

One interval job runs SettlementSweeper.run_once. ``max_instances=1`` and
``coalesce=True`` keep a slow pass from stacking up behind itself; running
the job on several processes is still safe because every sweep action is
gated by a conditional status update.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from escrow_settlement.services.sweep import SettlementSweeper

logger = get_logger(__name__)

SWEEP_JOB_ID = "settlement-sweep"


class SweepScheduler:
    """Owns the AsyncIOScheduler that drives the sweep."""

    def __init__(self, sweeper: SettlementSweeper, interval_seconds: int) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._sweeper = sweeper
        self._interval = interval_seconds
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def _tick(self) -> None:
        await self._sweeper.run_once()

    def start(self) -> None:
        """Start the scheduler on the running event loop."""
        if self.running:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._tick,
            "interval",
            seconds=self._interval,
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("scheduler.started", job_id=SWEEP_JOB_ID, interval_seconds=self._interval)

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("scheduler.stopped", job_id=SWEEP_JOB_ID)

    async def run_until(self, stop: asyncio.Event) -> None:
        """Run the sweep on its interval until ``stop`` is set."""
        self.start()
        try:
            await stop.wait()
        finally:
            self.shutdown(wait=False)
