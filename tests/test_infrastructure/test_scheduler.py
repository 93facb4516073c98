"""Tests for the APScheduler sweep wiring."""

from __future__ import annotations

import asyncio

import pytest

from escrow_settlement.infrastructure.scheduler import SWEEP_JOB_ID, SweepScheduler


class CountingSweeper:
    def __init__(self) -> None:
        self.runs = 0

    async def run_once(self, now=None):  # noqa: ANN001, ANN201
        self.runs += 1


class TestSweepScheduler:
    def test_rejects_non_positive_interval(self) -> None:
        with pytest.raises(ValueError):
            SweepScheduler(CountingSweeper(), 0)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_start_registers_single_job(self) -> None:
        scheduler = SweepScheduler(CountingSweeper(), 60)  # type: ignore[arg-type]
        scheduler.start()
        try:
            assert scheduler.running
            job = scheduler._scheduler.get_job(SWEEP_JOB_ID)
            assert job is not None
            assert job.max_instances == 1
            assert job.coalesce is True
            scheduler.start()
            assert len(scheduler._scheduler.get_jobs()) == 1
        finally:
            scheduler.shutdown()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_run_until_stops_on_event(self) -> None:
        scheduler = SweepScheduler(CountingSweeper(), 60)  # type: ignore[arg-type]
        stop = asyncio.Event()
        task = asyncio.create_task(scheduler.run_until(stop))
        await asyncio.sleep(0)
        assert scheduler.running
        stop.set()
        await asyncio.wait_for(task, timeout=5)
        assert not scheduler.running
