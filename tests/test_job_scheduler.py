import asyncio
from unittest.mock import AsyncMock

import pytest

from modsbot.scheduler.job_scheduler import JobScheduler


@pytest.mark.asyncio
async def test_run_once_runs_every_job_even_after_a_failure():
    failing = AsyncMock(side_effect=RuntimeError("database locked"))
    healthy = AsyncMock(return_value=3)
    scheduler = JobScheduler(interval=60, jobs=[("failing", failing)])
    scheduler.add_job("healthy", healthy)

    await scheduler.run_once()

    failing.assert_awaited_once()
    healthy.assert_awaited_once()


@pytest.mark.asyncio
async def test_loop_repeats_until_shutdown():
    ticks = asyncio.Event()
    count = 0

    async def job():
        nonlocal count
        count += 1
        if count >= 3:
            ticks.set()

    scheduler = JobScheduler(interval=0.01, jobs=[("tick", job)])
    scheduler.start()
    await asyncio.wait_for(ticks.wait(), 2)
    await scheduler.shutdown()

    stopped_at = count
    await asyncio.sleep(0.03)
    assert count == stopped_at


@pytest.mark.asyncio
async def test_shutdown_without_start_is_safe():
    await JobScheduler(interval=1).shutdown()
