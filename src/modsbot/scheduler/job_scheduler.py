"""Periodic maintenance jobs: lift expired temporary bans and trim the command history.

A single background task runs every registered job, sleeps for the configured
interval, and repeats. A failing job is logged and does not stop the others.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List, Tuple

from modsbot.util.logger import get_logger

logger = get_logger("job_scheduler")

Job = Callable[[], Awaitable[Any]]


class JobScheduler:
    """
    Args:
        interval: Seconds between runs.
        jobs: ``(name, coroutine function)`` pairs run in order on every tick.
    """

    def __init__(self, interval: float, jobs: List[Tuple[str, Job]] | None = None) -> None:
        self._interval = interval
        self._jobs: List[Tuple[str, Job]] = list(jobs or [])
        self._task: asyncio.Task | None = None

    def add_job(self, name: str, job: Job) -> None:
        self._jobs.append((name, job))

    async def run_once(self) -> None:
        for name, job in self._jobs:
            try:
                result = await job()
                logger.debug("[JOBS] %s finished: %s", name, result)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("[JOBS] %s failed: %s", name, exc)

    async def _run_loop(self) -> None:
        logger.info("[JOBS] Starting %d jobs (interval=%.1fs)", len(self._jobs), self._interval)
        try:
            while True:
                await self.run_once()
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            logger.info("[JOBS] Periodic jobs cancelled")
            raise

    def start(self) -> None:
        if self._task and not self._task.done():
            logger.warning("[JOBS] Job task already running")
            return
        self._task = asyncio.create_task(self._run_loop(), name="modsbot-jobs")

    async def shutdown(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[JOBS] Scheduler shutdown complete")
