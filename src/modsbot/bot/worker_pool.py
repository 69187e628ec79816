"""
Bounded pool of handler tasks fed by the event dispatcher.

At most ``max_workers`` jobs run at once. Jobs submitted with the same
``key`` run one after another in submission order; jobs with different keys
(or no key) run concurrently.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Dict, Hashable, Optional, Set

from modsbot.util.logger import get_logger

logger = get_logger("worker_pool")


class WorkerPool:
    def __init__(self, max_workers: int) -> None:
        self._semaphore = asyncio.Semaphore(max(1, max_workers))
        self._tasks: Set[asyncio.Task[None]] = set()
        self._tails: Dict[Hashable, asyncio.Task[None]] = {}
        self._accepting = True

    @property
    def accepting(self) -> bool:
        return self._accepting

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        key: Optional[Hashable] = None,
        name: Optional[str] = None,
    ) -> Optional[asyncio.Task[None]]:
        """Schedule ``coro``; returns ``None`` (and discards it) once draining has started."""
        if not self._accepting:
            coro.close()
            logger.debug("[WORKER POOL] Rejected job %s, pool is draining", name)
            return None

        previous = self._tails.get(key) if key is not None else None
        task = asyncio.create_task(self._run(coro, previous, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        if key is not None:
            self._tails[key] = task
            task.add_done_callback(lambda t, k=key: self._release_tail(k, t))
        return task

    def _release_tail(self, key: Hashable, task: asyncio.Task[None]) -> None:
        if self._tails.get(key) is task:
            del self._tails[key]

    async def _run(
        self,
        coro: Coroutine[Any, Any, Any],
        previous: Optional[asyncio.Task[None]],
        name: Optional[str],
    ) -> None:
        try:
            if previous is not None and not previous.done():
                # Wait for the predecessor without inheriting its outcome
                await asyncio.wait([previous])
            async with self._semaphore:
                await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[WORKER POOL] Job %s failed", name or "<unnamed>")
        finally:
            # No-op if the coroutine ran; silences "never awaited" when cancelled early
            coro.close()

    async def drain(self, grace: float) -> None:
        """Stop accepting work, give in-flight jobs ``grace`` seconds, then cancel the rest."""
        self._accepting = False
        pending = set(self._tasks)
        if not pending:
            return

        logger.info("[WORKER POOL] Waiting up to %.1fs for %d in-flight jobs", grace, len(pending))
        _, still_running = await asyncio.wait(pending, timeout=grace)
        if not still_running:
            return

        logger.warning("[WORKER POOL] Cancelling %d jobs still running after grace period", len(still_running))
        for task in still_running:
            task.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)
