"""
Fire-and-forget background recomputation.

At most one task is in flight per key: a submission while the same key is
still running is dropped. Failures are logged and never reach the submitter.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from tradebook.core.metrics import metrics

logger = logging.getLogger(__name__)


class RecomputeScheduler:
    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    def submit(self, key: str, job: Callable[[], Awaitable[object]]) -> Optional[asyncio.Task]:
        running = self._tasks.get(key)
        if running is not None and not running.done():
            logger.debug("Recompute %s already in flight; skipping", key)
            return None

        task = asyncio.get_running_loop().create_task(self._run(key, job), name=f"recompute:{key}")
        self._tasks[key] = task
        return task

    async def _run(self, key: str, job: Callable[[], Awaitable[object]]) -> None:
        try:
            await job()
            logger.info("Recompute %s finished", key)
        except Exception:
            logger.exception("Recompute %s failed", key)
            metrics.cache_event("recompute_failed", key)
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                self._tasks.pop(key, None)

    def in_flight(self) -> list[str]:
        return [key for key, task in self._tasks.items() if not task.done()]

    async def drain(self) -> None:
        """Wait for every in-flight recompute (shutdown, tests)."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        if tasks:
            logger.info("Waiting for %d recompute task(s)", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
