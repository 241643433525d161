"""
Tracking of fire-and-forget background work.

Persistence and notification tasks run beside the main call chain. The
registry keeps a handle to each one until it finishes so the host can
wait for all of them before shutting down.
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRegistry:
    """Set of running background tasks with a drain operation."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def tasks(self) -> Set[asyncio.Task]:
        """Snapshot of tasks that have not finished yet."""
        return set(self._tasks)

    def create_task(
        self,
        coro: Coroutine[Any, Any, Any],
        name: Optional[str] = None
    ) -> asyncio.Task:
        """
        Schedule a coroutine and track it until completion.

        Args:
            coro: Coroutine to run in the background
            name: Optional task name for debugging

        Returns:
            The scheduled task
        """
        task = asyncio.create_task(coro, name=name)
        return self.track(task)

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """Track an existing task; it is forgotten as soon as it is done."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for all tracked tasks, including ones scheduled while waiting.

        Args:
            timeout: Maximum seconds to wait; pending tasks are cancelled after it

        Returns:
            Number of tasks that were awaited
        """
        drained = 0
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._tasks:
            pending = set(self._tasks)
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            done, not_done = await asyncio.wait(pending, timeout=remaining)
            drained += len(done)

            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error(f"Background task {task.get_name()} failed: {task.exception()}")

            if not_done:
                logger.warning(f"Cancelling {len(not_done)} background tasks after drain timeout")
                for task in not_done:
                    task.cancel()
                await asyncio.gather(*not_done, return_exceptions=True)
                break

        logger.debug(f"Drained {drained} background tasks")
        return drained
