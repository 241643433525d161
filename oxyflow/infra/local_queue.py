"""In-process keyed message queue."""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class LocalQueue:
    """One asyncio.Queue per key, created on first use."""

    def __init__(self, max_size: int = 0):
        self.max_size = max_size
        self._queues: Dict[str, asyncio.Queue] = defaultdict(lambda: asyncio.Queue(self.max_size))

    async def push(self, key: str, message: Any) -> None:
        await self._queues[key].put(message)

    async def pop(self, key: str, timeout: Optional[float] = None) -> Optional[Any]:
        """
        Remove the oldest message under ``key``.

        Args:
            key: Queue key
            timeout: Seconds to wait; None or 0 returns immediately
        """
        queue = self._queues[key]
        try:
            if not timeout:
                message = queue.get_nowait()
            else:
                message = await asyncio.wait_for(queue.get(), timeout=timeout)
        except (asyncio.QueueEmpty, asyncio.TimeoutError):
            return None
        return message

    def size(self, key: str) -> int:
        queue = self._queues.get(key)
        return queue.qsize() if queue else 0

    async def close(self) -> None:
        self._queues.clear()
        logger.debug("LocalQueue closed")
