"""
Ordering of asynchronous create/update persistence events.

A node's record is created before its component runs and updated after
it finishes. Both writes happen in the background, so without
coordination the update could reach the store first. Events are keyed by
node id and an update always waits for the create of the same key.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .constants import DEFAULT_EVENT_WAIT_TIMEOUT
from .tasks import BackgroundTaskRegistry

logger = logging.getLogger(__name__)

EventFunc = Callable[[], Awaitable[Any]]


class ChainedEventProcessor:
    """
    Runs create and update events per key with create-before-update ordering.

    Each key gets a gate that opens when its create event finishes (whether
    it succeeded or not). Update events wait on the gate. An update whose
    create never arrives runs alone after ``wait_timeout`` seconds.
    """

    def __init__(
        self,
        task_registry: Optional[BackgroundTaskRegistry] = None,
        wait_timeout: float = DEFAULT_EVENT_WAIT_TIMEOUT
    ):
        """
        Args:
            task_registry: Registry that tracks the spawned tasks for draining
            wait_timeout: Seconds an update waits for its create event
        """
        self.task_registry = task_registry if task_registry is not None else BackgroundTaskRegistry()
        self.wait_timeout = wait_timeout
        self._gates: Dict[str, asyncio.Event] = {}

    def _gate(self, key: str) -> asyncio.Event:
        gate = self._gates.get(key)
        if gate is None:
            gate = asyncio.Event()
            self._gates[key] = gate
        return gate

    @property
    def pending_keys(self) -> int:
        """Number of keys still holding a gate."""
        return len(self._gates)

    def discard(self, key: str) -> None:
        """Drop the gate of a key whose update will never be submitted."""
        self._gates.pop(key, None)

    def submit_create(self, key: str, func: EventFunc) -> asyncio.Task:
        """
        Run a create event for ``key`` in the background.

        Returns:
            Trackable task for the event
        """
        gate = self._gate(key)
        return self.task_registry.create_task(
            self._run_create(key, func, gate), name=f"create:{key}"
        )

    def submit_update(self, key: str, func: EventFunc) -> asyncio.Task:
        """
        Run an update event for ``key`` once the matching create has finished.

        Returns:
            Trackable task for the event
        """
        gate = self._gate(key)
        return self.task_registry.create_task(
            self._run_update(key, func, gate), name=f"update:{key}"
        )

    async def _run_create(self, key: str, func: EventFunc, gate: asyncio.Event) -> Any:
        try:
            return await func()
        except Exception as e:
            logger.error(f"Create event failed for {key}: {e}")
            return None
        finally:
            gate.set()

    async def _run_update(self, key: str, func: EventFunc, gate: asyncio.Event) -> Any:
        try:
            if not gate.is_set():
                try:
                    await asyncio.wait_for(gate.wait(), timeout=self.wait_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        f"No create event found for {key}, running update directly"
                    )
            return await func()
        except Exception as e:
            logger.error(f"Update event failed for {key}: {e}")
            return None
        finally:
            if self._gates.get(key) is gate:
                del self._gates[key]
