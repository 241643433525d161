"""
Tests for oxyflow.infra.local_queue module.
"""

import asyncio

import pytest

from oxyflow.infra.local_queue import LocalQueue


class TestLocalQueue:
    """Test keyed FIFO behaviour."""

    @pytest.mark.asyncio
    async def test_fifo_per_key(self):
        queue = LocalQueue()
        await queue.push("a", 1)
        await queue.push("a", 2)
        await queue.push("b", 3)

        assert queue.size("a") == 2
        assert await queue.pop("a") == 1
        assert await queue.pop("a") == 2
        assert await queue.pop("b") == 3

    @pytest.mark.asyncio
    async def test_pop_empty_returns_none(self):
        queue = LocalQueue()
        assert await queue.pop("missing") is None
        assert await queue.pop("missing", timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_pop_waits_for_push(self):
        queue = LocalQueue()

        async def later():
            await asyncio.sleep(0.01)
            await queue.push("k", "late")

        task = asyncio.create_task(later())
        assert await queue.pop("k", timeout=1) == "late"
        await task

    @pytest.mark.asyncio
    async def test_close_clears(self):
        queue = LocalQueue()
        await queue.push("k", 1)
        await queue.close()
        assert queue.size("k") == 0
