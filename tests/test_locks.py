"""
Tests for per-key locking
"""
import asyncio

import pytest

from utils.locks import KeyedLock


class TestKeyedLock:

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        events = []

        async def worker(name):
            async with locks.hold("ISSUE-20260310-0001"):
                events.append(f"{name} in")
                await asyncio.sleep(0.01)
                events.append(f"{name} out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events == ["a in", "a out", "b in", "b out"]

    @pytest.mark.asyncio
    async def test_different_keys_run_independently(self):
        """A held key does not block another key"""
        locks = KeyedLock()
        release = asyncio.Event()
        entered = asyncio.Event()

        async def holder():
            async with locks.hold("first"):
                entered.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await entered.wait()

        async def other():
            async with locks.hold("second"):
                return len(locks)

        assert await asyncio.wait_for(other(), timeout=1) == 2
        release.set()
        await task
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_locks_are_removed(self):
        locks = KeyedLock()

        async with locks.hold("key"):
            assert len(locks) == 1

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_after_error(self):
        locks = KeyedLock()

        with pytest.raises(ValueError):
            async with locks.hold("key"):
                raise ValueError("boom")

        assert len(locks) == 0
