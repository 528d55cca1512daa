"""
Unit tests for KeyedLock.
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from locks import KeyedLock


class TestKeyedLock:
    def test_same_key_is_serialized(self):
        locks = KeyedLock()
        events = []

        async def worker(name):
            async with locks.acquire(1):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        async def run():
            await asyncio.gather(worker("a"), worker("b"))

        asyncio.run(run())

        assert events == ["a-start", "a-end", "b-start", "b-end"]
        assert len(locks) == 0

    def test_different_keys_run_concurrently(self):
        locks = KeyedLock()
        events = []

        async def worker(key):
            async with locks.acquire(key):
                events.append(f"{key}-start")
                await asyncio.sleep(0.01)
                events.append(f"{key}-end")

        async def run():
            await asyncio.gather(worker(1), worker(2))

        asyncio.run(run())

        assert events[:2] == ["1-start", "2-start"]

    def test_entry_released_after_error(self):
        locks = KeyedLock()

        async def run():
            try:
                async with locks.acquire("k"):
                    assert locks.locked("k")
                    raise RuntimeError("boom")
            except RuntimeError:
                pass
            return locks.locked("k")

        assert asyncio.run(run()) is False
        assert len(locks) == 0
