"""
Тесты для блокировок по ключу.
"""

import asyncio

import pytest

from helphub.storage.locks import KeyedLocks


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLocks()
    events = []

    async def worker(name):
        async with locks.hold("req-1"):
            events.append(f"{name}:start")
            await asyncio.sleep(0.01)
            events.append(f"{name}:end")

    await asyncio.gather(worker("a"), worker("b"))

    assert events == ["a:start", "a:end", "b:start", "b:end"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    locks = KeyedLocks()
    events = []

    async def worker(key):
        async with locks.hold(key):
            events.append(f"{key}:start")
            await asyncio.sleep(0.01)
            events.append(f"{key}:end")

    await asyncio.gather(worker("a"), worker("b"))

    assert events[:2] == ["a:start", "b:start"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_released_on_error():
    locks = KeyedLocks()

    with pytest.raises(RuntimeError):
        async with locks.hold("req-1"):
            raise RuntimeError("boom")

    assert len(locks) == 0
    async with locks.hold("req-1"):
        assert len(locks) == 1
