import asyncio
import time

import pytest

from repricer.core.repricing.item_lock import ItemBusy, ItemLockRegistry
from repricer.core.scheduler.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_rate_limiter_allows_burst_within_limit():
    limiter = RateLimiter(max_requests=3, period=10)

    started = time.monotonic()
    for _ in range(3):
        await limiter.acquire()

    assert time.monotonic() - started < 0.5
    assert limiter.in_window == 3


@pytest.mark.asyncio
async def test_rate_limiter_waits_for_window():
    limiter = RateLimiter(max_requests=2, period=0.2)

    started = time.monotonic()
    for _ in range(3):
        await limiter.acquire()

    assert time.monotonic() - started >= 0.18


@pytest.mark.asyncio
async def test_rate_limiter_disabled():
    limiter = RateLimiter(max_requests=0, period=1)
    for _ in range(10):
        await limiter.acquire()
    assert limiter.in_window == 0


@pytest.mark.asyncio
async def test_busy_key_is_rejected_without_wait():
    locks = ItemLockRegistry()

    async with locks.hold("item-1", "sku-1"):
        assert locks.is_locked("item-1", "sku-1")
        with pytest.raises(ItemBusy):
            async with locks.hold("item-1", "sku-1"):
                pass
        # other keys are independent
        async with locks.hold("item-1", "sku-2"):
            pass

    assert not locks.is_locked("item-1", "sku-1")


@pytest.mark.asyncio
async def test_waiting_caller_runs_after_release():
    locks = ItemLockRegistry()
    order = []

    async def first():
        async with locks.hold("item-1"):
            order.append("first-in")
            await asyncio.sleep(0.05)
            order.append("first-out")

    async def second():
        await asyncio.sleep(0.01)
        async with locks.hold("item-1", wait=True, timeout=1):
            order.append("second-in")

    await asyncio.gather(first(), second())

    assert order == ["first-in", "first-out", "second-in"]


@pytest.mark.asyncio
async def test_waiting_caller_gives_up_after_timeout():
    locks = ItemLockRegistry()

    async with locks.hold("item-1"):
        with pytest.raises(ItemBusy):
            async with locks.hold("item-1", wait=True, timeout=0.05):
                pass


@pytest.mark.asyncio
async def test_lock_released_when_body_raises():
    locks = ItemLockRegistry()

    with pytest.raises(RuntimeError):
        async with locks.hold("item-1"):
            raise RuntimeError("boom")

    assert not locks.is_locked("item-1")


@pytest.mark.asyncio
async def test_released_keys_are_forgotten():
    locks = ItemLockRegistry()

    async def run(item_id):
        async with locks.hold(item_id, wait=True, timeout=1):
            await asyncio.sleep(0.01)

    await asyncio.gather(run("item-1"), run("item-1"), run("item-2"))
    with pytest.raises(ItemBusy):
        async with locks.hold("item-3"):
            async with locks.hold("item-3", wait=True, timeout=0.01):
                pass

    assert len(locks) == 0
