import asyncio

import pytest

LOCAL = {"location": "local", "maxAge": 60}


@pytest.mark.asyncio
async def test_concurrent_calls_lose_no_updates(dispatcher, recorder):
    calls = 0

    async def producer():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        return calls

    await asyncio.gather(*(dispatcher.handle(LOCAL, "hot", producer) for _ in range(25)))

    assert recorder.get("hot").call_count == 25
    g = recorder.global_metrics()
    assert g.total_requests == 25
    assert g.cached_count + g.uncached_count == 25
    assert len(dispatcher.locks) == 0


@pytest.mark.asyncio
async def test_same_key_calls_are_serialised(dispatcher):
    active = 0
    peak = 0

    async def producer():
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return "v"

    await asyncio.gather(*(dispatcher.handle(LOCAL, "k", producer) for _ in range(5)))
    assert peak == 1


@pytest.mark.asyncio
async def test_slow_key_does_not_block_other_keys(dispatcher):
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return "slow"

    pending = asyncio.create_task(dispatcher.handle(LOCAL, "slow", slow))
    await asyncio.sleep(0)

    assert await asyncio.wait_for(dispatcher.handle(LOCAL, "fast", lambda: "fast"), timeout=1) == "fast"
    assert not pending.done()

    release.set()
    assert await pending == "slow"
