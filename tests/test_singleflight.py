import asyncio

import pytest

from core.errors import NetworkError
from intelligence.adapters.singleflight import SingleFlight


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_call():
    flight = SingleFlight()
    calls = 0

    async def work():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.02)
        return "result"

    results = await asyncio.gather(*(flight.do("key", work) for _ in range(5)))

    assert calls == 1
    assert [value for value, _ in results] == ["result"] * 5
    assert sum(1 for _, shared in results if not shared) == 1
    assert flight.in_flight == 0


@pytest.mark.asyncio
async def test_distinct_keys_run_independently():
    flight = SingleFlight()

    async def work(value):
        await asyncio.sleep(0.01)
        return value

    results = await asyncio.gather(flight.do("a", lambda: work(1)), flight.do("b", lambda: work(2)))
    assert results == [(1, False), (2, False)]


@pytest.mark.asyncio
async def test_errors_propagate_to_waiters():
    flight = SingleFlight()

    async def fail():
        await asyncio.sleep(0.01)
        raise ValueError("backend down")

    results = await asyncio.gather(
        flight.do("key", fail), flight.do("key", fail), return_exceptions=True
    )

    assert all(isinstance(result, ValueError) for result in results)
    assert flight.in_flight == 0


@pytest.mark.asyncio
async def test_sequential_calls_rerun():
    flight = SingleFlight()
    calls = 0

    async def work():
        nonlocal calls
        calls += 1
        return calls

    assert await flight.do("key", work) == (1, False)
    assert await flight.do("key", work) == (2, False)


@pytest.mark.asyncio
async def test_wait_idle():
    flight = SingleFlight()
    assert await flight.wait_idle(0.01) is True

    async def slow():
        await asyncio.sleep(0.2)

    task = asyncio.create_task(flight.do("slow", slow))
    await asyncio.sleep(0)
    assert await flight.wait_idle(0.01) is False
    assert await flight.wait_idle(1) is True
    await task


@pytest.mark.asyncio
async def test_cancelled_owner_fails_waiters_with_network_error():
    flight = SingleFlight()

    async def slow():
        await asyncio.sleep(1)
        return "late"

    owner = asyncio.create_task(flight.do("key", slow))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(flight.do("key", slow))
    await asyncio.sleep(0.01)

    owner.cancel()

    with pytest.raises(NetworkError):
        await waiter
    with pytest.raises(asyncio.CancelledError):
        await owner
    assert flight.in_flight == 0
