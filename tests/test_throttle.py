import asyncio

import pytest

from realtime.throttle import throttle


@pytest.mark.asyncio
async def test_calls_within_window_are_coalesced_to_last_arguments():
    calls = []
    throttled = throttle(calls.append, 30)

    for i in range(5):
        throttled(i)

    assert calls == []
    assert throttled.pending is True
    await asyncio.sleep(0.06)

    assert calls == [4]
    assert throttled.pending is False


@pytest.mark.asyncio
async def test_new_window_opens_after_delivery():
    calls = []
    throttled = throttle(calls.append, 20)

    throttled("a")
    await asyncio.sleep(0.04)
    throttled("b")
    throttled("c")
    await asyncio.sleep(0.04)

    assert calls == ["a", "c"]


@pytest.mark.asyncio
@pytest.mark.parametrize("interval", [0, -5])
async def test_non_positive_interval_bypasses_throttling(interval):
    calls = []
    throttled = throttle(calls.append, interval)

    throttled(1)
    throttled(2)

    assert calls == [1, 2]
    assert throttled.pending is False


@pytest.mark.asyncio
async def test_cancel_drops_waiting_call():
    calls = []
    throttled = throttle(calls.append, 20)

    throttled("x")
    throttled.cancel()
    await asyncio.sleep(0.04)

    assert calls == []
    assert throttled.pending is False


@pytest.mark.asyncio
async def test_keyword_arguments_are_forwarded():
    seen = {}

    def record(value, *, tag):
        seen[tag] = value

    throttled = throttle(record, 10)
    throttled(1, tag="first")
    throttled(2, tag="second")
    await asyncio.sleep(0.03)

    assert seen == {"second": 2}
