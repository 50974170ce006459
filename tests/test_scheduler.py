import asyncio

import pytest

from monitoring.scheduler import AsyncioScheduler, ManualScheduler


def test_manual_scheduler_fires_in_due_order():
    s = ManualScheduler()
    calls = []
    s.every(2, lambda: calls.append(("slow", s.now())))
    s.every(1, lambda: calls.append(("fast", s.now())))

    fired = s.advance(4)
    assert fired == 6
    assert calls[:3] == [("fast", 1.0), ("slow", 2.0), ("fast", 2.0)]
    assert s.now() == 4.0
    assert s.now_ms() == 4000.0


def test_manual_scheduler_cancel_and_errors():
    s = ManualScheduler()
    calls = []

    def broken():
        raise RuntimeError("tick failed")

    s.every(1, broken)
    handle = s.every(1, lambda: calls.append(s.now()))
    s.advance(2)
    assert calls == [1.0, 2.0]

    handle.cancel()
    assert handle.cancelled
    s.advance(2)
    assert calls == [1.0, 2.0]
    assert s.pending == 1


def test_manual_scheduler_validation():
    s = ManualScheduler()
    with pytest.raises(ValueError):
        s.every(0, lambda: None)
    with pytest.raises(ValueError):
        s.advance(-1)


@pytest.mark.asyncio
async def test_asyncio_scheduler_ticks_until_cancelled():
    ticks = []
    handle = AsyncioScheduler().every(0.01, lambda: ticks.append(1))
    await asyncio.sleep(0.1)
    handle.cancel()
    seen = len(ticks)
    assert seen >= 2

    await asyncio.sleep(0.05)
    assert len(ticks) == seen


@pytest.mark.asyncio
async def test_asyncio_scheduler_survives_failing_tick():
    ticks = []

    def flaky():
        ticks.append(1)
        if len(ticks) == 1:
            raise RuntimeError("first tick fails")

    handle = AsyncioScheduler().every(0.01, flaky)
    await asyncio.sleep(0.08)
    handle.cancel()
    assert len(ticks) >= 2
