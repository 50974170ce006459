# monitoring/scheduler.py
from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from typing import Callable, List, Optional, Protocol, Tuple

log = logging.getLogger("greenback.scheduler")

__all__ = [
    "CancelHandle",
    "Scheduler",
    "AsyncioScheduler",
    "ManualScheduler",
]

Callback = Callable[[], None]


# ──────────────────────────────────────────────────────────────────────────────
# Контракт таймера
# ──────────────────────────────────────────────────────────────────────────────
class CancelHandle(Protocol):
    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def every(self, interval_s: float, fn: Callback) -> CancelHandle: ...


def _check_interval(interval_s: float) -> float:
    interval = float(interval_s)
    if not interval > 0:
        raise ValueError("interval_s must be > 0")
    return interval


def _run_guarded(fn: Callback) -> None:
    # упавший тик не должен останавливать расписание
    try:
        fn()
    except Exception:
        log.exception("scheduled callback %r failed", fn)


# ──────────────────────────────────────────────────────────────────────────────
# asyncio: цепочка loop.call_later
# ──────────────────────────────────────────────────────────────────────────────
class _AsyncioHandle:
    def __init__(self, loop: asyncio.AbstractEventLoop, interval: float, fn: Callback) -> None:
        self._loop = loop
        self._interval = interval
        self._fn = fn
        self._timer: Optional[asyncio.TimerHandle] = None
        self._cancelled = False

    def _arm(self) -> None:
        if not self._cancelled:
            self._timer = self._loop.call_later(self._interval, self._tick)

    def _tick(self) -> None:
        if self._cancelled:
            return
        _run_guarded(self._fn)
        self._arm()

    def cancel(self) -> None:
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler:
    """
    Periodic callbacks on an asyncio event loop.

    The loop is resolved lazily (``get_running_loop``) unless one is passed,
    so an instance can be built outside the loop and used inside it.
    Cancelling stops future ticks; a tick already running finishes.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def every(self, interval_s: float, fn: Callback) -> CancelHandle:
        interval = _check_interval(interval_s)
        loop = self._loop or asyncio.get_running_loop()
        handle = _AsyncioHandle(loop, interval, fn)
        handle._arm()
        return handle


# ──────────────────────────────────────────────────────────────────────────────
# Ручное время (тесты, офлайн-прогоны)
# ──────────────────────────────────────────────────────────────────────────────
class _ManualHandle:
    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler:
    """
    Deterministic scheduler with its own clock, in seconds.

    ``advance(seconds)`` moves the clock forward and fires every due callback
    in due-time order (registration order on ties). Pass ``clock`` as the
    time source to components so timers and timestamps agree.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, float, Callback, _ManualHandle]] = []

    def now(self) -> float:
        return self._now

    def now_ms(self) -> float:
        return self._now * 1000.0

    def every(self, interval_s: float, fn: Callback) -> CancelHandle:
        interval = _check_interval(interval_s)
        handle = _ManualHandle()
        heapq.heappush(self._queue, (self._now + interval, next(self._seq), interval, fn, handle))
        return handle

    def advance(self, seconds: float) -> int:
        """Advance the clock; returns the number of callbacks fired."""
        if seconds < 0:
            raise ValueError("cannot move the clock backwards")
        target = self._now + float(seconds)
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, interval, fn, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            _run_guarded(fn)
            fired += 1
            if not handle.cancelled:
                heapq.heappush(self._queue, (due + interval, next(self._seq), interval, fn, handle))
        self._now = target
        return fired

    @property
    def pending(self) -> int:
        return sum(1 for item in self._queue if not item[4].cancelled)
