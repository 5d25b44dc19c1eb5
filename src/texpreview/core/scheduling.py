"""Cooperative timers plus debounce and throttle wrappers built on them."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
import heapq
import itertools
from statistics import fmean
from typing import Any, Protocol, runtime_checkable


THROTTLE_WINDOW = 3


@runtime_checkable
class TimerHandle(Protocol):
    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """Single-threaded scheduler every in-process callback runs on."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...

    def time(self) -> float: ...


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self.loop.call_later(max(delay, 0.0), callback, *args)

    def time(self) -> float:
        return self.loop.time()


@dataclass(order=True)
class _ManualTimer:
    when: float
    sequence: int
    callback: Callable[..., Any] = field(compare=False)
    args: tuple[Any, ...] = field(compare=False, default=())
    cancelled: bool = field(compare=False, default=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Host-driven scheduler: callbacks run when the host advances the clock.

    Editors with their own event loop call :meth:`run_pending` from an idle
    hook; tests use :meth:`advance` to step a virtual clock.
    """

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock
        self._now = 0.0
        self._queue: list[_ManualTimer] = []
        self._counter = itertools.count()

    def time(self) -> float:
        return self._clock() if self._clock is not None else self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> _ManualTimer:
        timer = _ManualTimer(self.time() + max(delay, 0.0), next(self._counter), callback, args)
        heapq.heappush(self._queue, timer)
        return timer

    def run_pending(self) -> int:
        """Run every timer that is due; return how many callbacks ran."""
        ran = 0
        while self._queue and self._queue[0].when <= self.time():
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            timer.callback(*timer.args)
            ran += 1
        return ran

    def advance(self, seconds: float) -> int:
        """Move the virtual clock forward, running timers in deadline order."""
        if self._clock is not None:
            raise RuntimeError("advance() requires the virtual clock")
        target = self._now + max(seconds, 0.0)
        ran = 0
        while self._queue and self._queue[0].when <= target:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = max(self._now, timer.when)
            timer.callback(*timer.args)
            ran += 1
        self._now = target
        return ran

    @property
    def pending(self) -> int:
        return sum(1 for timer in self._queue if not timer.cancelled)


class Debouncer:
    """Delay a call until ``delay`` seconds passed without another call."""

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[..., Any]) -> None:
        self.scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self._handle: TimerHandle | None = None
        self._args: tuple[Any, ...] = ()

    def __call__(self, *args: Any) -> None:
        self.cancel()
        self._args = args
        self._handle = self.scheduler.call_later(self.delay, self._fire)

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> None:
        """Run a pending call right away."""
        if self._handle is not None:
            self.cancel()
            self.callback(*self._args)

    def _fire(self) -> None:
        self._handle = None
        self.callback(*self._args)


class Throttler:
    """Space calls by the rolling average of the last measured run durations.

    The first call in a quiet period runs immediately; calls arriving sooner
    collapse into one trailing call at the end of the interval.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        callback: Callable[..., Any],
        *,
        window: int = THROTTLE_WINDOW,
        min_interval: float = 0.0,
    ) -> None:
        self.scheduler = scheduler
        self.callback = callback
        self.min_interval = min_interval
        self._durations: deque[float] = deque(maxlen=window)
        self._last_run: float | None = None
        self._trailing: TimerHandle | None = None
        self._pending_args: tuple[Any, ...] = ()

    @property
    def interval(self) -> float:
        if not self._durations:
            return self.min_interval
        return max(self.min_interval, fmean(self._durations))

    def record(self, duration: float) -> None:
        """Feed a measured run duration into the rolling average."""
        if duration >= 0:
            self._durations.append(duration)

    def __call__(self, *args: Any) -> None:
        now = self.scheduler.time()
        if self._trailing is None and (
            self._last_run is None or now - self._last_run >= self.interval
        ):
            self._run(args)
            return
        self._pending_args = args
        if self._trailing is None:
            wait = self._last_run + self.interval - now if self._last_run is not None else 0.0
            self._trailing = self.scheduler.call_later(wait, self._fire_trailing)

    def cancel(self) -> None:
        if self._trailing is not None:
            self._trailing.cancel()
            self._trailing = None

    def _fire_trailing(self) -> None:
        self._trailing = None
        self._run(self._pending_args)

    def _run(self, args: tuple[Any, ...]) -> None:
        self._last_run = self.scheduler.time()
        self.callback(*args)


__all__ = [
    "AsyncioScheduler",
    "Debouncer",
    "ManualScheduler",
    "Scheduler",
    "Throttler",
    "TimerHandle",
]
