from __future__ import annotations

import asyncio

from texpreview.core.scheduling import AsyncioScheduler, Debouncer, ManualScheduler, Throttler


def test_manual_scheduler_runs_timers_in_deadline_order() -> None:
    scheduler = ManualScheduler()
    calls: list[str] = []
    scheduler.call_later(2.0, calls.append, "late")
    scheduler.call_later(1.0, calls.append, "early")

    assert scheduler.advance(1.5) == 1
    assert calls == ["early"]
    assert scheduler.pending == 1
    scheduler.advance(1.0)
    assert calls == ["early", "late"]
    assert scheduler.time() == 2.5


def test_cancelled_timer_never_fires() -> None:
    scheduler = ManualScheduler()
    calls: list[int] = []
    handle = scheduler.call_later(0.1, calls.append, 1)
    handle.cancel()
    assert scheduler.advance(1.0) == 0
    assert calls == []


def test_run_pending_uses_external_clock() -> None:
    now = [0.0]
    scheduler = ManualScheduler(clock=lambda: now[0])
    calls: list[int] = []
    scheduler.call_later(1.0, calls.append, 1)
    assert scheduler.run_pending() == 0
    now[0] = 1.0
    assert scheduler.run_pending() == 1
    assert calls == [1]


def test_debouncer_collapses_bursts() -> None:
    scheduler = ManualScheduler()
    calls: list[str] = []
    debounced = Debouncer(scheduler, 0.5, calls.append)

    debounced("a")
    scheduler.advance(0.3)
    debounced("b")
    scheduler.advance(0.3)
    assert calls == []
    scheduler.advance(0.3)
    assert calls == ["b"]
    assert not debounced.pending


def test_debouncer_flush_runs_immediately() -> None:
    scheduler = ManualScheduler()
    calls: list[str] = []
    debounced = Debouncer(scheduler, 5.0, calls.append)
    debounced("now")
    debounced.flush()
    assert calls == ["now"]
    assert scheduler.advance(10.0) == 0


def test_throttler_runs_first_call_immediately() -> None:
    scheduler = ManualScheduler()
    calls: list[int] = []
    throttled = Throttler(scheduler, calls.append)
    throttled(1)
    assert calls == [1]


def test_throttler_spaces_calls_by_average_duration() -> None:
    scheduler = ManualScheduler()
    calls: list[int] = []
    throttled = Throttler(scheduler, calls.append, window=3)
    for duration in (1.0, 2.0, 3.0, 4.0):
        throttled.record(duration)
    assert throttled.interval == 3.0

    throttled(1)
    throttled(2)
    throttled(3)
    assert calls == [1]
    scheduler.advance(2.9)
    assert calls == [1]
    scheduler.advance(0.2)
    assert calls == [1, 3]


def test_throttler_honours_minimum_interval() -> None:
    throttled = Throttler(ManualScheduler(), lambda: None, min_interval=0.5)
    assert throttled.interval == 0.5
    throttled.record(0.1)
    assert throttled.interval == 0.5


def test_asyncio_scheduler_uses_running_loop() -> None:
    async def scenario() -> list[str]:
        scheduler = AsyncioScheduler()
        fired: list[str] = []
        done = asyncio.Event()

        def callback(value: str) -> None:
            fired.append(value)
            done.set()

        scheduler.call_later(0.0, callback, "tick")
        await asyncio.wait_for(done.wait(), timeout=1.0)
        return fired

    assert asyncio.run(scenario()) == ["tick"]
