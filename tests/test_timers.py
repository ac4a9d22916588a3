"""Tests for IntervalTimer cancellation guarantees."""

from __future__ import annotations

import threading
import time

import pytest

from mirrorplay.common.timers import IntervalTimer, monotonic_ms


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def test_timer_ticks_until_cancelled() -> None:
    ticks: list[int] = []
    timer = IntervalTimer(0.01, lambda: ticks.append(1))
    timer.start()

    assert _wait_for(lambda: len(ticks) >= 3)
    timer.cancel()
    count = len(ticks)
    time.sleep(0.05)

    assert len(ticks) == count
    assert timer.active is False


def test_cancel_waits_for_in_flight_tick() -> None:
    entered = threading.Event()
    finished: list[bool] = []

    def slow_tick() -> None:
        entered.set()
        time.sleep(0.05)
        finished.append(True)

    timer = IntervalTimer(0.005, slow_tick)
    timer.start()
    assert entered.wait(1.0)

    timer.cancel()

    assert finished
    count = len(finished)
    time.sleep(0.05)
    assert len(finished) == count


def test_callback_may_cancel_its_own_timer() -> None:
    ticks: list[int] = []
    holder: dict[str, IntervalTimer] = {}

    def tick() -> None:
        ticks.append(1)
        holder["timer"].cancel()

    holder["timer"] = IntervalTimer(0.005, tick)
    holder["timer"].start()

    assert _wait_for(lambda: ticks)
    time.sleep(0.05)
    assert ticks == [1]


def test_failing_callback_stops_the_timer() -> None:
    calls: list[int] = []

    def tick() -> None:
        calls.append(1)
        raise RuntimeError("boom")

    timer = IntervalTimer(0.005, tick)
    timer.start()

    assert _wait_for(lambda: calls)
    time.sleep(0.05)
    assert calls == [1]
    assert timer.active is False


def test_timer_cannot_be_restarted() -> None:
    timer = IntervalTimer(1.0, lambda: None)
    timer.start()
    with pytest.raises(RuntimeError):
        timer.start()
    timer.cancel()

    cancelled = IntervalTimer(1.0, lambda: None)
    cancelled.cancel()
    with pytest.raises(RuntimeError):
        cancelled.start()


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        IntervalTimer(0, lambda: None)


def test_monotonic_ms_increases() -> None:
    first = monotonic_ms()
    time.sleep(0.01)
    assert monotonic_ms() > first
