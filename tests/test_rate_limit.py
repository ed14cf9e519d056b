import asyncio
from typing import Any

import pytest

from vibeboard.gateway.queue import RateLimitedCallQueue


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _work(clock: FakeClock, starts: list[float], value: Any, duration: float = 0.25):
    async def _call() -> Any:
        starts.append(clock.now)
        clock.now += duration
        if isinstance(value, Exception):
            raise value
        return value

    return _call


def test_call_starts_are_spaced_by_min_interval() -> None:
    clock = FakeClock()
    queue = RateLimitedCallQueue(1.0, clock=clock, sleep=clock.sleep)
    starts: list[float] = []

    async def _main() -> list[Any]:
        return await asyncio.gather(
            *(queue.enqueue(_work(clock, starts, index)) for index in range(3))
        )

    results = asyncio.run(_main())

    assert results == [0, 1, 2]
    assert starts == pytest.approx([100.0, 101.0, 102.0])
    assert clock.sleeps == pytest.approx([0.75, 0.75])


def test_failure_only_affects_its_own_caller() -> None:
    clock = FakeClock()
    queue = RateLimitedCallQueue(0.5, clock=clock, sleep=clock.sleep)
    starts: list[float] = []

    async def _main() -> list[Any]:
        return await asyncio.gather(
            queue.enqueue(_work(clock, starts, "first")),
            queue.enqueue(_work(clock, starts, ValueError("boom"))),
            queue.enqueue(_work(clock, starts, "third")),
            return_exceptions=True,
        )

    first, second, third = asyncio.run(_main())

    assert first == "first"
    assert isinstance(second, ValueError)
    assert str(second) == "boom"
    assert third == "third"
    assert len(starts) == 3


def test_sequential_calls_after_drain_still_wait() -> None:
    clock = FakeClock()
    events: list[dict[str, Any]] = []
    queue = RateLimitedCallQueue(2.0, clock=clock, sleep=clock.sleep, event_hook=events.append)
    starts: list[float] = []

    async def _main() -> None:
        await queue.enqueue(_work(clock, starts, "a", duration=0.5))
        assert not queue.draining
        await queue.enqueue(_work(clock, starts, "b", duration=0.5))

    asyncio.run(_main())

    assert starts == pytest.approx([100.0, 102.0])
    assert clock.sleeps == pytest.approx([1.5])
    assert events == [{"event": "rate_limit_wait", "seconds": pytest.approx(1.5)}]


def test_no_wait_once_interval_has_elapsed() -> None:
    clock = FakeClock()
    queue = RateLimitedCallQueue(1.0, clock=clock, sleep=clock.sleep)
    starts: list[float] = []

    async def _main() -> None:
        await queue.enqueue(_work(clock, starts, "a", duration=3.0))
        await queue.enqueue(_work(clock, starts, "b"))

    asyncio.run(_main())

    assert clock.sleeps == []
    assert starts == pytest.approx([100.0, 103.0])


def test_zero_interval_never_sleeps() -> None:
    clock = FakeClock()
    queue = RateLimitedCallQueue(0.0, clock=clock, sleep=clock.sleep)
    starts: list[float] = []

    async def _main() -> list[Any]:
        return await asyncio.gather(
            *(queue.enqueue(_work(clock, starts, index, duration=0.0)) for index in range(4))
        )

    assert asyncio.run(_main()) == [0, 1, 2, 3]
    assert clock.sleeps == []
    assert queue.pending == 0
