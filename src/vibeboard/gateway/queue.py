from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger

T = TypeVar("T")

QueueEventHook = Callable[[dict[str, Any]], None]


class RateLimitedCallQueue:
    """Serializes generation calls and spaces their starts by a minimum interval.

    One instance is shared by every actor in the process. Calls run in FIFO
    order from a single drain task; enqueueing while a drain is active only
    appends to the queue.
    """

    def __init__(
        self,
        min_interval_seconds: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        event_hook: QueueEventHook | None = None,
    ) -> None:
        self.min_interval_seconds = max(0.0, float(min_interval_seconds))
        self._clock = clock
        self._sleep = sleep
        self.event_hook = event_hook
        self._pending: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future[Any]]] = deque()
        self._drain_task: asyncio.Task[None] | None = None
        self._last_call_at: float | None = None

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    async def enqueue(self, work: Callable[[], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._pending.append((work, future))
        if not self.draining:
            self._drain_task = loop.create_task(self._drain())
        return await future

    async def _wait_for_turn(self) -> None:
        if self._last_call_at is None:
            return
        remaining = self.min_interval_seconds - (self._clock() - self._last_call_at)
        if remaining > 0:
            logger.debug(f"Rate limit: waiting {remaining:.3f}s before next generation call")
            self._emit({"event": "rate_limit_wait", "seconds": remaining})
            await self._sleep(remaining)

    async def _drain(self) -> None:
        while self._pending:
            work, future = self._pending.popleft()
            if future.done():
                continue
            await self._wait_for_turn()
            if future.done():
                continue
            self._last_call_at = self._clock()
            try:
                result = await work()
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
                continue
            if not future.done():
                future.set_result(result)
