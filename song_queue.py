"""Bounded-concurrency admission queue for generation requests.

The studio API silently rejects bursts of generation calls, so submissions
go through an ``AdmissionQueue``: at most ``concurrency_limit`` tasks run at
once, the rest wait in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger("suno-relay.queue")

T = TypeVar("T")


class AdmissionQueue:
    """FIFO task runner with a fixed concurrency ceiling.

    Usage:
        queue = AdmissionQueue(10)
        song_ids = await queue.enqueue(lambda: submit(payload))

    ``enqueue`` is a plain method: admission is decided at call time, in call
    order, and the returned future settles with the task's own outcome.
    """

    def __init__(self, concurrency_limit: int) -> None:
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        self._limit = concurrency_limit
        self._active = 0
        self._waiting: deque[Callable[[], None]] = deque()
        self._runners: set[asyncio.Task[None]] = set()

    @property
    def concurrency_limit(self) -> int:
        return self._limit

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return len(self._waiting)

    def get_stats(self) -> dict[str, int]:
        return {
            "limit": self._limit,
            "active": self._active,
            "pending": len(self._waiting),
        }

    def enqueue(self, task: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()

        def start() -> None:
            self._active += 1
            runner = loop.create_task(self._run(task, future))
            # keep a strong reference until the runner finishes
            self._runners.add(runner)
            runner.add_done_callback(self._runners.discard)

        if self._active < self._limit:
            start()
        else:
            self._waiting.append(start)
            logger.debug(
                "Queued task (active=%d, pending=%d)", self._active, len(self._waiting)
            )
        return future

    async def _run(self, task: Callable[[], Awaitable[Any]], future: asyncio.Future[Any]) -> None:
        try:
            # calling the factory inside the try turns a synchronous raise
            # into a rejection of this task's future only
            result = await task()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._active -= 1
            self._next()

    def _next(self) -> None:
        if self._waiting and self._active < self._limit:
            start = self._waiting.popleft()
            start()
