"""Per-client registry of in-flight calls that can be stopped by trace id."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from suno_errors import RequestAbortedError, RequestTimeoutError

logger = logging.getLogger("suno-relay.cancellation")

T = TypeVar("T")


class CancellationRegistry:
    """Tracks running calls by trace id.

    Calls are registered when dispatched and removed when they settle, so
    ``stop`` only ever reaches work that is still in flight.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._stopped: set[str] = set()

    def __contains__(self, trace_id: str) -> bool:
        return trace_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def add(self, trace_id: str, task: asyncio.Task[Any]) -> None:
        self._tasks[trace_id] = task

    def remove(self, trace_id: str, task: asyncio.Task[Any] | None = None) -> None:
        """Drop ``trace_id``; with ``task`` given, only if it is still the registered one."""
        if task is not None and self._tasks.get(trace_id) is not task:
            return
        self._tasks.pop(trace_id, None)
        self._stopped.discard(trace_id)

    def stop(self, trace_id: str) -> bool:
        """Abort the call registered under ``trace_id``. Returns False if none."""
        task = self._tasks.get(trace_id)
        if task is None or task.done():
            return False
        self._stopped.add(trace_id)
        task.cancel()
        logger.info("Stopped request %s", trace_id)
        return True

    async def run(
        self,
        trace_id: str,
        call: Awaitable[T],
        timeout: float | None,
        operation: str | None = None,
    ) -> T:
        """Run ``call`` under ``timeout``, stoppable through ``trace_id``."""
        task = asyncio.ensure_future(call)
        self.add(trace_id, task)
        try:
            return await asyncio.wait_for(task, timeout)
        except RequestTimeoutError:
            raise
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(
                f"no response within {timeout:g}s", operation=operation
            ) from exc
        except asyncio.CancelledError:
            if trace_id not in self._stopped:
                raise
            raise RequestAbortedError(
                f"request {trace_id} was stopped", operation=operation
            ) from None
        finally:
            self.remove(trace_id, task)
