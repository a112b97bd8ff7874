"""Tests for the generation admission queue."""

from __future__ import annotations

import asyncio

import pytest

from song_queue import AdmissionQueue


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class _Gate:
    """A task whose completion the test controls."""

    def __init__(self, name: str, log: list[str]):
        self.name = name
        self.log = log
        self.release = asyncio.Event()
        self.error: Exception | None = None

    async def __call__(self) -> str:
        self.log.append(self.name)
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.name


def test_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        AdmissionQueue(0)


@pytest.mark.asyncio
async def test_never_exceeds_limit():
    queue = AdmissionQueue(3)
    running = 0
    peak = 0

    async def task(i: int) -> int:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.001 * (i % 4))
        running -= 1
        return i

    futures = [queue.enqueue(lambda i=i: task(i)) for i in range(20)]
    results = await asyncio.gather(*futures)

    assert results == list(range(20))
    assert peak == 3
    assert queue.active_count == 0
    assert queue.pending_count == 0


@pytest.mark.asyncio
async def test_waiting_tasks_start_in_arrival_order():
    queue = AdmissionQueue(2)
    started: list[str] = []
    gates = [_Gate(f"t{i}", started) for i in range(6)]
    futures = [queue.enqueue(g) for g in gates]
    await _settle()
    assert started == ["t0", "t1"]
    assert queue.pending_count == 4

    # finish in reverse of start order; the waiting list still drains FIFO
    gates[1].release.set()
    await _settle()
    gates[0].release.set()
    await _settle()
    assert started == ["t0", "t1", "t2", "t3"]

    for gate in gates[2:]:
        gate.release.set()
    assert await asyncio.gather(*futures) == [g.name for g in gates]
    assert started == [g.name for g in gates]


@pytest.mark.asyncio
async def test_settlement_frees_slot_for_next_waiter():
    queue = AdmissionQueue(2)
    started: list[str] = []
    gates = [_Gate(f"t{i}", started) for i in range(3)]
    futures = [queue.enqueue(g) for g in gates]
    await _settle()
    assert started == ["t0", "t1"]
    assert queue.get_stats() == {"limit": 2, "active": 2, "pending": 1}

    gates[0].release.set()
    assert await futures[0] == "t0"
    await _settle()
    assert started == ["t0", "t1", "t2"]
    assert queue.active_count == 2
    assert queue.pending_count == 0

    gates[1].release.set()
    gates[2].release.set()
    await asyncio.gather(*futures)
    assert queue.active_count == 0


@pytest.mark.asyncio
async def test_failure_is_isolated_and_next_task_starts():
    queue = AdmissionQueue(2)
    started: list[str] = []
    t1, t2, t3, t4 = (_Gate(f"T{i}", started) for i in range(1, 5))
    f1, f2, f3, f4 = (queue.enqueue(g) for g in (t1, t2, t3, t4))
    await _settle()
    assert started == ["T1", "T2"]

    t2.error = RuntimeError("remote said no")
    t2.release.set()
    with pytest.raises(RuntimeError, match="remote said no"):
        await f2
    await _settle()

    assert started == ["T1", "T2", "T3"]
    assert not f1.done()

    for gate in (t1, t3, t4):
        gate.release.set()
    assert await f1 == "T1"
    assert await f3 == "T3"
    assert await f4 == "T4"


@pytest.mark.asyncio
async def test_synchronous_raise_becomes_rejection():
    queue = AdmissionQueue(1)

    def broken():
        raise ValueError("bad payload")

    async def fine() -> str:
        return "ok"

    bad = queue.enqueue(broken)
    good = queue.enqueue(fine)

    with pytest.raises(ValueError, match="bad payload"):
        await bad
    assert await good == "ok"
    assert queue.active_count == 0


@pytest.mark.asyncio
async def test_cancelled_task_releases_slot():
    queue = AdmissionQueue(1)

    async def cancelled() -> None:
        raise asyncio.CancelledError()

    async def fine() -> str:
        return "ok"

    first = queue.enqueue(cancelled)
    second = queue.enqueue(fine)

    assert await second == "ok"
    assert first.cancelled()
    assert queue.active_count == 0


@pytest.mark.asyncio
async def test_enqueue_after_drain_respects_limit():
    queue = AdmissionQueue(1)
    started: list[str] = []
    a = _Gate("a", started)
    fa = queue.enqueue(a)
    a.release.set()
    await fa
    assert queue.active_count == 0

    b, c = _Gate("b", started), _Gate("c", started)
    fb, fc = queue.enqueue(b), queue.enqueue(c)
    await _settle()
    assert started == ["a", "b"]
    assert queue.pending_count == 1

    b.release.set()
    c.release.set()
    await asyncio.gather(fb, fc)
    assert started == ["a", "b", "c"]
