from __future__ import annotations

import asyncio

import pytest

from catalog_sync.pipeline.work_queue import WorkQueue


@pytest.mark.parametrize("bad", [0, -1, 1.5, True, None, "2"])
def test_work_queue_rejects_invalid_concurrency(bad) -> None:
    with pytest.raises(ValueError):
        WorkQueue(bad)


@pytest.mark.asyncio
async def test_work_queue_never_exceeds_bound_and_completes_every_task() -> None:
    queue = WorkQueue(2, name="worker-1")
    running = 0
    peak = 0
    completed = []

    async def unit(index: int) -> int:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        completed.append(index)
        return index * 10

    handles = [queue.push(lambda i=i: unit(i)) for i in range(7)]
    assert queue.running == 2
    assert queue.pending == 5

    results = await asyncio.gather(*handles)

    assert results == [i * 10 for i in range(7)]
    assert peak == 2
    assert sorted(completed) == list(range(7))
    assert queue.running == 0
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_work_queue_starts_pending_tasks_in_fifo_order() -> None:
    queue = WorkQueue(1)
    started = []

    async def unit(index: int) -> None:
        started.append(index)
        await asyncio.sleep(0)

    await asyncio.gather(*(queue.push(lambda i=i: unit(i)) for i in range(5)))

    assert started == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_work_queue_failure_settles_its_future_and_frees_the_slot() -> None:
    queue = WorkQueue(1)

    async def boom() -> None:
        raise RuntimeError("page write failed")

    async def ok() -> str:
        return "ok"

    failing = queue.push(boom)
    following = queue.push(ok)

    with pytest.raises(RuntimeError, match="page write failed"):
        await failing
    assert await following == "ok"
    assert queue.running == 0


@pytest.mark.asyncio
async def test_push_does_not_block_and_join_waits_for_idle() -> None:
    queue = WorkQueue(1)
    release = asyncio.Event()
    finished = []

    async def gated(index: int) -> None:
        await release.wait()
        finished.append(index)

    for index in range(3):
        queue.push(lambda i=index: gated(i))

    # Every push returned while the first task is still blocked.
    assert queue.running == 1
    assert queue.pending == 2

    release.set()
    await asyncio.wait_for(queue.join(), timeout=1)
    assert finished == [0, 1, 2]


@pytest.mark.asyncio
async def test_separate_queues_keep_independent_budgets() -> None:
    first = WorkQueue(1, name="worker-1")
    second = WorkQueue(1, name="worker-2")
    release = asyncio.Event()

    first.push(release.wait)
    second.push(release.wait)

    assert first.running == 1
    assert second.running == 1
    release.set()
    await asyncio.gather(first.join(), second.join())
