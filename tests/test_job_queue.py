import asyncio

import pytest


@pytest.mark.asyncio
async def test_fifo_order(queue):
    for job_id in ("a", "b", "c"):
        queue.enqueue(job_id)

    assert len(queue) == 3
    assert [await queue.dequeue() for _ in range(3)] == ["a", "b", "c"]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_dequeue_waits_for_work(queue):
    waiter = asyncio.create_task(queue.dequeue())
    await asyncio.sleep(0)
    assert not waiter.done()

    queue.enqueue("late")

    assert await asyncio.wait_for(waiter, timeout=1) == "late"


@pytest.mark.asyncio
async def test_dequeue_is_cancellable(queue):
    waiter = asyncio.create_task(queue.dequeue())
    await asyncio.sleep(0)

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    queue.enqueue("next")
    assert await queue.dequeue() == "next"


@pytest.mark.asyncio
async def test_each_id_delivered_once(queue):
    consumers = [asyncio.create_task(queue.dequeue()) for _ in range(3)]
    await asyncio.sleep(0)

    for job_id in ("a", "b", "c"):
        queue.enqueue(job_id)

    results = await asyncio.wait_for(asyncio.gather(*consumers), timeout=1)
    assert sorted(results) == ["a", "b", "c"]


def test_queue_info(queue):
    queue.enqueue("a")

    assert queue.get_queue_info() == {"name": "downloads", "length": 1}
