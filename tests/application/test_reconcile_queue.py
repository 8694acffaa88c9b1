"""Tests for ReconcileQueue."""

import asyncio

import pytest

from application.services.reconcile_queue import ReconcileQueue
from domain.entities.ec2_instance import ReconcileReference

WEB = ReconcileReference("default", "web")
DB = ReconcileReference("default", "db")


@pytest.mark.asyncio
async def test_duplicate_adds_are_collapsed():
    queue = ReconcileQueue()
    queue.add(WEB)
    queue.add(WEB)
    queue.add(DB)

    assert len(queue) == 2
    assert await queue.get() == WEB
    assert await queue.get() == DB


@pytest.mark.asyncio
async def test_reference_in_flight_is_not_handed_out_twice():
    queue = ReconcileQueue()
    queue.add(WEB)
    reference = await queue.get()

    queue.add(WEB)
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(queue.get(), timeout=0.05)

    queue.done(reference)
    assert await asyncio.wait_for(queue.get(), timeout=1) == WEB


@pytest.mark.asyncio
async def test_done_without_readd_does_not_requeue():
    queue = ReconcileQueue()
    queue.add(WEB)
    queue.done(await queue.get())

    assert len(queue) == 0


@pytest.mark.asyncio
async def test_add_after_delays_and_keeps_earliest():
    queue = ReconcileQueue()
    queue.add_after(WEB, 10)
    queue.add_after(WEB, 0.02)

    assert len(queue) == 0
    assert await asyncio.wait_for(queue.get(), timeout=1) == WEB


@pytest.mark.asyncio
async def test_rate_limited_backoff_grows_and_is_capped():
    queue = ReconcileQueue(base_delay=1.0, max_delay=5.0)

    delays = [queue.add_rate_limited(WEB) for _ in range(5)]

    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert queue.num_requeues(WEB) == 5
    queue.forget(WEB)
    assert queue.num_requeues(WEB) == 0
    assert queue.add_rate_limited(WEB) == 1.0
    queue.shutdown()


@pytest.mark.asyncio
async def test_shutdown_releases_waiting_workers():
    queue = ReconcileQueue()
    waiters = [asyncio.create_task(queue.get()) for _ in range(3)]
    await asyncio.sleep(0)

    queue.shutdown()

    assert await asyncio.wait_for(asyncio.gather(*waiters), timeout=1) == [None, None, None]
    queue.add(WEB)
    assert await queue.get() is None
