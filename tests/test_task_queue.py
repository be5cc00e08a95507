"""
Tests for the single-consumer serial task queue.
"""

import asyncio

import pytest

from SellSchedule.delivery.task_queue import TaskQueue


@pytest.mark.asyncio
async def test_tasks_run_in_enqueue_order():
    queue = TaskQueue("test")
    seen = []

    def make(i):
        async def run():
            await asyncio.sleep(0)
            seen.append(i)
        return run

    for i in range(5):
        await queue.push(f"t{i}", make(i))
    queue.start()
    await queue.join()
    await queue.stop()

    assert seen == [0, 1, 2, 3, 4]
    assert queue.completed == 5


@pytest.mark.asyncio
async def test_tasks_never_overlap():
    queue = TaskQueue("test")
    active = 0
    peak = 0

    async def run():
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1

    queue.start()
    for i in range(4):
        await queue.push(f"t{i}", run)
    await queue.join()
    await queue.stop()

    assert peak == 1


@pytest.mark.asyncio
async def test_failing_task_does_not_stop_queue(caplog):
    queue = TaskQueue("test")
    seen = []

    async def boom():
        raise RuntimeError("boom")

    async def ok():
        seen.append("ok")

    queue.start()
    await queue.push("boom", boom)
    await queue.push("ok", ok)
    await queue.join()
    await queue.stop()

    assert seen == ["ok"]
    assert queue.failed == 1
    assert queue.completed == 1
    assert any("task_failed" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_drained_listeners():
    queue = TaskQueue("test")
    once_calls = []
    every_calls = []
    queue.on_drained(lambda: once_calls.append(1), once=True)
    queue.on_drained(lambda: every_calls.append(1))

    async def noop():
        return None

    queue.start()
    await queue.push("a", noop)
    await queue.join()
    await queue.push("b", noop)
    await queue.join()
    await queue.stop()

    assert once_calls == [1]
    assert every_calls == [1, 1]


@pytest.mark.asyncio
async def test_drained_fires_only_when_empty():
    queue = TaskQueue("test")
    drained_at = []
    done = []

    async def step(i):
        done.append(i)

    queue.on_drained(lambda: drained_at.append(len(done)))
    for i in range(3):
        await queue.push(f"t{i}", lambda i=i: step(i))
    queue.start()
    await queue.join()
    await queue.stop()

    assert drained_at == [3]


@pytest.mark.asyncio
async def test_listener_error_is_swallowed():
    queue = TaskQueue("test")

    def broken():
        raise ValueError("listener")

    async def noop():
        return None

    queue.on_drained(broken)
    queue.start()
    await queue.push("a", noop)
    await queue.join()
    await queue.push("b", noop)
    await queue.join()
    assert queue.running
    await queue.stop()
    assert not queue.running
    assert queue.completed == 2
