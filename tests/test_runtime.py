import asyncio
import logging
import threading
from unittest import mock
from unittest.mock import AsyncMock

import pytest

from jobaio import (
    Scheduler,
    TaskState,
    chain,
    join,
    pawait,
    scheduler,
    sync_wrap,
    timeout,
    wrap,
)


async def test_spawn_returns_awaitable_task() -> None:
    async def add(a: int, b: int) -> int:
        await scheduler()
        return a + b

    async with Scheduler() as sched:
        task = sched.spawn(add, 1, 2, name="add")
        assert task in sched.pending_tasks
        assert await task == 3  # noqa: PLR2004

    assert task.name == "add"
    assert task.is_done()
    assert task.state is TaskState.COMPLETED
    assert not sched.pending_tasks
    assert repr(task) == "Task(name='add', state=completed)"


async def test_spawn_passes_args_to_callable(amock: AsyncMock) -> None:
    sched = Scheduler()
    _ = await sched.spawn(amock, 1, 2)
    amock.assert_awaited_once_with(1, 2)


async def test_spawn_rejects_args_without_callable() -> None:
    sched = Scheduler()
    coro = asyncio.sleep(0)
    with pytest.raises(TypeError, match="only accepted with a callable"):
        _ = sched.spawn(coro, 1)
    coro.close()


async def test_task_state_transitions() -> None:
    sched = Scheduler()
    release = asyncio.Event()
    seen: list[TaskState] = []

    async def work() -> None:
        seen.append(task.state)
        await release.wait()

    task = sched.spawn(work)
    assert task.state is TaskState.CREATED

    await scheduler()
    assert task.state is TaskState.SUSPENDED

    release.set()
    await task
    assert seen == [TaskState.RUNNING]
    assert task.state is TaskState.COMPLETED


async def test_failed_task_is_logged(
    caplog: pytest.LogCaptureFixture,
) -> None:
    async def boom() -> None:
        raise ValueError("boom")

    sched = Scheduler()
    task = sched.spawn(boom, name="boom")
    await sched.wait_all()

    assert task.state is TaskState.FAILED
    assert isinstance(task.exception, ValueError)
    assert "Task boom failed with unexpected error" in caplog.text
    with pytest.raises(ValueError, match="boom"):
        await task


async def test_wait_all() -> None:
    sched = Scheduler()
    _ = sched.spawn(asyncio.sleep(0))
    _ = sched.spawn(asyncio.sleep(0.01))
    await sched.wait_all()
    assert not sched.pending_tasks

    _ = sched.spawn(asyncio.sleep(10))
    with pytest.raises(asyncio.TimeoutError):
        await sched.wait_all(timeout=0)

    await sched.shutdown()
    assert not sched.pending_tasks


async def test_shutdown_cancels_pending_tasks() -> None:
    async with Scheduler() as sched:
        task = sched.spawn(asyncio.sleep(10))
        await scheduler()

    assert task.is_done()
    assert task.state is TaskState.FAILED
    assert task.exception is None


async def test_wrap_resumes_with_callback_value() -> None:
    loop = asyncio.get_running_loop()

    def double(value: int, callback: mock.Mock) -> None:
        _ = loop.call_soon(callback, value * 2)

    def pair(callback: mock.Mock) -> None:
        _ = loop.call_soon(callback, "a", "b")

    def nothing(callback: mock.Mock) -> None:
        _ = loop.call_soon(callback)

    assert await wrap(double)(21) == 42  # noqa: PLR2004
    assert await wrap(pair)() == ("a", "b")
    assert await wrap(nothing)() is None


async def test_wrap_ignores_second_callback(
    caplog: pytest.LogCaptureFixture,
) -> None:
    def twice(callback: mock.Mock) -> None:
        callback(1)
        callback(2)

    with caplog.at_level(logging.WARNING, logger="jobaio"):
        assert await wrap(twice)() == 1
    assert "invoked more than once" in caplog.text


async def test_wrap_awaits_async_function() -> None:
    async def later(callback: mock.Mock) -> None:
        await scheduler()
        callback("done")

    assert await wrap(later)() == "done"


async def test_sync_wrap_resumes_from_another_thread() -> None:
    def in_thread(value: str, callback: mock.Mock) -> None:
        threading.Thread(target=callback, args=(value,)).start()

    assert await sync_wrap(in_thread)("done") == "done"


async def test_pawait() -> None:
    async def ok(value: int) -> int:
        return value

    async def fail() -> None:
        raise RuntimeError("nope")

    assert await pawait(ok(1)) == (True, 1)
    assert await pawait(ok, 2) == (True, 2)

    success, error = await pawait(fail)
    assert not success
    assert isinstance(error, RuntimeError)


async def test_scheduler_yields_to_other_tasks() -> None:
    order: list[str] = []

    async def other() -> None:
        order.append("other")

    task = asyncio.create_task(other())
    order.append("before")
    await scheduler()
    order.append("after")
    await task

    assert order == ["before", "other", "after"]


async def test_timeout_sleeps_in_milliseconds() -> None:
    with mock.patch("asyncio.sleep", spec=asyncio.sleep) as sleep:
        await timeout(250)
    sleep.assert_awaited_once_with(0.25)


async def test_join_keeps_order() -> None:
    async def value(v: int, delay: float) -> int:
        await asyncio.sleep(delay)
        return v

    results = await join(
        [value(1, 0.02), lambda: value(2, 0), value(3, 0.01)],
    )
    assert results == [1, 2, 3]


async def test_chain_runs_in_sequence() -> None:
    order: list[int] = []

    async def record(v: int, delay: float) -> int:
        await asyncio.sleep(delay)
        order.append(v)
        return v

    results = await chain([record(1, 0.02), lambda: record(2, 0)])
    assert results == [1, 2]
    assert order == [1, 2]
