"""Cooperative task runtime on top of asyncio.

Tasks interleave only at explicit suspension points. The helpers in this
module turn callback style functions into awaitables and make sure that a
suspended task is resumed at most once.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from abc import ABCMeta, abstractmethod
from typing import (
    TYPE_CHECKING,
    Any,
    Generic,
    TypeVar,
    final,
)

from typing_extensions import Self, override

from jobaio._internal.common.constants import TaskState
from jobaio._internal.configuration import DEFAULT_CONFIG, cache_result

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Generator, Iterable
    from types import TracebackType

    from jobaio._internal.common.types import Listener, LoopFactory
    from jobaio._internal.configuration import JobaioConfiguration

ReturnT = TypeVar("ReturnT")
logger = logging.getLogger("jobaio.scheduler")


class Waitable(metaclass=ABCMeta):
    """Anything a task can suspend on with ``await``."""

    __slots__: tuple[str, ...] = ()

    @abstractmethod
    async def wait(self) -> Any:  # noqa: ANN401
        raise NotImplementedError

    def __await__(self) -> Generator[Any, None, Any]:
        return self.wait().__await__()


@final
class Task(Waitable, Generic[ReturnT]):
    __slots__: tuple[str, ...] = ("_state", "_task", "name")

    def __init__(
        self,
        work: Awaitable[ReturnT],
        *,
        loop: asyncio.AbstractEventLoop,
        name: str | None = None,
    ) -> None:
        self._state = TaskState.CREATED
        self._task: asyncio.Task[ReturnT] = loop.create_task(
            self._drive(work),
            name=name,
        )
        self.name: str = self._task.get_name()

    async def _drive(self, work: Awaitable[ReturnT]) -> ReturnT:
        self._state = TaskState.RUNNING
        try:
            result = await work
        except BaseException:
            self._state = TaskState.FAILED
            raise
        self._state = TaskState.COMPLETED
        return result

    @property
    def state(self) -> TaskState:
        if self._state is not TaskState.RUNNING:
            return self._state
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if current is self._task:
            return TaskState.RUNNING
        return TaskState.SUSPENDED

    @property
    def exception(self) -> BaseException | None:
        if not self._task.done() or self._task.cancelled():
            return None
        return self._task.exception()

    @override
    def __repr__(self) -> str:
        return (
            f"{self.__class__.__qualname__}("
            f"name={self.name!r}, "
            f"state={self.state.value})"
        )

    def is_done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        return self._task.cancel()

    def add_done_callback(self, fn: Callable[[Task[ReturnT]], None]) -> None:
        self._task.add_done_callback(lambda _: fn(self))

    @override
    async def wait(self) -> ReturnT:
        return await asyncio.shield(self._task)


class Scheduler:
    """Owns the tasks started with :meth:`spawn` until they finish.

    Failures of spawned tasks are reported through the logger instead of
    being propagated to the caller of :meth:`spawn`.
    """

    __slots__: tuple[str, ...] = (
        "_getloop",
        "_idle_event",
        "_logger",
        "_pending_tasks",
    )

    def __init__(
        self,
        *,
        loop_factory: LoopFactory | None = None,
        config: JobaioConfiguration | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        config = config or DEFAULT_CONFIG
        self._getloop: LoopFactory = cache_result(
            loop_factory or config.getloop,
        )
        self._logger: logging.Logger = log or config.child("scheduler")
        self._pending_tasks: set[Task[Any]] = set()
        self._idle_event: asyncio.Event | None = None

    @property
    def pending_tasks(self) -> frozenset[Task[Any]]:
        return frozenset(self._pending_tasks)

    def spawn(
        self,
        work: Callable[..., Awaitable[ReturnT]] | Awaitable[ReturnT],
        *args: Any,  # noqa: ANN401
        name: str | None = None,
    ) -> Task[ReturnT]:
        if callable(work):
            work = work(*args)
        elif args:
            msg = "Positional arguments are only accepted with a callable."
            raise TypeError(msg)

        task = Task(work, loop=self._getloop(), name=name)
        self._pending_tasks.add(task)
        if self._idle_event is not None:
            self._idle_event.clear()
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: Task[Any]) -> None:
        self._pending_tasks.discard(task)
        if not self._pending_tasks and self._idle_event is not None:
            self._idle_event.set()

        exc = task.exception
        if exc is not None:
            self._logger.error(
                "Task %s failed with unexpected error",
                task.name,
                exc_info=exc,
            )

    async def wait_all(self, timeout: float | None = None) -> None:
        """Wait until every spawned task has finished.

        Raises:
            asyncio.TimeoutError: ``timeout`` seconds passed first.

        """
        if not self._pending_tasks:
            return
        if self._idle_event is None:
            self._idle_event = asyncio.Event()
        _ = await asyncio.wait_for(self._idle_event.wait(), timeout=timeout)

    async def shutdown(self) -> None:
        if tasks := tuple(self._pending_tasks):
            for task in tasks:
                _ = task.cancel()
            _ = await asyncio.gather(
                *(task._task for task in tasks),
                return_exceptions=True,
            )

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_val: BaseException | None = None,
        exc_tb: TracebackType | None = None,
    ) -> None:
        await self.shutdown()


class _Resumer:
    """Completes a future from callback arguments, at most once."""

    __slots__: tuple[str, ...] = ("_future", "_loop", "_threadsafe", "fired")

    def __init__(
        self,
        future: asyncio.Future[Any],
        loop: asyncio.AbstractEventLoop,
        *,
        threadsafe: bool,
    ) -> None:
        self._future = future
        self._loop = loop
        self._threadsafe = threadsafe
        self.fired: bool = False

    def __call__(self, *args: Any) -> None:  # noqa: ANN401
        if self.fired:
            logger.warning(
                "Callback for %r invoked more than once; ignoring.",
                self._future,
            )
            return
        self.fired = True

        value: Any = args[0] if len(args) == 1 else (args or None)
        if self._threadsafe:
            _ = self._loop.call_soon_threadsafe(self._resolve, value)
        else:
            self._resolve(value)

    def _resolve(self, value: Any) -> None:  # noqa: ANN401
        # The awaiting task may have been cancelled in the meantime.
        if not self._future.done():
            self._future.set_result(value)


def _bridge(
    func: Callable[..., Any],
    *,
    threadsafe: bool,
) -> Callable[..., Awaitable[Any]]:
    @functools.wraps(func)
    async def wrapper(*args: Any) -> Any:  # noqa: ANN401
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        resume = _Resumer(future, loop, threadsafe=threadsafe)
        result = func(*args, resume)
        if inspect.isawaitable(result):
            await result
        return await future

    return wrapper


def wrap(func: Callable[..., Any]) -> Callable[..., Awaitable[Any]]:
    """Turn a callback style function into a coroutine function.

    The callback is passed as the last positional argument. The awaiting task
    resumes with the callback arguments: nothing becomes ``None``, a single
    argument is returned as is and several arguments are returned as a tuple.
    """
    return _bridge(func, threadsafe=False)


def sync_wrap(func: Callable[..., Any]) -> Callable[..., Awaitable[Any]]:
    """Like :func:`wrap`, but the resumption is deferred to the next loop tick.

    The callback is safe to invoke from any thread.
    """
    return _bridge(func, threadsafe=True)


async def pawait(
    x: Awaitable[ReturnT] | Callable[..., Awaitable[ReturnT]],
    *args: Any,  # noqa: ANN401
) -> tuple[bool, ReturnT | Exception]:
    """Await ``x`` in protected mode.

    Returns:
        ``(True, result)`` on success, ``(False, exception)`` on failure.

    """
    try:
        if callable(x):
            x = x(*args)
        return (True, await x)
    except Exception as exc:  # noqa: BLE001
        return (False, exc)


async def scheduler() -> None:
    """Yield control back to the event loop for one tick."""
    await asyncio.sleep(0)


async def timeout(ms: float) -> None:
    await asyncio.sleep(ms / 1000)


def _as_awaitable(
    task: Awaitable[Any] | Callable[[], Awaitable[Any]],
) -> Awaitable[Any]:
    if callable(task) and not isinstance(task, Waitable):
        return task()
    return task


async def join(
    tasks: Iterable[Awaitable[Any] | Callable[[], Awaitable[Any]]],
) -> list[Any]:
    """Run the given tasks concurrently and wait for all of them."""
    futures = [
        asyncio.ensure_future(_as_awaitable(t))
        for t in tasks
        if t is not None
    ]
    return list(await asyncio.gather(*futures))


async def chain(
    tasks: Iterable[Awaitable[Any] | Callable[[], Awaitable[Any]]],
) -> list[Any]:
    """Run and await the given tasks in sequence."""
    return [await _as_awaitable(task) for task in tasks if task is not None]


async def notify(
    log: logging.Logger,
    listeners: Iterable[Listener],
    *args: Any,  # noqa: ANN401
) -> None:
    """Invoke every listener in order, awaiting the ones that are async.

    A failing listener is logged and does not prevent the others from
    running.
    """
    for listener in tuple(listeners):
        try:
            result = listener(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            log.exception("Listener %r failed", listener)
