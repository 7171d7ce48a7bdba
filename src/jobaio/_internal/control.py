from __future__ import annotations

import asyncio
from collections import deque
from typing import TYPE_CHECKING, final

from typing_extensions import Self, override

from jobaio._internal.exceptions import SemaphoreMisuseError
from jobaio._internal.runtime import Waitable

if TYPE_CHECKING:
    from types import TracebackType


@final
class Permit:
    """One occupied slot of a :class:`Semaphore`.

    The permit must be released exactly once, either explicitly or by
    leaving a ``with`` block.
    """

    __slots__: tuple[str, ...] = ("_parent",)

    def __init__(self, parent: Semaphore) -> None:
        self._parent: Semaphore | None = parent

    @property
    def released(self) -> bool:
        return self._parent is None

    def release(self) -> None:
        if self._parent is None:
            raise SemaphoreMisuseError
        parent, self._parent = self._parent, None
        parent._release_one()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._parent is not None:
            self.release()


@final
class Semaphore:
    """Bounded pool of permits with FIFO hand-off to waiting tasks."""

    __slots__: tuple[str, ...] = ("_available", "_waiters", "capacity")

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            msg = f"Semaphore capacity must be >= 1, got {capacity}."
            raise ValueError(msg)
        self.capacity: int = capacity
        self._available: int = capacity
        self._waiters: deque[asyncio.Future[Permit]] = deque()

    @override
    def __repr__(self) -> str:
        return (
            f"{self.__class__.__qualname__}("
            f"capacity={self.capacity}, "
            f"available={self._available}, "
            f"waiters={len(self._waiters)})"
        )

    @property
    def available(self) -> int:
        return self._available

    @property
    def outstanding(self) -> int:
        return self.capacity - self._available

    def locked(self) -> bool:
        return self._available == 0

    async def acquire(self) -> Permit:
        if self._available > 0 and not self._waiters:
            self._available -= 1
            return Permit(self)

        future: asyncio.Future[Permit] = (
            asyncio.get_running_loop().create_future()
        )
        self._waiters.append(future)
        try:
            return await future
        except asyncio.CancelledError:
            if future.done() and not future.cancelled():
                # The permit was handed over right before the cancellation.
                future.result().release()
            elif future in self._waiters:
                self._waiters.remove(future)
            raise

    def _release_one(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Hand the slot over; the outstanding count is unchanged.
                waiter.set_result(Permit(self))
                return
        self._available += 1


@final
class Condvar(Waitable):
    """Suspends tasks until the next :meth:`notify_all`."""

    __slots__: tuple[str, ...] = ("_waiters",)

    def __init__(self) -> None:
        self._waiters: list[asyncio.Future[None]] = []

    @override
    async def wait(self) -> None:
        future: asyncio.Future[None] = (
            asyncio.get_running_loop().create_future()
        )
        self._waiters.append(future)
        await future

    def notify_all(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)


@final
class CountDownLatch(Waitable):
    __slots__: tuple[str, ...] = (
        "_condvar",
        "_sem",
        "counter",
        "initial_count",
    )

    def __init__(self, count: int) -> None:
        self.initial_count: int = count
        self.counter: int = count
        self._sem = Semaphore(1)
        self._condvar = Condvar()

    async def count_down(self) -> None:
        with await self._sem.acquire():
            if self.counter == 0:
                # Reached zero while waiting for the permit.
                return
            self.counter -= 1

        if self.counter == 0:
            self._condvar.notify_all()

    @override
    async def wait(self) -> None:
        if self.counter == 0:
            return
        await self._condvar

    async def reset(self) -> None:
        with await self._sem.acquire():
            self.counter = self.initial_count
        self._condvar.notify_all()
