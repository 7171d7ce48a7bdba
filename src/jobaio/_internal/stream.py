"""Lazy pull based sequences.

A stream pulls items from its source one at a time. It is single pass: once
the end is reached the stream is drained and every further pull raises
:class:`~jobaio.exceptions.StreamDrainedError`. Use :meth:`Stream.clone` to
fork a stream from its current position.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import AsyncIterable
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    TypeAlias,
)

from typing_extensions import override

from jobaio._internal.common.constants import (
    EMPTY,
    EOF,
    FlowState,
    StreamEvent,
)
from jobaio._internal.control import Condvar, Semaphore
from jobaio._internal.exceptions import StreamDrainedError
from jobaio._internal.runtime import Waitable, notify

if TYPE_CHECKING:
    from collections.abc import (
        AsyncGenerator,
        AsyncIterator,
        Callable,
        Generator,
        Iterable,
        Iterator,
        Sequence,
    )

    from jobaio._internal.common.types import Listener

SrcFunc: TypeAlias = "Callable[[], Any]"
logger = logging.getLogger("jobaio.stream")


def _list_reader(items: Sequence[Any], stream: _BaseStream) -> SrcFunc:
    def pull() -> Any:  # noqa: ANN401
        if stream.head < len(items):
            return items[stream.head]
        return EOF

    return pull


def _iter_reader(it: Iterator[Any]) -> SrcFunc:
    def pull() -> Any:  # noqa: ANN401
        return next(it, EOF)

    return pull


def _aiter_reader(it: AsyncIterator[Any]) -> SrcFunc:
    async def pull() -> Any:  # noqa: ANN401
        try:
            return await it.__anext__()
        except StopAsyncIteration:
            return EOF

    return pull


class _Tee:
    """Shares one source between several readers.

    Every item pulled from the source is buffered for each reader until that
    reader consumes it.
    """

    __slots__: tuple[str, ...] = ("_buffers", "_is_async", "_src")

    def __init__(self, src: SrcFunc, *, is_async: bool) -> None:
        self._src: SrcFunc = src
        self._is_async: bool = is_async
        self._buffers: list[deque[Any]] = []

    def _dispatch(self, item: Any) -> None:  # noqa: ANN401
        for buffer in self._buffers:
            buffer.append(item)

    def reader(self) -> SrcFunc:
        buffer: deque[Any] = deque()
        self._buffers.append(buffer)

        if self._is_async:

            async def apull() -> Any:  # noqa: ANN401
                if not buffer:
                    item = self._src()
                    if inspect.isawaitable(item):
                        item = await item
                    self._dispatch(item)
                return buffer.popleft()

            return apull

        def pull() -> Any:  # noqa: ANN401
            if not buffer:
                self._dispatch(self._src())
            return buffer.popleft()

        return pull


class _BaseStream:
    EOF: ClassVar[Any] = EOF
    _is_async: ClassVar[bool] = False

    __slots__: tuple[str, ...] = ("_items", "_src", "drained", "head")

    def __init__(self, src: Iterable[Any] | SrcFunc) -> None:
        self.head: int = 0
        self.drained: bool = False
        self._items: Sequence[Any] | None = None
        self._src: SrcFunc = self._create_src(src)

    @override
    def __repr__(self) -> str:
        return (
            f"{self.__class__.__qualname__}("
            f"head={self.head}, drained={self.drained})"
        )

    def _create_src(self, src: Iterable[Any] | SrcFunc) -> SrcFunc:
        if isinstance(src, (list, tuple)):
            self._items = src
            return _list_reader(src, self)
        if isinstance(src, AsyncIterable):
            if not self._is_async:
                msg = "An async iterable requires an AsyncStream."
                raise TypeError(msg)
            return _aiter_reader(aiter(src))
        if callable(src):
            return src
        return _iter_reader(iter(src))

    def _check_drained(self) -> None:
        if self.drained:
            raise StreamDrainedError

    def _accept(self, item: Any) -> tuple[Any, int | None]:  # noqa: ANN401
        if item is EOF or item is None:
            self.drained = True
            return (EOF, None)
        index = self.head
        self.head += 1
        return (item, index)

    def _fork_source(self, twin: _BaseStream) -> SrcFunc:
        if self._items is not None:
            return _list_reader(self._items, twin)
        tee = _Tee(self._src, is_async=self._is_async)
        self._src = tee.reader()
        return tee.reader()

    def _fork(self, twin: _BaseStream) -> None:
        twin._src = self._fork_source(twin)
        twin._items = self._items
        twin.head = self.head
        twin.drained = self.drained


def _exhausted() -> Any:  # noqa: ANN401
    return EOF


class Stream(_BaseStream):
    """A synchronous lazy sequence.

    ``src`` is a list, any iterable, or a function returning the next item.
    The stream ends when the source produces :data:`Stream.EOF` or
    ``None``.
    """

    __slots__: tuple[str, ...] = ()

    def next(self) -> tuple[Any, int | None]:
        """Pull the next item.

        Returns:
            ``(item, index)``, or ``(Stream.EOF, None)`` at the end.

        Raises:
            StreamDrainedError: The stream was already exhausted.

        """
        self._check_drained()
        return self._accept(self._src())

    def skip(self, n: int = 1) -> Stream:
        for _ in range(n):
            item, _ = self.next()
            if item is EOF:
                break
        return self

    def iter(self) -> Generator[tuple[int, Any], None, None]:
        """Yield ``(index, item)`` pairs until the stream ends."""
        while True:
            item, index = self.next()
            if item is EOF:
                return
            yield (index, item)

    def __iter__(self) -> Iterator[Any]:
        for _, item in self.iter():
            yield item

    def collect(self) -> list[Any]:
        return list(self)

    def slice(self, first: int = 0, last: int | None = None) -> Stream:
        """Items with an index in ``[first, last)``."""

        def pull() -> Any:  # noqa: ANN401
            if last is not None and self.head >= last:
                return EOF
            if first > self.head:
                _ = self.skip(first - self.head)
            if self.drained:
                return EOF
            item, _ = self.next()
            return item

        return Stream(pull)

    def map(self, fn: Callable[[Any], Any]) -> Stream:
        """Apply ``fn`` to every item, skipping those it maps to ``None``."""

        def pull() -> Any:  # noqa: ANN401
            item, _ = self.next()
            while item is not EOF:
                mapped = fn(item)
                if mapped is not None:
                    return mapped
                item, _ = self.next()
            return EOF

        return Stream(pull)

    def filter(self, predicate: Callable[[Any], Any]) -> Stream:
        return self.map(lambda item: item if predicate(item) else None)

    def reduce(
        self,
        fn: Callable[[Any, Any], Any],
        init: Any = EMPTY,  # noqa: ANN401
    ) -> Any:  # noqa: ANN401
        """Left fold. Without ``init`` the first item seeds the accumulator.

        Raises:
            TypeError: The stream is empty and no ``init`` was given.

        """
        acc = init
        if acc is EMPTY:
            acc, _ = self.next()
            if acc is EOF:
                msg = "reduce() of empty stream with no initial value"
                raise TypeError(msg)
        for item in self:
            acc = fn(acc, item)
        return acc

    def clone(self) -> Stream:
        """Fork an independent stream starting at the current position."""
        twin = Stream(_exhausted)
        self._fork(twin)
        return twin


class AsyncStream(_BaseStream, Waitable):
    """A lazy sequence over an asynchronous source.

    ``src`` is a list, a (async) iterable, or a function returning the next
    item or an awaitable resolving to it. Concurrent :meth:`next` calls are
    served one at a time, so no two consumers observe the same item.
    Awaiting the stream collects it.
    """

    _is_async: ClassVar[bool] = True

    __slots__: tuple[str, ...] = ("_next_sem",)

    def __init__(
        self,
        src: Iterable[Any] | AsyncIterable[Any] | SrcFunc,
    ) -> None:
        super().__init__(src)
        self._next_sem: Semaphore = Semaphore(1)

    async def _pull(self) -> Any:  # noqa: ANN401
        item = self._src()
        if inspect.isawaitable(item):
            item = await item
        return item

    async def next(self) -> tuple[Any, int | None]:
        """Pull the next item, suspending until the source produces it.

        Returns:
            ``(item, index)``, or ``(Stream.EOF, None)`` at the end.

        Raises:
            StreamDrainedError: The stream was already exhausted.

        """
        with await self._next_sem.acquire():
            self._check_drained()
            return self._accept(await self._pull())

    async def skip(self, n: int = 1) -> AsyncStream:
        for _ in range(n):
            item, _ = await self.next()
            if item is EOF:
                break
        return self

    async def iter(self) -> AsyncGenerator[tuple[int, Any], None]:
        while True:
            item, index = await self.next()
            if item is EOF:
                return
            yield (index, item)

    async def __aiter__(self) -> AsyncIterator[Any]:
        async for _, item in self.iter():
            yield item

    async def collect(self) -> list[Any]:
        return [item async for item in self]

    @override
    async def wait(self) -> list[Any]:
        return await self.collect()

    def slice(self, first: int = 0, last: int | None = None) -> AsyncStream:
        """Items with an index in ``[first, last)``."""

        async def pull() -> Any:  # noqa: ANN401
            if last is not None and self.head >= last:
                return EOF
            if first > self.head:
                _ = await self.skip(first - self.head)
            if self.drained:
                return EOF
            item, _ = await self.next()
            return item

        return AsyncStream(pull)

    def map(self, fn: Callable[[Any], Any]) -> AsyncStream:
        """Apply ``fn`` to every item, skipping those it maps to ``None``.

        ``fn`` may be a plain or a coroutine function.
        """

        async def pull() -> Any:  # noqa: ANN401
            item, _ = await self.next()
            while item is not EOF:
                mapped = fn(item)
                if inspect.isawaitable(mapped):
                    mapped = await mapped
                if mapped is not None:
                    return mapped
                item, _ = await self.next()
            return EOF

        return AsyncStream(pull)

    def filter(self, predicate: Callable[[Any], Any]) -> AsyncStream:
        async def keep(item: Any) -> Any:  # noqa: ANN401
            verdict = predicate(item)
            if inspect.isawaitable(verdict):
                verdict = await verdict
            return item if verdict else None

        return self.map(keep)

    async def reduce(
        self,
        fn: Callable[[Any, Any], Any],
        init: Any = EMPTY,  # noqa: ANN401
    ) -> Any:  # noqa: ANN401
        acc = init
        if acc is EMPTY:
            acc, _ = await self.next()
            if acc is EOF:
                msg = "reduce() of empty stream with no initial value"
                raise TypeError(msg)
        async for item in self:
            acc = fn(acc, item)
            if inspect.isawaitable(acc):
                acc = await acc
        return acc

    def clone(self) -> AsyncStream:
        """Fork an independent stream starting at the current position."""
        twin = AsyncStream(_exhausted)
        self._fork(twin)
        return twin


class AsyncListStream(AsyncStream):
    """A buffered queue fed by :meth:`push` and consumed as an AsyncStream.

    Closing the stream moves it from ``OPEN`` through ``CLOSING`` to
    ``CLOSED``. While ``CLOSING`` the ``on_close`` listeners run and may
    still push final items. Nothing is appended once ``CLOSED``; pushes at
    that point are ignored.
    """

    __slots__: tuple[str, ...] = (
        "_buffer_sem",
        "_changed",
        "_close_args",
        "_data",
        "_listeners",
        "_logger",
        "flow_state",
    )

    def __init__(
        self,
        *,
        on_close: Callable[..., Any] | None = None,
        on_post_close: Callable[[], Any] | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._data: list[Any] = []
        self._listeners: dict[StreamEvent, list[Listener]] = {
            kind: [] for kind in StreamEvent
        }
        self._close_args: tuple[Any, ...] = ()
        self._buffer_sem: Semaphore = Semaphore(1)
        self._changed: Condvar = Condvar()
        self._logger: logging.Logger = log or logger
        self.flow_state: FlowState = FlowState.OPEN
        super().__init__(self._reader(self))

        if on_close is not None:
            self.on_close(on_close)
        if on_post_close is not None:
            self.on_post_close(on_post_close)

    @override
    def __repr__(self) -> str:
        return (
            f"{self.__class__.__qualname__}("
            f"head={self.head}, "
            f"buffered={len(self._data)}, "
            f"flow_state={self.flow_state.name})"
        )

    def _reader(self, stream: _BaseStream) -> SrcFunc:
        async def pull() -> Any:  # noqa: ANN401
            # Suspend until a push makes the next item available.
            while stream.head >= len(self._data):
                await self._changed
            return self._data[stream.head]

        return pull

    @override
    def _fork_source(self, twin: _BaseStream) -> SrcFunc:
        return self._reader(twin)

    def is_closed(self) -> bool:
        return self.flow_state is FlowState.CLOSED

    def on_close(self, callback: Callable[..., Any]) -> None:
        self._listeners[StreamEvent.ON_CLOSE].append(callback)

    def on_post_close(self, callback: Callable[[], Any]) -> None:
        self._listeners[StreamEvent.ON_POST_CLOSE].append(callback)

    def _seal(self) -> None:
        self._data.append(EOF)
        self.flow_state = FlowState.CLOSED
        self._logger.debug("%r closed", self)

    async def _notify_post_close(self) -> None:
        await notify(
            self._logger,
            self._listeners[StreamEvent.ON_POST_CLOSE],
        )

    async def push(self, *items: Any) -> None:  # noqa: ANN401
        """Append ``items``. ``None`` values are skipped.

        Pushing :data:`Stream.EOF` closes the stream.
        """
        if self.is_closed():
            return
        permit = await self._buffer_sem.acquire()
        if self.is_closed():
            # Closed while waiting for the buffer.
            permit.release()
            return

        for item in items:
            if item is None:
                continue
            if item is not EOF:
                self._data.append(item)
                continue
            if self.flow_state is FlowState.CLOSING:
                # Already closing; the pending close appends the sentinel.
                continue

            self.flow_state = FlowState.CLOSING
            # Give up the buffer while the close listeners run, so that
            # they can push their final items.
            permit.release()
            try:
                await notify(
                    self._logger,
                    self._listeners[StreamEvent.ON_CLOSE],
                    *self._close_args,
                )
                permit = await self._buffer_sem.acquire()
            except asyncio.CancelledError:
                # The close was interrupted. Seal the stream anyway so
                # consumers are not left waiting on it.
                self._seal()
                self._changed.notify_all()
                await self._notify_post_close()
                raise
            finally:
                self._close_args = ()

            self._seal()
            await self._notify_post_close()
            break

        permit.release()
        self._changed.notify_all()

    async def close(self, *args: Any) -> None:  # noqa: ANN401
        """Close the stream, passing ``args`` to the ``on_close`` listeners.

        Items that were already pushed can still be consumed.
        """
        if self.is_closed():
            return
        self._close_args = args
        await self.push(EOF)
