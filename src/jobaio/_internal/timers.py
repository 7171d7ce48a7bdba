"""Timer backed rate limiting helpers.

Every helper owns exactly one :class:`TimerHandle`. Closing a helper closes
its timer, after which further calls are ignored.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABCMeta, abstractmethod
from typing import TYPE_CHECKING, Any, Generic, ParamSpec, final

from typing_extensions import override

if TYPE_CHECKING:
    from collections.abc import Callable

ParamsT = ParamSpec("ParamsT")
logger = logging.getLogger("jobaio.timers")


@final
class TimerHandle:
    """Wraps one host timer.

    ``close()`` is idempotent and guarantees that the timer will not fire
    again.
    """

    __slots__: tuple[str, ...] = ("_handle", "_loop", "closed")

    def __init__(self) -> None:
        self._handle: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self.closed: bool = False

    @override
    def __repr__(self) -> str:
        return (
            f"{self.__class__.__qualname__}("
            f"active={self.is_active()}, closed={self.closed})"
        )

    def is_active(self) -> bool:
        return self._handle is not None

    def start(
        self,
        timeout_ms: float,
        callback: Callable[[], Any],
        *,
        repeat_ms: float = 0,
    ) -> None:
        """(Re)arm the timer; a pending expiry is discarded."""
        if self.closed:
            msg = "Cannot start a closed timer."
            raise RuntimeError(msg)
        self.stop()
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._handle = self._loop.call_later(
            timeout_ms / 1000,
            self._fire,
            callback,
            repeat_ms,
        )

    def _fire(self, callback: Callable[[], Any], repeat_ms: float) -> None:
        self._handle = None
        if repeat_ms > 0 and self._loop is not None:
            self._handle = self._loop.call_later(
                repeat_ms / 1000,
                self._fire,
                callback,
                repeat_ms,
            )
        try:
            callback()
        except Exception:
            logger.exception("Timer callback %r failed", callback)

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def close(self) -> None:
        self.stop()
        self.closed = True


class RateLimited(Generic[ParamsT], metaclass=ABCMeta):
    """A callable wrapper that delays or drops invocations of ``fn``."""

    __slots__: tuple[str, ...] = ("_fn", "_timer", "ms")

    def __init__(self, ms: float, fn: Callable[ParamsT, Any]) -> None:
        if ms < 0:
            msg = f"Negative timeout ({ms} ms) is not supported."
            raise ValueError(msg)
        self.ms: float = ms
        self._fn = fn
        self._timer = TimerHandle()

    @property
    def closed(self) -> bool:
        return self._timer.closed

    def __call__(self, *args: ParamsT.args, **kwargs: ParamsT.kwargs) -> None:
        if self._timer.closed:
            return
        self._invoke(args, kwargs)

    @abstractmethod
    def _invoke(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        self._timer.close()


@final
class DebounceLeading(RateLimited[ParamsT]):
    __slots__: tuple[str, ...] = ("_running",)

    def __init__(self, ms: float, fn: Callable[ParamsT, Any]) -> None:
        super().__init__(ms, fn)
        self._running: bool = False

    @override
    def _invoke(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        # Every call slides the quiet window.
        self._timer.start(self.ms, self._reopen)
        if not self._running:
            self._running = True
            self._fn(*args, **kwargs)

    def _reopen(self) -> None:
        self._running = False


@final
class DebounceTrailing(RateLimited[ParamsT]):
    __slots__: tuple[str, ...] = ("_pending", "rush_first")

    def __init__(
        self,
        ms: float,
        fn: Callable[ParamsT, Any],
        *,
        rush_first: bool = False,
    ) -> None:
        super().__init__(ms, fn)
        self.rush_first: bool = rush_first
        self._pending: tuple[tuple[Any, ...], dict[str, Any]] | None = None

    @override
    def _invoke(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        if self.rush_first and not self._timer.is_active():
            self._pending = None
            self._timer.start(self.ms, self._flush)
            self._fn(*args, **kwargs)
            return

        self._pending = (args, kwargs)
        self._timer.start(self.ms, self._flush)

    def _flush(self) -> None:
        if self._pending is None:
            return
        args, kwargs = self._pending
        self._pending = None
        self._fn(*args, **kwargs)


@final
class ThrottleLeading(RateLimited[ParamsT]):
    __slots__: tuple[str, ...] = ()

    @override
    def _invoke(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        if self._timer.is_active():
            return
        self._timer.start(self.ms, _noop)
        self._fn(*args, **kwargs)


@final
class ThrottleTrailing(RateLimited[ParamsT]):
    __slots__: tuple[str, ...] = ("_last_fired", "_pending", "rush_first")

    def __init__(
        self,
        ms: float,
        fn: Callable[ParamsT, Any],
        *,
        rush_first: bool = False,
    ) -> None:
        super().__init__(ms, fn)
        self.rush_first: bool = rush_first
        self._pending: tuple[tuple[Any, ...], dict[str, Any]] | None = None
        self._last_fired: float | None = None

    @override
    def _invoke(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        self._pending = (args, kwargs)
        if self._timer.is_active():
            return

        now = asyncio.get_running_loop().time()
        if self.rush_first and (
            self._last_fired is None
            or now - self._last_fired >= self.ms / 1000
        ):
            self._last_fired = now
            self._pending = None
            self._fn(*args, **kwargs)
            return

        self._timer.start(self.ms, self._flush)

    def _flush(self) -> None:
        if self._pending is None:
            return
        args, kwargs = self._pending
        self._pending = None
        self._last_fired = asyncio.get_running_loop().time()
        self._fn(*args, **kwargs)


def _noop() -> None:
    pass


def debounce_leading(
    ms: float,
    fn: Callable[ParamsT, Any],
) -> DebounceLeading[ParamsT]:
    """Invoke ``fn`` on the first call of every quiet window of ``ms``."""
    return DebounceLeading(ms, fn)


def debounce_trailing(
    ms: float,
    rush_first: bool,  # noqa: FBT001
    fn: Callable[ParamsT, Any],
) -> DebounceTrailing[ParamsT]:
    """Invoke ``fn`` with the latest arguments after ``ms`` of inactivity."""
    return DebounceTrailing(ms, fn, rush_first=rush_first)


def throttle_leading(
    ms: float,
    fn: Callable[ParamsT, Any],
) -> ThrottleLeading[ParamsT]:
    """Invoke ``fn`` at most once per ``ms``, dropping the other calls."""
    return ThrottleLeading(ms, fn)


def throttle_trailing(
    ms: float,
    rush_first: bool,  # noqa: FBT001
    fn: Callable[ParamsT, Any],
) -> ThrottleTrailing[ParamsT]:
    """Invoke ``fn`` at most once per ``ms`` with the latest arguments."""
    return ThrottleTrailing(ms, fn, rush_first=rush_first)


def set_interval(fn: Callable[[], Any], delay: float) -> TimerHandle:
    """Invoke ``fn`` every ``delay`` ms until it returns ``False``."""
    if delay <= 0:
        msg = f"Interval delay must be > 0 ms, got {delay}."
        raise ValueError(msg)
    handle = TimerHandle()

    def tick() -> None:
        if fn() is False:
            handle.close()

    handle.start(delay, tick, repeat_ms=delay)
    return handle


def set_timeout(fn: Callable[[], Any], delay: float) -> TimerHandle:
    """Invoke ``fn`` once after ``delay`` ms."""
    handle = TimerHandle()

    def fire() -> None:
        handle.close()
        fn()

    handle.start(delay, fire)
    return handle
