from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from jobaio._internal.common.constants import (
    DEFAULT_KILL_SIGNAL,
    DEFAULT_READ_CHUNK_SIZE,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_SYNC_TIMEOUT_MS,
)

if TYPE_CHECKING:
    import signal
    from collections.abc import Callable

    from jobaio._internal.common.types import LoopFactory

ReturnT = TypeVar("ReturnT")
ParamsT = ParamSpec("ParamsT")


def cache_result(f: Callable[ParamsT, ReturnT]) -> Callable[ParamsT, ReturnT]:
    """Cache the result of the first function call."""
    result: ReturnT | None = None

    @functools.wraps(f)
    def wrapper(*args: ParamsT.args, **kwargs: ParamsT.kwargs) -> ReturnT:
        nonlocal result
        if result is None:
            result = f(*args, **kwargs)
        return result

    return wrapper


@dataclass(slots=True, kw_only=True)
class JobaioConfiguration:
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("jobaio")
    )
    getloop: LoopFactory = asyncio.get_running_loop
    sync_timeout_ms: float = DEFAULT_SYNC_TIMEOUT_MS
    retry_delay_ms: float = DEFAULT_RETRY_DELAY_MS
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    kill_signal: signal.Signals = DEFAULT_KILL_SIGNAL
    env: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.sync_timeout_ms <= 0:
            msg = "sync_timeout_ms must be > 0."
            raise ValueError(msg)
        if self.retry_delay_ms < 0:
            msg = "retry_delay_ms must be >= 0."
            raise ValueError(msg)
        if self.read_chunk_size < 1:
            msg = "read_chunk_size must be >= 1."
            raise ValueError(msg)

    def child(self, name: str) -> logging.Logger:
        return self.logger.getChild(name)


DEFAULT_CONFIG = JobaioConfiguration()
