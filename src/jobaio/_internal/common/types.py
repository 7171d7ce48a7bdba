import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeAlias

LoopFactory: TypeAlias = Callable[[], asyncio.AbstractEventLoop]
# Listeners may be plain functions or coroutine functions.
Listener: TypeAlias = Callable[..., Awaitable[Any] | Any]
