import asyncio
import logging
import sys
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock

import pytest

from jobaio import Job


@pytest.fixture
def amock() -> AsyncMock:
    async def _stub(*_args: Any, **_kwargs: Any) -> None:  # noqa: ANN401
        raise NotImplementedError

    return AsyncMock(spec=_stub, return_value=None)


@pytest.fixture
def debug_logs(caplog: pytest.LogCaptureFixture) -> Iterator[None]:
    with caplog.at_level(logging.DEBUG, logger="jobaio"):
        yield


def python_job(code: str, *args: str, **kwargs: Any) -> Job:  # noqa: ANN401
    """A job running ``code`` with the current interpreter."""
    return Job(sys.executable, ["-c", code, *args], **kwargs)


async def until(predicate: Any, step: float = 0.01) -> None:  # noqa: ANN401
    """Poll the event loop until ``predicate()`` holds."""

    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(step)

    await asyncio.wait_for(poll(), timeout=5)
