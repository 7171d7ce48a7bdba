"""Exceptions raised by jobaio.

Every error derives from :class:`BaseJobaioError`. The MultiJob failures
carry the jobs that were still failing once the retries ran out.
"""

from jobaio._internal.exceptions import (
    BaseJobaioError,
    InterruptedWaitError,
    JobEmptyOutputError,
    JobNonZeroExitError,
    JobTimeoutError,
    MultiJobFailedError,
    PipeError,
    SemaphoreMisuseError,
    SpawnError,
    StreamDrainedError,
)

__all__ = (
    "BaseJobaioError",
    "InterruptedWaitError",
    "JobEmptyOutputError",
    "JobNonZeroExitError",
    "JobTimeoutError",
    "MultiJobFailedError",
    "PipeError",
    "SemaphoreMisuseError",
    "SpawnError",
    "StreamDrainedError",
)
