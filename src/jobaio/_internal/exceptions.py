from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from jobaio._internal.job import Job


class BaseJobaioError(Exception):
    pass


class SpawnError(BaseJobaioError):
    """Raised when the operating system refuses to create the process."""

    def __init__(self, command: str, reason: str) -> None:
        self.command: str = command
        self.reason: str = reason
        super().__init__(f"Failed to spawn job {command!r}: {reason}")


class PipeError(BaseJobaioError):
    """An I/O error on one of the standard streams of a running job."""

    def __init__(self, stream: str, reason: str) -> None:
        self.stream: str = stream
        self.reason: str = reason
        super().__init__(f"[{stream}] pipe error: {reason}")


class JobTimeoutError(BaseJobaioError):
    """Raised when a synchronous wait on a job exceeds its budget."""

    def __init__(self, command: str, timeout: float) -> None:
        self.command: str = command
        self.timeout: float = timeout

        msg = (
            f"Synchronous job {command!r} exceeded timeout of "
            f"{timeout} ms. The process may still be running."
        )
        super().__init__(msg)


class InterruptedWaitError(BaseJobaioError):
    """Raised when a synchronous wait on a job got interrupted."""

    def __init__(self, command: str) -> None:
        self.command: str = command
        super().__init__(f"Synchronous job {command!r} got interrupted!")


class MultiJobFailedError(BaseJobaioError):
    """Raised when a batch of jobs is still failing after all retries."""

    default_message: str = "All retries failed!"

    def __init__(
        self,
        jobs: Sequence[Job],
        message: str | None = None,
    ) -> None:
        self.jobs: list[Job] = list(jobs)
        self.reason: str = message or self.default_message
        commands = ", ".join(repr(job.command) for job in self.jobs)
        super().__init__(f"{self.reason} Failed jobs: [{commands}]")


class JobNonZeroExitError(MultiJobFailedError):
    default_message: str = "Job(s) exited with a non-zero exit code!"


class JobEmptyOutputError(MultiJobFailedError):
    default_message: str = "Job(s) expected output, but returned nothing!"


class StreamDrainedError(BaseJobaioError):
    """Raised when pulling from a stream that has already been exhausted."""

    def __init__(
        self,
        message: str = "Attempted to consume a drained stream!",
    ) -> None:
        super().__init__(message)


class SemaphoreMisuseError(BaseJobaioError):
    """Raised when a permit is released more than once."""

    def __init__(
        self,
        message: str = (
            "Permit has already been released. "
            "Each acquire() must be matched by exactly one release()."
        ),
    ) -> None:
        super().__init__(message)
