import pytest

from jobaio.exceptions import (
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
from tests.conftest import python_job


@pytest.mark.parametrize(
    "error",
    [
        SpawnError("git", "No such file or directory"),
        PipeError("stdout", "broken pipe"),
        JobTimeoutError("git", 100),
        InterruptedWaitError("git"),
        MultiJobFailedError([]),
        StreamDrainedError(),
        SemaphoreMisuseError(),
    ],
)
def test_errors_share_base(error: BaseJobaioError) -> None:
    assert isinstance(error, BaseJobaioError)


def test_error_messages() -> None:
    assert str(SpawnError("git", "boom")) == "Failed to spawn job 'git': boom"
    assert str(PipeError("stderr", "closed")) == "[stderr] pipe error: closed"
    assert str(InterruptedWaitError("git")) == (
        "Synchronous job 'git' got interrupted!"
    )
    assert str(JobTimeoutError("git", 250)) == (
        "Synchronous job 'git' exceeded timeout of 250 ms. "
        "The process may still be running."
    )


def test_multi_job_failures_carry_jobs() -> None:
    job = python_job("pass")
    error = JobNonZeroExitError([job])

    assert isinstance(error, MultiJobFailedError)
    assert error.jobs == [job]
    assert error.reason == JobNonZeroExitError.default_message
    assert str(error).endswith(f"Failed jobs: [{job.command!r}]")

    custom = JobEmptyOutputError([job, job], "Nothing!")
    assert custom.reason == "Nothing!"
    assert len(custom.jobs) == 2  # noqa: PLR2004
    assert str(MultiJobFailedError([])).startswith("All retries failed!")
