from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeAlias

from typing_extensions import override

from jobaio._internal.common.constants import FailCondition, MultiJobEvent
from jobaio._internal.configuration import DEFAULT_CONFIG
from jobaio._internal.diagnostics import log_job
from jobaio._internal.exceptions import (
    JobEmptyOutputError,
    JobNonZeroExitError,
    MultiJobFailedError,
    SpawnError,
)
from jobaio._internal.perf import PerfTimer
from jobaio._internal.runtime import Waitable, notify, timeout

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from jobaio._internal.common.types import Listener
    from jobaio._internal.configuration import JobaioConfiguration
    from jobaio._internal.job import Job

FailCondResult: TypeAlias = "tuple[bool, Sequence[Job] | None, str | None]"
FailCond: TypeAlias = "Callable[[MultiJob], FailCondResult]"
OnExitCallback: TypeAlias = "Callable[[MultiJob, bool, str | None], Any]"
OnRetryCallback: TypeAlias = "Callable[[MultiJob, list[Job]], Any]"


def non_zero(mj: MultiJob) -> FailCondResult:
    """Fail if any of the jobs terminated with a non-zero exit code."""
    failed = [job for job in mj.jobs if job.code != 0]
    if failed:
        return (False, failed, JobNonZeroExitError.default_message)
    return (True, None, None)


def on_empty(mj: MultiJob) -> FailCondResult:
    """Fail if any of the jobs had no data in stdout."""
    failed = [job for job in mj.jobs if job.stdout in ([], [""])]
    if failed:
        return (False, failed, JobEmptyOutputError.default_message)
    return (True, None, None)


FAIL_CONDITIONS: dict[FailCondition, FailCond] = {
    FailCondition.NON_ZERO: non_zero,
    FailCondition.ON_EMPTY: on_empty,
}

_FAILURE_TYPES: dict[FailCondition, type[MultiJobFailedError]] = {
    FailCondition.NON_ZERO: JobNonZeroExitError,
    FailCondition.ON_EMPTY: JobEmptyOutputError,
}


class MultiJob(Waitable):
    """Runs a batch of jobs as one unit, retrying the ones that fail."""

    __slots__: tuple[str, ...] = (
        "_condition",
        "_config",
        "_done",
        "_exit_event",
        "_listeners",
        "_logger",
        "_started",
        "check_status",
        "failed_jobs",
        "jobs",
        "retry",
        "retry_delay_ms",
        "silent",
    )

    def __init__(  # noqa: PLR0913
        self,
        jobs: Sequence[Job],
        *,
        retry: int = 0,
        fail_cond: FailCondition | str | FailCond = FailCondition.NON_ZERO,
        on_exit: OnExitCallback | None = None,
        on_retry: OnRetryCallback | None = None,
        silent: bool = False,
        retry_delay_ms: float | None = None,
        config: JobaioConfiguration | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        if retry < 0:
            msg = f"retry must be >= 0, got {retry}."
            raise ValueError(msg)

        self._config: JobaioConfiguration = config or DEFAULT_CONFIG
        self._logger: logging.Logger = log or self._config.child("multi_job")
        self.jobs: list[Job] = list(jobs)
        self.retry: int = retry
        self.silent: bool = silent
        self.retry_delay_ms: float = (
            self._config.retry_delay_ms
            if retry_delay_ms is None
            else retry_delay_ms
        )
        self.failed_jobs: list[Job] = []
        self._listeners: dict[MultiJobEvent, list[Listener]] = {
            kind: [] for kind in MultiJobEvent
        }
        self._exit_event: asyncio.Event = asyncio.Event()
        self._started: bool = False
        self._done: bool = False

        self._condition: FailCondition | None
        if callable(fail_cond):
            self._condition = None
            self.check_status: FailCond = fail_cond
        else:
            try:
                self._condition = FailCondition(fail_cond)
            except ValueError:
                msg = f"Unknown fail condition: {fail_cond!r}"
                raise ValueError(msg) from None
            self.check_status = FAIL_CONDITIONS[self._condition]

        if on_exit is not None:
            self.on_exit(on_exit)
        if on_retry is not None:
            self.on_retry(on_retry)

    @override
    def __repr__(self) -> str:
        return (
            f"{self.__class__.__qualname__}("
            f"jobs={len(self.jobs)}, "
            f"retry={self.retry}, "
            f"done={self._done})"
        )

    def is_started(self) -> bool:
        return self._started

    def is_done(self) -> bool:
        return self._done

    def is_running(self) -> bool:
        return self._started and not self._done

    def on_exit(self, callback: OnExitCallback) -> None:
        self._listeners[MultiJobEvent.EXIT].append(callback)

    def on_retry(self, callback: OnRetryCallback) -> None:
        self._listeners[MultiJobEvent.RETRY].append(callback)

    def _check_status(self) -> tuple[bool, list[Job], str | None]:
        ok, failed, err = self.check_status(self)
        if not ok and not failed:
            # No subset reported, so the whole batch is retried.
            failed = self.jobs
        failed = list(failed or [])
        # Jobs that never ran always count as failed.
        for job in self.jobs:
            if job.spawn_error is not None and job not in failed:
                failed.append(job)
                ok = False
                err = err or str(job.spawn_error)
        return (ok, failed, err)

    def is_success(self) -> tuple[bool, str | None]:
        """Evaluate the fail condition against the current job state."""
        ok, _, err = self._check_status()
        if not ok:
            return (False, err)
        return (True, None)

    def raise_for_status(self) -> None:
        ok, failed, err = self._check_status()
        if ok:
            return
        error_type = MultiJobFailedError
        if self._condition is not None:
            error_type = _FAILURE_TYPES[self._condition]
        raise error_type(failed, err)

    async def _run_batch(self, jobs: Sequence[Job]) -> None:
        results = await asyncio.gather(
            *(job.start() for job in jobs),
            return_exceptions=True,
        )
        for job, result in zip(jobs, results):
            if isinstance(result, SpawnError):
                self._logger.debug("Job %r never ran: %s", job.command, result)
            elif isinstance(result, BaseException):
                raise result

    async def start(self) -> tuple[bool, str | None]:
        """Run all jobs, then re-run the failing ones up to ``retry`` times.

        Returns:
            ``(success, error message)``

        """
        for job in self.jobs:
            if job.is_running():
                msg = "A job is still running!"
                raise RuntimeError(msg)

        self._started = True
        self._done = False
        self._exit_event = asyncio.Event()
        self.failed_jobs = []

        timer = PerfTimer(f"MultiJob ({len(self.jobs)} jobs)")
        jobs = list(self.jobs)
        retries_exhausted: bool | None = None

        for attempt in range(1, self.retry + 2):
            if attempt > 1:
                await notify(
                    self._logger,
                    self._listeners[MultiJobEvent.RETRY],
                    self,
                    jobs,
                )

            await self._run_batch(jobs)
            _ = timer.lap()
            ok, failed, err = self._check_status()
            if ok:
                break

            jobs = failed
            if attempt == self.retry + 1:
                retries_exhausted = True
                continue

            retries_exhausted = False
            if not self.silent:
                self._logger.error(err)
                for job in jobs:
                    log_job(
                        job,
                        log=self._logger,
                        level=logging.ERROR,
                        no_stdout=True,
                    )
                self._logger.error(
                    "(%d/%d) Retrying failed jobs...",
                    attempt,
                    self.retry,
                )
            await timeout(self.retry_delay_ms)

        if not self.silent and self.retry > 0:
            if retries_exhausted is False:
                self._logger.info("Retry was successful!")
            elif retries_exhausted:
                self._logger.error("All retries failed!")

        _ = timer.time()
        self._logger.debug("%s", timer.format_result())

        ok, _, err = self._check_status()
        self.failed_jobs = [] if ok else jobs
        self._done = True
        await notify(
            self._logger,
            self._listeners[MultiJobEvent.EXIT],
            self,
            ok,
            err,
        )
        self._exit_event.set()
        return (ok, err)

    @override
    async def wait(self) -> tuple[bool, str | None]:
        if self._done:
            return self.is_success()
        if self.is_running():
            await self._exit_event.wait()
            return self.is_success()
        return await self.start()

    def stdout(self) -> list[str]:
        return [line for job in self.jobs for line in job.stdout]

    def stderr(self) -> list[str]:
        return [line for job in self.jobs for line in job.stderr]

    def kill(self, code: int, signal: int | None = None) -> None:
        for job in self.jobs:
            if job.is_running():
                job.kill(code, signal)
