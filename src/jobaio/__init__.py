"""Cooperative tasks and external process orchestration on asyncio.

This module exposes the scheduler and its suspension helpers, the
synchronisation and timer utilities built on top of it, the Job and
MultiJob process managers and the lazy Stream family.
"""

from importlib.metadata import version as get_version

from jobaio._internal.common.constants import (
    EOF,
    FailCondition,
    FlowState,
    JobEvent,
    MultiJobEvent,
    StreamEvent,
    TaskState,
)
from jobaio._internal.configuration import JobaioConfiguration
from jobaio._internal.control import Condvar, CountDownLatch, Permit, Semaphore
from jobaio._internal.diagnostics import log_job
from jobaio._internal.job import Job
from jobaio._internal.multi_job import MultiJob
from jobaio._internal.perf import PerfTimer
from jobaio._internal.runtime import (
    Scheduler,
    Task,
    Waitable,
    chain,
    join,
    pawait,
    scheduler,
    sync_wrap,
    timeout,
    wrap,
)
from jobaio._internal.stream import AsyncListStream, AsyncStream, Stream
from jobaio._internal.timers import (
    DebounceLeading,
    DebounceTrailing,
    ThrottleLeading,
    ThrottleTrailing,
    TimerHandle,
    debounce_leading,
    debounce_trailing,
    set_interval,
    set_timeout,
    throttle_leading,
    throttle_trailing,
)

__version__ = get_version("jobaio")
__all__ = (
    "EOF",
    "AsyncListStream",
    "AsyncStream",
    "Condvar",
    "CountDownLatch",
    "DebounceLeading",
    "DebounceTrailing",
    "FailCondition",
    "FlowState",
    "Job",
    "JobEvent",
    "JobaioConfiguration",
    "MultiJob",
    "MultiJobEvent",
    "PerfTimer",
    "Permit",
    "Scheduler",
    "Semaphore",
    "Stream",
    "StreamEvent",
    "Task",
    "TaskState",
    "ThrottleLeading",
    "ThrottleTrailing",
    "TimerHandle",
    "Waitable",
    "chain",
    "debounce_leading",
    "debounce_trailing",
    "join",
    "log_job",
    "pawait",
    "scheduler",
    "set_interval",
    "set_timeout",
    "sync_wrap",
    "throttle_leading",
    "throttle_trailing",
    "timeout",
    "wrap",
)
