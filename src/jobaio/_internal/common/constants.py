# pyright: reportExplicitAny=false
import signal
from enum import Enum, IntEnum, unique
from typing import Any

from jobaio._internal.common.datastructures import EmptyPlaceholder, Sentinel

EMPTY: Any = EmptyPlaceholder()
EOF: Any = Sentinel("EOF")

DEFAULT_SYNC_TIMEOUT_MS = 30_000
DEFAULT_RETRY_DELAY_MS = 1
DEFAULT_READ_CHUNK_SIZE = 64 * 1024
DEFAULT_KILL_SIGNAL = signal.SIGKILL


@unique
class TaskState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"


@unique
class FlowState(IntEnum):
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


@unique
class JobEvent(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    EXIT = "exit"


@unique
class MultiJobEvent(str, Enum):
    EXIT = "exit"
    RETRY = "retry"


@unique
class StreamEvent(str, Enum):
    ON_CLOSE = "on_close"
    ON_POST_CLOSE = "on_post_close"


@unique
class FailCondition(str, Enum):
    NON_ZERO = "non_zero"
    ON_EMPTY = "on_empty"
