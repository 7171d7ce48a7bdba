from __future__ import annotations

import asyncio
import codecs
import logging
import os
import re
from typing import TYPE_CHECKING, Any, TypeAlias

from typing_extensions import override

from jobaio._internal.common.constants import JobEvent
from jobaio._internal.configuration import DEFAULT_CONFIG
from jobaio._internal.exceptions import (
    InterruptedWaitError,
    JobTimeoutError,
    PipeError,
    SpawnError,
)
from jobaio._internal.runtime import Waitable, notify, scheduler

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from jobaio._internal.common.types import Listener
    from jobaio._internal.configuration import JobaioConfiguration

OnOutCallback: TypeAlias = "Callable[[str, Job], Any]"
OnExitCallback: TypeAlias = "Callable[[Job, int, int], Any]"

_LINE_SEP = re.compile(r"\r?\n")
_PIPE_ERRORS = (OSError, ValueError)


def split_lines(data: str) -> list[str]:
    """Split buffered output into lines, dropping the final newline."""
    if not data:
        return []
    lines = _LINE_SEP.split(data)
    if data.endswith("\n"):
        _ = lines.pop()
    return lines


def _format_writer(data: str | Sequence[str]) -> str:
    if isinstance(data, str):
        return data if data.endswith("\n") else f"{data}\n"
    return "".join(f"{line}\n" for line in data)


class Job(Waitable):
    """The lifecycle of one external process.

    With ``buffered_std`` the raw output is accumulated and split into lines
    once the process exits. Otherwise every complete line is pushed to the
    stdout/stderr listeners as soon as it arrives.
    """

    __slots__: tuple[str, ...] = (
        "_config",
        "_done",
        "_exit_event",
        "_listeners",
        "_logger",
        "_process",
        "_started",
        "_watcher",
        "args",
        "buffered_std",
        "code",
        "command",
        "cwd",
        "env",
        "pid",
        "pipe_errors",
        "signal",
        "spawn_error",
        "stderr",
        "stdout",
        "writer",
    )

    def __init__(  # noqa: PLR0913
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
        writer: str | Sequence[str] | None = None,
        buffered_std: bool = True,
        on_stdout: OnOutCallback | None = None,
        on_stderr: OnOutCallback | None = None,
        on_exit: OnExitCallback | None = None,
        config: JobaioConfiguration | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._config: JobaioConfiguration = config or DEFAULT_CONFIG
        self._logger: logging.Logger = log or self._config.child("job")
        self.command: str = command
        self.args: list[str] = list(args)
        self.cwd: str | os.PathLike[str] | None = cwd
        self.env: dict[str, str] = {
            **os.environ,
            **self._config.env,
            **(env or {}),
        }
        self.writer: str | Sequence[str] | None = writer
        self.buffered_std: bool = buffered_std
        self._listeners: dict[JobEvent, list[Listener]] = {
            kind: [] for kind in JobEvent
        }
        self._exit_event: asyncio.Event = asyncio.Event()
        self._process: asyncio.subprocess.Process | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._init_run_state()

        if on_stdout is not None:
            self.on_stdout(on_stdout)
        if on_stderr is not None:
            self.on_stderr(on_stderr)
        if on_exit is not None:
            self.on_exit(on_exit)

    def _init_run_state(self) -> None:
        self.stdout: list[str] = []
        self.stderr: list[str] = []
        self.pid: int | None = None
        self.code: int | None = None
        self.signal: int | None = None
        self.spawn_error: SpawnError | None = None
        self.pipe_errors: list[PipeError] = []
        self._started: bool = False
        self._done: bool = False

    @override
    def __repr__(self) -> str:
        return (
            f"{self.__class__.__qualname__}("
            f"command={self.command!r}, "
            f"pid={self.pid}, "
            f"code={self.code})"
        )

    def is_started(self) -> bool:
        return self._started

    def is_done(self) -> bool:
        return self._done

    def is_running(self) -> bool:
        return self._started and not self._done

    def on(self, kind: JobEvent, callback: Listener) -> None:
        self._listeners[kind].append(callback)
        if kind is not JobEvent.EXIT and not self._started:
            self.buffered_std = False

    def on_stdout(self, callback: OnOutCallback) -> None:
        """Subscribe to stdout lines. Switches the job to streaming mode."""
        self.on(JobEvent.STDOUT, callback)

    def on_stderr(self, callback: OnOutCallback) -> None:
        """Subscribe to stderr lines. Switches the job to streaming mode."""
        self.on(JobEvent.STDERR, callback)

    def on_exit(self, callback: OnExitCallback) -> None:
        self.on(JobEvent.EXIT, callback)

    def reset(self) -> None:
        if self.is_running():
            msg = f"Cannot reset {self!r} while it is still running!"
            raise RuntimeError(msg)
        self._process = None
        self._watcher = None
        self._exit_event = asyncio.Event()
        self._init_run_state()

    async def _spawn(self) -> None:
        self.reset()
        self._started = True
        stdin = (
            asyncio.subprocess.PIPE
            if self.writer is not None
            else asyncio.subprocess.DEVNULL
        )
        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=stdin,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=self.env,
            )
        except (OSError, ValueError) as exc:
            self.spawn_error = SpawnError(self.command, str(exc))
            self._started = False
            # A kill issued during the spawn has nothing to terminate.
            self.code = None
            self.signal = None
            self._exit_event.set()
            self._logger.error("Failed to spawn job %r: %s", self.command, exc)
            raise self.spawn_error from exc

        self._process = process
        self.pid = process.pid
        self._logger.debug("Spawned %r (pid %s)", self.command, self.pid)
        if self.signal is not None:
            # Killed while the process was being created.
            self._send_signal(process, self.signal)

        io_tasks = [
            self._read_stream(process.stdout, JobEvent.STDOUT, self.stdout),
            self._read_stream(process.stderr, JobEvent.STDERR, self.stderr),
        ]
        if self.writer is not None and process.stdin is not None:
            io_tasks.append(self._write_stdin(process.stdin, self.writer))

        self._watcher = asyncio.create_task(
            self._watch(process, io_tasks),
            name=f"job-{self.pid}",
        )

    async def _watch(
        self,
        process: asyncio.subprocess.Process,
        io_tasks: list[Any],
    ) -> None:
        results = await asyncio.gather(process.wait(), *io_tasks)
        returncode: int = results[0]

        # Values recorded by kill() take precedence.
        if self.code is None:
            self.code = returncode
        if self.signal is None:
            self.signal = -returncode if returncode < 0 else 0

        self._done = True
        self._logger.debug(
            "Job %r exited (code=%s, signal=%s)",
            self.command,
            self.code,
            self.signal,
        )
        await notify(
            self._logger,
            self._listeners[JobEvent.EXIT],
            self,
            self.code,
            self.signal,
        )
        self._exit_event.set()

    async def _read_stream(
        self,
        stream: asyncio.StreamReader | None,
        kind: JobEvent,
        out: list[str],
    ) -> None:
        if stream is None:
            return
        if self.buffered_std:
            await self._buffered_reader(stream, kind, out)
        else:
            await self._line_reader(stream, kind, out)

    async def _buffered_reader(
        self,
        stream: asyncio.StreamReader,
        kind: JobEvent,
        out: list[str],
    ) -> None:
        chunks: list[bytes] = []
        try:
            while chunk := await stream.read(self._config.read_chunk_size):
                chunks.append(chunk)
        except _PIPE_ERRORS as exc:
            self._pipe_error(kind.value, exc)
        data = b"".join(chunks).decode("utf-8", errors="replace")
        out.extend(split_lines(data))

    async def _line_reader(
        self,
        stream: asyncio.StreamReader,
        kind: JobEvent,
        out: list[str],
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        listeners = self._listeners[kind]
        line_buffer = ""
        try:
            while chunk := await stream.read(self._config.read_chunk_size):
                lines = _LINE_SEP.split(line_buffer + decoder.decode(chunk))
                # The last piece is an incomplete line (or empty).
                line_buffer = lines.pop()
                for line in lines:
                    out.append(line)
                    await notify(self._logger, listeners, line, self)
        except _PIPE_ERRORS as exc:
            self._pipe_error(kind.value, exc)

        line_buffer += decoder.decode(b"", final=True)
        if line_buffer:
            out.append(line_buffer)
            await notify(self._logger, listeners, line_buffer, self)

    async def _write_stdin(
        self,
        pipe: asyncio.StreamWriter,
        data: str | Sequence[str],
    ) -> None:
        try:
            pipe.write(_format_writer(data).encode("utf-8"))
            await pipe.drain()
        except _PIPE_ERRORS as exc:
            self._pipe_error("stdin", exc)
        finally:
            pipe.close()

    def _pipe_error(self, stream: str, exc: BaseException) -> None:
        error = PipeError(stream, str(exc))
        self.pipe_errors.append(error)
        self._logger.error("[%r] %s", self.command, error)

    async def start(self) -> int | None:
        """Spawn the process and wait until it exits.

        Returns:
            The exit code.

        Raises:
            SpawnError: The process could not be created.

        """
        await self._spawn()
        await self._exit_event.wait()
        return self.code

    @override
    async def wait(self) -> int | None:
        """Wait until the job exits, starting it first if needed."""
        if not self._started and not self._done:
            return await self.start()
        await self._exit_event.wait()
        if self.spawn_error is not None:
            raise self.spawn_error
        return self.code

    async def sync(
        self,
        duration: float | None = None,
    ) -> tuple[list[str], int | None, list[str]]:
        """Run the job to completion within ``duration`` ms.

        Returns:
            ``(stdout, code, stderr)``

        Raises:
            JobTimeoutError: The job did not exit in time.
            InterruptedWaitError: The wait was cancelled.
            ValueError: ``duration`` is not positive.

        """
        if duration is None:
            duration = self._config.sync_timeout_ms
        elif duration <= 0:
            msg = f"duration must be > 0, got {duration}."
            raise ValueError(msg)

        if self._done:
            return (self.stdout, self.code, self.stderr)

        if not self._started:
            await self._spawn()

        await scheduler()
        try:
            _ = await asyncio.wait_for(
                asyncio.shield(self._exit_event.wait()),
                timeout=duration / 1000,
            )
        except asyncio.TimeoutError as exc:
            raise JobTimeoutError(self.command, duration) from exc
        except asyncio.CancelledError as exc:
            raise InterruptedWaitError(self.command) from exc
        await scheduler()

        return (self.stdout, self.code, self.stderr)

    def kill(self, code: int, signal: int | None = None) -> None:
        """Record ``code``/``signal`` as the final exit values and terminate.

        A no-op when the process has already exited or was already killed.
        A kill issued while the process is still being spawned is delivered
        as soon as the process exists.
        """
        process = self._process
        if not self._started or self._done or self.code is not None:
            return
        if process is not None and process.returncode is not None:
            return

        signal = self._config.kill_signal if signal is None else signal
        self.code = code
        self.signal = int(signal)
        if process is not None:
            self._send_signal(process, self.signal)

    def _send_signal(
        self,
        process: asyncio.subprocess.Process,
        signal: int,
    ) -> None:
        try:
            process.send_signal(signal)
        except ProcessLookupError:
            self._logger.debug("Job %r already exited", self.command)

    @staticmethod
    async def join(jobs: Iterable[Job]) -> None:
        """Start every job that is not running yet and wait for all of them.

        Raises:
            SpawnError: The first spawn failure, once the others have exited.

        """
        results = await asyncio.gather(
            *(job.wait() for job in jobs),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    @staticmethod
    async def chain(jobs: Iterable[Job]) -> None:
        """Run the jobs one at a time, in order."""
        for job in jobs:
            _ = await job.wait()
