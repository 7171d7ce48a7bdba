import asyncio
import signal
from pathlib import Path
from typing import Any

import pytest

from jobaio import Job, JobaioConfiguration, JobEvent, scheduler
from jobaio._internal.job import split_lines
from jobaio.exceptions import JobTimeoutError, SpawnError
from tests.conftest import python_job, until

SLEEPER = "import time; time.sleep(30)"


async def test_buffered_output() -> None:
    job = python_job("print('hello')")
    code = await job

    assert code == 0
    assert job.stdout == ["hello"]
    assert job.stderr == []
    assert job.signal == 0
    assert job.pid is not None
    assert job.is_done()
    assert not job.is_running()


async def test_non_zero_exit_and_stderr() -> None:
    job = python_job("import sys; sys.stderr.write('boom\\n'); sys.exit(3)")
    assert await job.start() == 3  # noqa: PLR2004
    assert job.code == 3  # noqa: PLR2004
    assert job.stderr == ["boom"]
    assert job.stdout == []


async def test_buffered_output_splits_crlf() -> None:
    job = python_job(
        "import sys; sys.stdout.write('a\\r\\nb\\r\\nc'); sys.stdout.flush()",
    )
    _ = await job
    assert job.stdout == ["a", "b", "c"]


async def test_streaming_listeners_receive_lines() -> None:
    lines: list[str] = []
    errors: list[str] = []
    job = python_job(
        "import sys\n"
        "print('a', flush=True)\n"
        "sys.stderr.write('e\\n')\n"
        "print('b')",
        on_stdout=lambda line, _job: lines.append(line),
        on_stderr=lambda line, _job: errors.append(line),
    )
    assert not job.buffered_std

    _ = await job
    assert lines == ["a", "b"]
    assert errors == ["e"]
    assert job.stdout == ["a", "b"]


async def test_streaming_carries_partial_lines_across_chunks() -> None:
    lines: list[str] = []
    job = python_job(
        "import sys, time\n"
        "sys.stdout.write('par'); sys.stdout.flush()\n"
        "time.sleep(0.05)\n"
        "sys.stdout.write('tial\\nend'); sys.stdout.flush()",
    )
    job.on(JobEvent.STDOUT, lambda line, _job: lines.append(line))

    _ = await job
    assert lines == ["partial", "end"]


async def test_async_exit_listener() -> None:
    seen: list[tuple[Any, ...]] = []

    async def on_exit(job: Job, code: int, sig: int) -> None:
        await asyncio.sleep(0)
        seen.append((job, code, sig))

    job = python_job("raise SystemExit(5)", on_exit=on_exit)
    _ = await job
    assert seen == [(job, 5, 0)]


async def test_writer_feeds_stdin() -> None:
    job = python_job(
        "import sys; print(sys.stdin.read().upper(), end='')",
        writer=["foo", "bar"],
    )
    _ = await job
    assert job.stdout == ["FOO", "BAR"]


async def test_cwd_and_env(tmp_path: Path) -> None:
    config = JobaioConfiguration(env={"JOBAIO_BASE": "base"})
    job = python_job(
        "import os\n"
        "print(os.getcwd())\n"
        "print(os.environ['JOBAIO_BASE'], os.environ['JOBAIO_EXTRA'])",
        cwd=tmp_path,
        env={"JOBAIO_EXTRA": "extra"},
        config=config,
    )
    _ = await job

    assert Path(job.stdout[0]).resolve() == tmp_path.resolve()
    assert job.stdout[1] == "base extra"


async def test_spawn_failure() -> None:
    job = Job("/nonexistent/jobaio-missing-binary")

    with pytest.raises(SpawnError, match="Failed to spawn job"):
        _ = await job.start()

    assert job.spawn_error is not None
    assert job.code is None
    assert not job.is_started()
    assert not job.is_done()


async def test_kill_records_code_and_signal() -> None:
    job = python_job(SLEEPER)
    task = asyncio.create_task(job.start())
    await until(lambda: job.pid is not None)
    assert job.is_running()

    job.kill(42)
    assert await task == 42  # noqa: PLR2004
    assert job.code == 42  # noqa: PLR2004
    assert job.signal == signal.SIGKILL


async def test_kill_with_custom_signal() -> None:
    job = python_job(SLEEPER)
    task = asyncio.create_task(job.start())
    await until(lambda: job.pid is not None)

    job.kill(1, signal.SIGTERM)
    _ = await task
    assert job.code == 1
    assert job.signal == signal.SIGTERM


async def test_kill_after_exit_is_noop() -> None:
    job = python_job("pass")
    _ = await job
    job.kill(9)
    assert job.code == 0
    assert job.signal == 0


async def test_second_kill_keeps_first_values() -> None:
    job = python_job(SLEEPER)
    task = asyncio.create_task(job.start())
    await until(lambda: job.pid is not None)

    job.kill(42)
    job.kill(7, signal.SIGTERM)
    assert await task == 42  # noqa: PLR2004
    assert job.code == 42  # noqa: PLR2004
    assert job.signal == signal.SIGKILL


async def test_kill_during_spawn_is_delivered() -> None:
    job = python_job(SLEEPER)
    task = asyncio.create_task(job.start())
    await scheduler()
    assert job.is_started()
    assert job.pid is None

    job.kill(5)
    assert await task == 5  # noqa: PLR2004
    assert job.code == 5  # noqa: PLR2004
    assert job.signal == signal.SIGKILL
    assert job.pid is not None


async def test_signal_terminated_process() -> None:
    job = python_job("import os, signal; os.kill(os.getpid(), signal.SIGTERM)")
    _ = await job
    assert job.code == -signal.SIGTERM
    assert job.signal == signal.SIGTERM


async def test_sync() -> None:
    stdout, code, stderr = await python_job("print('x')").sync()
    assert stdout == ["x"]
    assert code == 0
    assert stderr == []


async def test_sync_timeout() -> None:
    job = python_job(SLEEPER)
    with pytest.raises(JobTimeoutError, match="exceeded timeout of 50 ms"):
        _ = await job.sync(50)

    assert job.is_running()
    job.kill(1)
    _ = await job


@pytest.mark.parametrize("duration", [0, -1])
async def test_sync_rejects_non_positive_duration(duration: float) -> None:
    job = python_job("pass")
    with pytest.raises(ValueError, match="duration must be > 0"):
        _ = await job.sync(duration)

    assert not job.is_started()


async def test_wait_on_running_job_does_not_restart() -> None:
    job = python_job("print('once')")
    first = asyncio.create_task(job.start())
    await until(lambda: job.pid is not None)
    pid = job.pid

    assert await job.wait() == 0
    assert await first == 0
    assert job.pid == pid
    assert job.stdout == ["once"]


async def test_restart_resets_previous_run() -> None:
    job = python_job("print('again')")
    _ = await job
    first_pid = job.pid

    _ = await job.start()
    assert job.stdout == ["again"]
    assert job.pid != first_pid


async def test_reset_while_running() -> None:
    job = python_job(SLEEPER)
    task = asyncio.create_task(job.start())
    await until(lambda: job.pid is not None)

    with pytest.raises(RuntimeError, match="still running"):
        job.reset()

    job.kill(1)
    _ = await task


async def test_join() -> None:
    jobs = [python_job(f"print({i})") for i in range(3)]
    await Job.join(jobs)

    assert [job.stdout for job in jobs] == [["0"], ["1"], ["2"]]
    assert all(job.is_done() for job in jobs)


async def test_join_raises_spawn_failure_after_others_finish() -> None:
    good = python_job("print('ok')")
    bad = Job("/nonexistent/jobaio-missing-binary")

    with pytest.raises(SpawnError):
        await Job.join([bad, good])
    assert good.is_done()
    assert good.stdout == ["ok"]


async def test_chain_runs_jobs_in_order() -> None:
    finished: list[str] = []
    slow = python_job(
        "import time; time.sleep(0.2)",
        on_exit=lambda *_: finished.append("slow"),
    )
    fast = python_job("pass", on_exit=lambda *_: finished.append("fast"))

    await Job.chain([slow, fast])
    assert finished == ["slow", "fast"]


def test_split_lines() -> None:
    assert split_lines("") == []
    assert split_lines("a\nb\n") == ["a", "b"]
    assert split_lines("a\r\nb") == ["a", "b"]
    assert split_lines("\n") == [""]
