from __future__ import annotations

import logging
import shlex
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jobaio._internal.job import Job

logger = logging.getLogger("jobaio.job")


def log_job(  # noqa: PLR0913
    job: Job,
    *,
    log: logging.Logger | None = None,
    level: int = logging.DEBUG,
    context: str | None = None,
    no_stdout: bool = False,
    no_stderr: bool = False,
) -> None:
    """Log the exit code, command line, cwd and output of ``job``."""
    log = log or logger
    if not log.isEnabledFor(level):
        return

    prefix = f"[{context}] " if context else ""
    cmd = shlex.join([job.command, *job.args])

    log.log(level, "%s[job-info] Exit code: %s", prefix, job.code)
    log.log(level, "%s     [cmd] %s", prefix, cmd)
    if job.cwd:
        log.log(level, "%s     [cwd] %s", prefix, job.cwd)
    if not no_stdout and job.stdout:
        log.log(level, "%s  [stdout] %s", prefix, "\n".join(job.stdout))
    if not no_stderr and job.stderr:
        log.log(level, "%s  [stderr] %s", prefix, "\n".join(job.stderr))
