"""Async subprocess execution with timeout and output capture."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


@dataclass
class SubprocessResult:
    """Result of subprocess execution."""

    returncode: int
    """Exit code of the process (-1 when it never ran or was killed)."""

    stdout: str
    stderr: str

    timed_out: bool = False
    """True if the process was killed after exceeding the timeout."""

    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class SubprocessError(Exception):
    """Raised when a command cannot be started."""

    def __init__(self, message: str, result: SubprocessResult) -> None:
        super().__init__(message)
        self.result = result


async def run_subprocess(
    command: Sequence[str],
    *,
    cwd: Path | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    env: dict[str, str] | None = None,
) -> SubprocessResult:
    """Run *command* and capture its output.

    A non-zero exit is reported through the result, not raised: Playwright
    exits non-zero from ``--list`` in some configurations while still printing
    usable JSON.

    Args:
        command: Program and arguments.
        cwd: Working directory, defaults to the current directory.
        timeout: Seconds before the process is killed.
        env: Extra environment variables layered over ``os.environ``.

    Raises:
        ValueError: If *command* is empty, *timeout* is not positive, or
            *cwd* does not exist.
        SubprocessError: If the program cannot be found or started.
    """
    if not command:
        msg = "Command cannot be empty"
        raise ValueError(msg)
    if timeout <= 0:
        msg = f"Timeout must be positive, got {timeout}"
        raise ValueError(msg)

    work_dir = cwd.resolve() if cwd else Path.cwd()
    if not work_dir.is_dir():
        msg = f"Working directory does not exist: {work_dir}"
        raise ValueError(msg)

    full_env = {**os.environ, **env} if env else None

    logger.debug("Running subprocess: %s (cwd=%s, timeout=%s)", " ".join(command), work_dir, timeout)
    start = time.perf_counter()

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=work_dir,
            env=full_env,
        )
    except (FileNotFoundError, PermissionError) as exc:
        logger.error("Cannot start %s: %s", command[0], exc)
        raise SubprocessError(
            f"Command not found: {command[0]}",
            result=SubprocessResult(returncode=-1, stdout="", stderr=str(exc)),
        ) from exc

    timed_out = False
    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        logger.warning("Subprocess timed out after %s seconds", timeout)
        timed_out = True
        try:
            process.kill()
        except ProcessLookupError:
            logger.debug("Process already exited before kill")
        await process.wait()
        stdout_bytes, stderr_bytes = b"", b"Process timed out and was killed"

    duration_ms = (time.perf_counter() - start) * 1000
    returncode = -1 if timed_out else (process.returncode or 0)
    result = SubprocessResult(
        returncode=returncode,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        stderr=stderr_bytes.decode("utf-8", errors="replace"),
        timed_out=timed_out,
        duration_ms=duration_ms,
    )
    logger.debug("Subprocess completed: returncode=%d, duration=%.2fms", returncode, duration_ms)
    return result
