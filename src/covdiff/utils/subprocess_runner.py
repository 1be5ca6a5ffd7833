"""Runs the configured coverage and branch-switch commands.

Commands come from ``.covdiff.yml`` as single command lines and run through
the system shell, so ``git fetch && git checkout main`` works as written.
Output is captured so that a failing test run can be reported without
flooding the terminal.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 600.0

# Lines of stderr echoed to the log when a command fails.
_STDERR_TAIL_LINES = 20


@dataclass
class SubprocessResult:
    """Outcome of one command."""

    returncode: int
    """Exit code; -1 when the process never started or was killed."""

    stdout: str
    """Captured standard output."""

    stderr: str
    """Captured standard error."""

    success: bool
    """Exit code 0 within the timeout."""

    timed_out: bool = False
    """The timeout expired and the process was killed."""

    duration_ms: float = 0.0
    """Wall-clock time from spawn to exit."""

    @classmethod
    def not_started(cls, reason: str) -> SubprocessResult:
        """Result for a command that could not be spawned."""
        return cls(returncode=-1, stdout="", stderr=reason, success=False)

    def stderr_tail(self, lines: int = _STDERR_TAIL_LINES) -> str:
        """Last ``lines`` lines of stderr."""
        return "\n".join(self.stderr.splitlines()[-lines:])


class SubprocessError(Exception):
    """A command could not be started, or failed when it had to succeed."""

    def __init__(self, message: str, result: SubprocessResult) -> None:
        super().__init__(message)
        self.result = result


def _resolve_cwd(cwd: Path | None) -> Path:
    work_dir = cwd.resolve() if cwd else Path.cwd()
    if not work_dir.exists():
        raise ValueError(f"Working directory does not exist: {work_dir}")
    return work_dir


def _program(command: str | Sequence[str]) -> str:
    return command.split(maxsplit=1)[0] if isinstance(command, str) else str(command[0])


async def _spawn(
    command: str | Sequence[str], work_dir: Path, env: dict[str, str] | None
) -> asyncio.subprocess.Process:
    options: dict[str, Any] = {
        "stdout": asyncio.subprocess.PIPE,
        "stderr": asyncio.subprocess.PIPE,
        "cwd": work_dir,
        "env": {**os.environ, **env} if env else None,
    }
    try:
        if isinstance(command, str):
            return await asyncio.create_subprocess_shell(command, **options)
        return await asyncio.create_subprocess_exec(*command, **options)
    except FileNotFoundError as exc:
        raise SubprocessError(
            f"Command not found: {_program(command)}", SubprocessResult.not_started(str(exc))
        ) from exc
    except OSError as exc:
        raise SubprocessError(
            f"Could not start {_program(command)}: {exc}", SubprocessResult.not_started(str(exc))
        ) from exc


async def _wait(
    process: asyncio.subprocess.Process, timeout: float
) -> tuple[bytes, bytes, bool]:
    """Collect output, killing the process if it outlives ``timeout``."""
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        if process.returncode is None:
            process.kill()
        await process.wait()
        return b"", f"Killed after {timeout}s".encode(), True
    return stdout, stderr, False


async def run_subprocess(
    command: str | Sequence[str],
    *,
    cwd: Path | None = None,
    timeout: float = _DEFAULT_TIMEOUT,
    env: dict[str, str] | None = None,
    check: bool = False,
) -> SubprocessResult:
    """Run ``command`` and capture its output.

    Args:
        command: Executable followed by its arguments, or a single command
            line that is run through the shell.
        cwd: Working directory; the current directory when omitted.
        timeout: Seconds before the process is killed.
        env: Variables added on top of the current environment.
        check: Raise instead of returning an unsuccessful result.

    Returns:
        The captured result.

    Raises:
        SubprocessError: If the executable cannot be started, or ``check`` is
            set and the command fails or times out.
        ValueError: On an empty command, a non-positive timeout or a missing
            working directory.
    """
    if not command or (isinstance(command, str) and not command.strip()):
        raise ValueError("Command cannot be empty")
    if timeout <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout}")
    work_dir = _resolve_cwd(cwd)
    printable = command if isinstance(command, str) else shlex.join(str(p) for p in command)
    label = _program(command)

    logger.info("$ %s (in %s)", printable, work_dir)
    started = time.perf_counter()
    process = await _spawn(command, work_dir, env)
    stdout, stderr, timed_out = await _wait(process, timeout)

    returncode = process.returncode
    if timed_out or returncode is None:
        returncode = -1
    result = SubprocessResult(
        returncode=returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        success=returncode == 0 and not timed_out,
        timed_out=timed_out,
        duration_ms=(time.perf_counter() - started) * 1000,
    )
    logger.debug("%s exited %d after %.0fms", label, returncode, result.duration_ms)

    if result.success:
        return result
    if result.stderr:
        logger.debug("stderr of %s:\n%s", label, result.stderr_tail())
    if check:
        if timed_out:
            raise SubprocessError(f"Command timed out: {printable}", result)
        raise SubprocessError(f"Command failed with exit code {returncode}: {printable}", result)
    return result


async def run_command(
    command_line: str,
    *,
    cwd: Path | None = None,
    timeout: float = _DEFAULT_TIMEOUT,
) -> SubprocessResult:
    """Run a configured command line through the shell, raising on any failure.

    A chained line fails as soon as the shell reports a non-zero status, which
    for ``a && b`` is the first failing command. A missing executable surfaces
    as exit code 127.

    Raises:
        SubprocessError: If the command fails or times out.
        ValueError: If the command line is blank.
    """
    return await run_subprocess(command_line, cwd=cwd, timeout=timeout, check=True)
