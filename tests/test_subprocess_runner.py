"""Tests for the subprocess runner."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from covdiff.utils.subprocess_runner import (
    SubprocessError,
    SubprocessResult,
    run_command,
    run_subprocess,
)

# ── Basic Execution Tests ────────────────────────────────────────────


async def test_run_subprocess_success() -> None:
    """Test successful subprocess execution."""
    result = await run_subprocess(["echo", "hello"])

    assert result.success
    assert result.returncode == 0
    assert "hello" in result.stdout
    assert result.timed_out is False
    assert result.duration_ms > 0


async def test_run_subprocess_with_working_directory(tmp_path: Path) -> None:
    """Test subprocess respects working directory."""
    (tmp_path / "coverage-summary.json").write_text("{}")

    result = await run_subprocess(["ls"], cwd=tmp_path)

    assert result.success
    assert "coverage-summary.json" in result.stdout


async def test_run_subprocess_env_is_merged() -> None:
    """Extra variables are added on top of the current environment."""
    result = await run_subprocess(
        [
            sys.executable,
            "-c",
            "import os; print(os.environ['COVDIFF_TEST_VAR'], 'PATH' in os.environ)",
        ],
        env={"COVDIFF_TEST_VAR": "merged"},
    )

    assert result.stdout.split() == ["merged", "True"]


async def test_run_subprocess_nonzero_exit() -> None:
    """A failing command is reported, not raised, without check."""
    result = await run_subprocess([sys.executable, "-c", "import sys; sys.exit(3)"])

    assert not result.success
    assert result.returncode == 3


# ── Error Handling Tests ─────────────────────────────────────────────


async def test_run_subprocess_check_raises() -> None:
    """check=True turns a failure into SubprocessError."""
    with pytest.raises(SubprocessError, match="failed with exit code 2") as exc_info:
        await run_subprocess([sys.executable, "-c", "import sys; sys.exit(2)"], check=True)

    assert exc_info.value.result.returncode == 2


async def test_run_subprocess_timeout() -> None:
    """A command that outlives its timeout is killed."""
    result = await run_subprocess(
        [sys.executable, "-c", "import time; time.sleep(10)"], timeout=0.2
    )

    assert result.timed_out
    assert not result.success
    assert result.returncode != 0


async def test_run_subprocess_timeout_with_check() -> None:
    """A timeout with check=True names the timeout."""
    with pytest.raises(SubprocessError, match="Command timed out"):
        await run_subprocess(
            [sys.executable, "-c", "import time; time.sleep(10)"], timeout=0.2, check=True
        )


async def test_run_subprocess_command_not_found() -> None:
    """A missing executable raises SubprocessError."""
    with pytest.raises(SubprocessError, match="Command not found"):
        await run_subprocess(["covdiff-definitely-not-a-command"])


async def test_run_subprocess_empty_command() -> None:
    """An empty command is rejected."""
    with pytest.raises(ValueError, match="Command cannot be empty"):
        await run_subprocess([])


async def test_run_subprocess_invalid_timeout() -> None:
    """A non-positive timeout is rejected."""
    with pytest.raises(ValueError, match="Timeout must be positive"):
        await run_subprocess(["echo"], timeout=0)


async def test_run_subprocess_missing_cwd(tmp_path: Path) -> None:
    """A missing working directory is rejected."""
    with pytest.raises(ValueError, match="Working directory does not exist"):
        await run_subprocess(["echo"], cwd=tmp_path / "missing")


# ── run_command ──────────────────────────────────────────────────────


async def test_run_command_uses_the_shell(monkeypatch: pytest.MonkeyPatch) -> None:
    """Quoting and variable expansion behave as in a shell."""
    monkeypatch.setenv("COVDIFF_TEST_WORD", "expanded")

    result = await run_command("echo 'two words' $COVDIFF_TEST_WORD")

    assert result.stdout.strip() == "two words expanded"


async def test_run_command_runs_chained_commands(tmp_path: Path) -> None:
    """Both halves of `a && b` run."""
    await run_command("true && touch marker", cwd=tmp_path)

    assert (tmp_path / "marker").exists()


async def test_run_command_chain_stops_at_failure(tmp_path: Path) -> None:
    """A failing first command fails the line and skips the rest."""
    with pytest.raises(SubprocessError, match="failed with exit code 1"):
        await run_command("false && touch marker", cwd=tmp_path)

    assert not (tmp_path / "marker").exists()


async def test_run_command_unbalanced_quote() -> None:
    """A malformed line is a command failure, not a crash."""
    with pytest.raises(SubprocessError, match="failed with exit code"):
        await run_command("echo 'unclosed")


async def test_run_command_missing_executable() -> None:
    """The shell reports a missing program as exit code 127."""
    with pytest.raises(SubprocessError) as exc_info:
        await run_command("covdiff-definitely-not-a-command --coverage")

    assert exc_info.value.result.returncode == 127


async def test_run_command_blank_line() -> None:
    """A blank command line is rejected."""
    with pytest.raises(ValueError, match="Command cannot be empty"):
        await run_command("   ")


async def test_run_command_fails_on_nonzero_exit() -> None:
    """run_command always checks the exit code."""
    with pytest.raises(SubprocessError):
        await run_command("false")


# ── SubprocessResult ─────────────────────────────────────────────────


def test_not_started_result() -> None:
    """A command that never ran has no exit code."""
    result = SubprocessResult.not_started("boom")

    assert result.returncode == -1
    assert not result.success
    assert result.stderr == "boom"


def test_stderr_tail() -> None:
    """Only the last lines of stderr are kept."""
    result = SubprocessResult(returncode=1, stdout="", stderr="a\nb\nc\n", success=False)

    assert result.stderr_tail(2) == "b\nc"
