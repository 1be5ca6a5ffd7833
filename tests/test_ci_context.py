"""Tests for CI context detection."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from unittest.mock import patch

from covdiff.utils.ci_context import (
    CIContext,
    detect_ci_context,
    get_head_commit_sha,
    resolve_commit_sha,
)


def test_detect_github_actions_pr_context() -> None:
    """Test GitHub Actions PR context detection."""
    env = {
        "GITHUB_ACTIONS": "true",
        "GITHUB_EVENT_NAME": "pull_request",
        "GITHUB_REF": "refs/pull/123/merge",
        "GITHUB_SHA": "abc123def456",
        "GITHUB_REPOSITORY": "owner/repo",
    }

    with patch.dict(os.environ, env, clear=True):
        context = detect_ci_context()

        assert context.is_ci
        assert context.is_pr
        assert context.pr_number == 123
        assert context.commit_sha == "abc123def456"
        assert context.repo_owner == "owner"
        assert context.repo_name == "repo"


def test_detect_github_actions_pull_request_target() -> None:
    """pull_request_target counts as a PR event."""
    env = {
        "GITHUB_ACTIONS": "true",
        "GITHUB_EVENT_NAME": "pull_request_target",
        "GITHUB_REF": "refs/pull/9/merge",
    }

    with patch.dict(os.environ, env, clear=True):
        context = detect_ci_context()

        assert context.is_pr
        assert context.pr_number == 9
        assert context.repo_owner is None


def test_detect_github_actions_non_pr_context() -> None:
    """Test GitHub Actions non-PR (push) context."""
    env = {
        "GITHUB_ACTIONS": "true",
        "GITHUB_EVENT_NAME": "push",
        "GITHUB_REF": "refs/heads/main",
        "GITHUB_SHA": "xyz789",
        "GITHUB_REPOSITORY": "owner/repo",
    }

    with patch.dict(os.environ, env, clear=True):
        context = detect_ci_context()

        assert context.is_ci
        assert not context.is_pr
        assert context.pr_number is None
        assert context.commit_sha == "xyz789"


def test_detect_generic_ci() -> None:
    """Other CI systems only set is_ci."""
    with patch.dict(os.environ, {"CI": "true"}, clear=True):
        context = detect_ci_context()

        assert context.is_ci
        assert not context.is_pr
        assert context.commit_sha is None


def test_detect_local() -> None:
    """No CI variables means a local run."""
    with patch.dict(os.environ, {}, clear=True):
        assert not detect_ci_context().is_ci


def test_get_head_commit_sha(tmp_path: Path) -> None:
    """The SHA comes from git rev-parse."""
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="deadbeef\n", stderr="")

    with patch("covdiff.utils.ci_context.subprocess.run", return_value=completed) as run:
        assert get_head_commit_sha(tmp_path) == "deadbeef"

    assert run.call_args[0][0][1:] == ["rev-parse", "HEAD"]
    assert run.call_args[1]["cwd"] == tmp_path


def test_get_head_commit_sha_outside_repo(tmp_path: Path) -> None:
    """A git failure gives None."""
    error = subprocess.CalledProcessError(128, ["git"])

    with patch("covdiff.utils.ci_context.subprocess.run", side_effect=error):
        assert get_head_commit_sha(tmp_path) is None


def _context(commit_sha: str | None) -> CIContext:
    return CIContext(
        is_ci=False,
        is_pr=False,
        pr_number=None,
        commit_sha=commit_sha,
        repo_owner=None,
        repo_name=None,
    )


def test_resolve_commit_sha_prefers_ci(tmp_path: Path) -> None:
    """The CI SHA wins over git."""
    with patch("covdiff.utils.ci_context.get_head_commit_sha") as head:
        assert resolve_commit_sha(_context("ci-sha"), tmp_path) == "ci-sha"

    head.assert_not_called()


def test_resolve_commit_sha_falls_back(tmp_path: Path) -> None:
    """Without CI or git the SHA is "unknown"."""
    with patch("covdiff.utils.ci_context.get_head_commit_sha", return_value=None):
        assert resolve_commit_sha(_context(None), tmp_path) == "unknown"

    with patch("covdiff.utils.ci_context.get_head_commit_sha", return_value="git-sha"):
        assert resolve_commit_sha(_context(None), tmp_path) == "git-sha"


def test_local_context() -> None:
    """CIContext.local knows nothing but the CI flag."""
    context = CIContext.local(is_ci=True)

    assert context.is_ci
    assert not context.is_pr
    assert context.pr_number is None
    assert context.repo_owner is None
