"""Where covdiff is running: GitHub Actions, another CI, or a workstation."""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING

from covdiff.utils.github import parse_repository, pr_number_from_ref

if TYPE_CHECKING:
    from pathlib import Path

_PR_EVENTS = frozenset({"pull_request", "pull_request_target"})
_GIT_TIMEOUT = 5


@dataclass
class CIContext:
    """Build environment as seen through CI variables."""

    is_ci: bool
    """``GITHUB_ACTIONS`` or ``CI`` is ``true``."""

    is_pr: bool
    """The build was triggered by a pull request event."""

    pr_number: int | None
    """Pull request number, for pull request builds."""

    commit_sha: str | None
    """``GITHUB_SHA``, when set."""

    repo_owner: str | None
    """Owner half of ``GITHUB_REPOSITORY``."""

    repo_name: str | None
    """Repository half of ``GITHUB_REPOSITORY``."""

    @classmethod
    def local(cls, *, is_ci: bool = False) -> CIContext:
        """Context with nothing known beyond whether this is CI."""
        return cls(
            is_ci=is_ci,
            is_pr=False,
            pr_number=None,
            commit_sha=None,
            repo_owner=None,
            repo_name=None,
        )


def detect_ci_context() -> CIContext:
    """Read the CI context from the environment.

    Only GitHub Actions is understood in detail; other CI systems are
    recognised through ``CI=true``.
    """
    if os.getenv("GITHUB_ACTIONS") != "true":
        return CIContext.local(is_ci=os.getenv("CI") == "true")

    is_pr = os.getenv("GITHUB_EVENT_NAME", "") in _PR_EVENTS
    owner, name = parse_repository(os.getenv("GITHUB_REPOSITORY", "")) or (None, None)
    return CIContext(
        is_ci=True,
        is_pr=is_pr,
        pr_number=pr_number_from_ref(os.getenv("GITHUB_REF")) if is_pr else None,
        commit_sha=os.getenv("GITHUB_SHA") or None,
        repo_owner=owner,
        repo_name=name,
    )


def get_head_commit_sha(project_root: Path) -> str | None:
    """``git rev-parse HEAD`` in ``project_root``, or None outside a repository."""
    git = shutil.which("git") or "git"
    try:
        completed = subprocess.run(
            [git, "rev-parse", "HEAD"],
            cwd=project_root,
            capture_output=True,
            text=True,
            check=True,
            timeout=_GIT_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    return completed.stdout.strip() or None


def resolve_commit_sha(ci_context: CIContext, project_root: Path) -> str:
    """Return the commit SHA from CI, falling back to git, then ``"unknown"``."""
    return ci_context.commit_sha or get_head_commit_sha(project_root) or "unknown"
