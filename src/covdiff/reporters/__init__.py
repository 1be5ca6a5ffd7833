"""Reporters for outputting coverage diff results."""

from __future__ import annotations

from covdiff.reporters.github_comment import GitHubCommentReporter, format_coverage_comment
from covdiff.reporters.terminal import reporter

__all__ = [
    "GitHubCommentReporter",
    "format_coverage_comment",
    "reporter",
]
