"""GitHub comment reporter for posting coverage diffs to pull requests.

The comment starts with a hidden HTML marker so a later run can find and
update it instead of adding another one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from covdiff.utils.github import GITHUB_API_BASE, GitHubAPI

if TYPE_CHECKING:
    from covdiff.utils.github import GitHubPRInfo

logger = logging.getLogger(__name__)

COMMENT_MARKER = "<!-- codeCoverageDiffComment -->"

TABLE_HEADER = "&nbsp; | File | Stmts | Branches | Funcs | Lines"
TABLE_ALIGNMENT = ":-|:-|:-|:-|:-|:-"

NO_CHANGES_MESSAGE = "No changes to code coverage."


@dataclass
class CommentContext:
    """Header information shown above the coverage table."""

    commit_sha: str
    """Commit the new coverage was collected on."""

    coverage_report_url: str = ""
    """Link to the full coverage report artifact."""

    coverage_report_expiry: str = ""
    """When the linked artifact expires."""


def _format_report_link(context: CommentContext) -> str:
    if not context.coverage_report_url:
        return "(Full coverage report URL not set)"
    link = f"[Full coverage report download]({context.coverage_report_url})"
    if context.coverage_report_expiry:
        link += f" (expires {context.coverage_report_expiry}; rerun all CI jobs to regenerate)"
    return link


def format_coverage_comment(coverage_details: list[str], context: CommentContext) -> str:
    """Build the Markdown comment body.

    Args:
        coverage_details: Table rows from ``DiffChecker.get_coverage_details``.
        context: Commit and report link information.

    Returns:
        The comment body, starting with :data:`COMMENT_MARKER`.
    """
    sections: list[str] = [
        COMMENT_MARKER,
        f"## Test coverage for commit {context.commit_sha}",
        "",
        _format_report_link(context),
        "",
        "## Test coverage summary :test_tube:",
        "",
    ]

    if coverage_details:
        sections.append(TABLE_HEADER)
        sections.append(TABLE_ALIGNMENT)
        sections.extend(coverage_details)
    else:
        sections.append(NO_CHANGES_MESSAGE)

    return "\n".join(sections)


class GitHubCommentReporter:
    """Reporter that posts the coverage diff table as a GitHub PR comment."""

    def __init__(
        self,
        github_token: str | None = None,
        *,
        api_base: str = GITHUB_API_BASE,
    ) -> None:
        """Initialize the GitHub comment reporter.

        Args:
            github_token: GitHub access token. If not provided, will try to read
                from GITHUB_TOKEN environment variable.
            api_base: GitHub API root.

        Raises:
            GitHubAPIError: If no token is available.
        """
        self._api = GitHubAPI(token=github_token, api_base=api_base)

    def post_coverage_diff(
        self,
        pr_info: GitHubPRInfo,
        body: str,
        *,
        use_same_comment: bool = True,
    ) -> dict[str, str]:
        """Post the coverage diff comment.

        Args:
            pr_info: Pull request information.
            body: Comment body from :func:`format_coverage_comment`.
            use_same_comment: Update the previous covdiff comment if there is one.

        Returns:
            Dict with status and comment URL.

        Raises:
            GitHubAPIError: If posting the comment fails.
        """
        logger.info(
            "Posting coverage diff to PR #%d in %s/%s",
            pr_info.pr_number,
            pr_info.owner,
            pr_info.repo,
        )

        result = self._api.upsert_comment(
            pr_info, body, COMMENT_MARKER, reuse_existing=use_same_comment
        )

        logger.info("Successfully posted comment: %s", result.get("html_url"))

        return {
            "status": "success",
            "comment_url": result.get("html_url", ""),
        }
