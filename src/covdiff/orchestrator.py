"""End-to-end coverage diff run for a pull request.

1. Run the coverage command on the current checkout and read the summary
2. Run the after-switch command (typically a checkout of the base branch)
3. Run the coverage command again and read the baseline summary
4. Post the diff table as a PR comment
5. Enforce the configured tolerances
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from covdiff.adapters.summary import load_coverage_summary
from covdiff.analyzers.diff_checker import DiffChecker
from covdiff.models.errors import CoverageThresholdError
from covdiff.reporters.github_comment import (
    CommentContext,
    GitHubCommentReporter,
    format_coverage_comment,
)
from covdiff.telemetry import record_metric_count, set_run_tags, start_span
from covdiff.utils.ci_context import detect_ci_context, resolve_commit_sha
from covdiff.utils.github import get_pr_info_from_env
from covdiff.utils.subprocess_runner import run_command

if TYPE_CHECKING:
    from covdiff.config import CovDiffConfig
    from covdiff.models.coverage import CoverageReport

logger = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    """What a run produced before thresholds were enforced."""

    coverage_details: list[str]
    """Table rows, one per listed file."""

    comment_body: str
    """Markdown comment body."""

    comment_url: str | None = None
    """URL of the posted comment, None when posting was skipped."""

    warnings: list[str] = field(default_factory=list)
    """Non-fatal problems (e.g. no PR context to comment on)."""


class CoverageDiffRunner:
    """Runs the coverage command twice and reports the difference."""

    def __init__(self, config: CovDiffConfig) -> None:
        self._config = config
        self._root = Path(config.root)
        self._commit_sha = ""

    @property
    def path_prefix(self) -> str:
        """Prefix stripped from the absolute paths Istanbul writes."""
        return f"{self._root.as_posix().rstrip('/')}/"

    async def _collect_summary(self, label: str) -> CoverageReport:
        run_config = self._config.run
        with start_span("covdiff.collect", f"coverage run ({label})"):
            await run_command(run_config.command, cwd=self._root, timeout=run_config.timeout)
            report = load_coverage_summary(self._root / run_config.summary_path)
        logger.info("Collected %s coverage: %d entries", label, len(report.files))
        return report

    async def collect(self) -> DiffChecker:
        """Produce both summaries and build the diff.

        Raises:
            SubprocessError: If a command fails or times out.
            CoverageReportError: If a summary cannot be read.
        """
        self._commit_sha = resolve_commit_sha(detect_ci_context(), self._root)
        set_run_tags(commit=self._commit_sha or None)

        report_new = await self._collect_summary("new")

        after_switch = self._config.run.after_switch_command
        if after_switch:
            with start_span("covdiff.switch", after_switch):
                await run_command(after_switch, cwd=self._root, timeout=self._config.run.timeout)

        report_old = await self._collect_summary("old")

        return DiffChecker(report_new, report_old)

    def publish(self, checker: DiffChecker) -> RunOutcome:
        """Render the table and post it to the pull request, if there is one.

        Raises:
            GitHubAPIError: If the GitHub API rejects the comment.
        """
        report_config = self._config.report
        details = checker.get_coverage_details(report_config.full_coverage_diff, self.path_prefix)
        body = format_coverage_comment(
            details,
            CommentContext(
                commit_sha=self._commit_sha or "unknown",
                coverage_report_url=report_config.coverage_report_url,
                coverage_report_expiry=report_config.coverage_report_expiry,
            ),
        )
        outcome = RunOutcome(coverage_details=details, comment_body=body)

        github_config = self._config.github
        pr_info = get_pr_info_from_env(github_config.pr_number or None)
        if pr_info is None:
            outcome.warnings.append("No pull request context found; comment not posted")
        elif not github_config.token:
            outcome.warnings.append("No GitHub token configured; comment not posted")
        else:
            set_run_tags(pr=pr_info.pr_number)
            with start_span("covdiff.comment", f"PR #{pr_info.pr_number}"):
                comment_reporter = GitHubCommentReporter(
                    github_config.token, api_base=github_config.api_url
                )
                result = comment_reporter.post_coverage_diff(
                    pr_info, body, use_same_comment=report_config.use_same_comment
                )
            outcome.comment_url = result.get("comment_url") or None

        for warning in outcome.warnings:
            logger.warning(warning)

        return outcome

    def enforce(self, checker: DiffChecker) -> None:
        """Apply the configured tolerances.

        Raises:
            CoverageThresholdError: On the first metric that dropped too far.
        """
        thresholds = self._config.thresholds
        try:
            checker.check_if_test_coverage_falls_below_delta(
                thresholds.delta, thresholds.total_delta
            )
        except CoverageThresholdError as exc:
            record_metric_count("covdiff.threshold_violation", metric=exc.metric)
            raise

    async def run(self) -> RunOutcome:
        """Collect, publish, then enforce.

        The comment is posted before a threshold violation is raised.
        """
        checker = await self.collect()
        outcome = self.publish(checker)
        self.enforce(checker)
        return outcome
