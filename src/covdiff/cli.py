"""covdiff CLI: top-level command group."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler

from covdiff import __version__
from covdiff.adapters.summary import load_coverage_summary
from covdiff.analyzers.diff_checker import DiffChecker
from covdiff.config import (
    CONFIG_FILENAME,
    MAX_TOLERANCE,
    CovDiffConfig,
    SentryConfig,
    load_config,
    parse_tolerance,
    validate_config,
)
from covdiff.models.errors import ConfigError, CovDiffError, CoverageThresholdError
from covdiff.orchestrator import CoverageDiffRunner, RunOutcome
from covdiff.reporters.github_comment import (
    CommentContext,
    GitHubCommentReporter,
    format_coverage_comment,
)
from covdiff.reporters.terminal import reporter
from covdiff.telemetry import init_sentry
from covdiff.utils.ci_context import detect_ci_context, resolve_commit_sha
from covdiff.utils.github import GitHubAPIError, get_pr_info_from_env
from covdiff.utils.subprocess_runner import SubprocessError

logger = logging.getLogger(__name__)
console = Console()

# Masking thresholds
_MIN_MASKED_VALUE_LENGTH = 8

_SENSITIVE_KEYS = {"token", "dsn"}


def _configure_logging(*, verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _init_sentry_from_env() -> None:
    """Initialize Sentry from environment variables before any config is read."""
    enabled_raw = os.environ.get("COVDIFF_SENTRY_ENABLED", "").strip().lower()
    if enabled_raw not in {"1", "true", "yes"}:
        return

    dsn = os.environ.get("COVDIFF_SENTRY_DSN", "").strip()
    if not dsn:
        return

    init_sentry(
        SentryConfig(
            enabled=True,
            dsn=dsn,
            traces_sample_rate=float(
                os.environ.get("COVDIFF_SENTRY_TRACES_SAMPLE_RATE", "0.0")
            ),
        )
    )


def _config_to_dict(config: CovDiffConfig) -> dict[str, Any]:
    """Convert CovDiffConfig to dictionary for display."""
    result = asdict(config)
    result.pop("raw", None)
    return result


def _mask_sensitive_values(config_dict: dict[str, Any]) -> dict[str, Any]:
    """Recursively mask sensitive values in configuration dict."""
    result = copy.deepcopy(config_dict)

    def _mask_dict(data: dict[str, Any]) -> None:
        for key, value in data.items():
            if key in _SENSITIVE_KEYS and isinstance(value, str) and value:
                if len(value) > _MIN_MASKED_VALUE_LENGTH:
                    data[key] = f"{value[:4]}...{value[-4:]}"
                else:
                    data[key] = "***"
            elif isinstance(value, dict):
                _mask_dict(value)

    _mask_dict(result)
    return result


def _parse_tolerance_option(value: str | None, name: str) -> float | None:
    try:
        tolerance = parse_tolerance(value, name)
    except ConfigError as e:
        raise click.BadParameter(str(e), param_hint=name) from e
    if tolerance is not None and not 0.0 <= tolerance <= MAX_TOLERANCE:
        raise click.BadParameter(
            f"must be between 0 and {MAX_TOLERANCE:g} (got: {value})", param_hint=name
        )
    return tolerance


_project_path_option = click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Directory holding .covdiff.yml (default: current directory).",
)


def _load_config_or_abort(path: str) -> CovDiffConfig:
    try:
        return load_config(path)
    except ConfigError as e:
        reporter.print_error(f"Failed to load configuration: {e}")
        raise click.Abort from e


def _is_ci_mode() -> bool:
    ctx = click.get_current_context()
    return bool(ctx.obj.get("ci", False)) if ctx.obj else False


def _emit_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2))


def _display_rows(rows: list[str], *, markdown: bool) -> None:
    if markdown:
        for row in rows:
            click.echo(row)
        return
    reporter.print_coverage_table(rows)


def _check_thresholds(
    checker: DiffChecker,
    per_file_delta: float | None,
    total_delta: float | None,
) -> str | None:
    """Return the violation message, or None when coverage is within tolerance."""
    try:
        checker.check_if_test_coverage_falls_below_delta(per_file_delta, total_delta)
    except CoverageThresholdError as e:
        return str(e)
    return None


@click.group()
@click.option(
    "--ci",
    is_flag=True,
    help="CI mode: machine-readable JSON output, exit codes for pass/fail.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging.")
@click.version_option(version=__version__, prog_name="covdiff")
@click.pass_context
def cli(ctx: click.Context, *, ci: bool, verbose: bool) -> None:
    """covdiff: compare two coverage summaries and gate coverage regressions."""
    ctx.ensure_object(dict)
    ctx.obj["ci"] = ci
    _configure_logging(verbose=verbose)
    _init_sentry_from_env()


@cli.command()
@click.argument("new_summary", type=click.Path(exists=True, dir_okay=False))
@click.argument("old_summary", type=click.Path(exists=True, dir_okay=False))
@click.option("--full-diff", is_flag=True, help="Also list files whose coverage is unchanged.")
@click.option(
    "--strip-prefix",
    default="",
    help="Prefix removed from displayed file paths (e.g. the checkout directory).",
)
@click.option("--delta", default=None, help="Allowed coverage drop per file (percentage points).")
@click.option(
    "--total-delta",
    default=None,
    help="Allowed drop of the total coverage (percentage points).",
)
@click.option("--markdown", is_flag=True, help="Print raw Markdown table rows.")
@click.option("--post-comment", is_flag=True, help="Post the table as a PR comment.")
@click.option("--pr-number", type=int, default=None, help="Pull request to comment on.")
@click.option("--commit-sha", default=None, help="Commit shown in the comment header.")
@click.option(
    "--new-comment",
    is_flag=True,
    help="Always add a new comment instead of updating the previous one.",
)
def compare(
    new_summary: str,
    old_summary: str,
    strip_prefix: str,
    delta: str | None,
    total_delta: str | None,
    pr_number: int | None,
    commit_sha: str | None,
    *,
    full_diff: bool,
    markdown: bool,
    post_comment: bool,
    new_comment: bool,
) -> None:
    """Compare NEW_SUMMARY against OLD_SUMMARY (Istanbul json-summary files).

    Example:
      covdiff compare coverage/coverage-summary.json base/coverage-summary.json --delta 1
    """
    per_file_delta = _parse_tolerance_option(delta, "--delta")
    total_tolerance = _parse_tolerance_option(total_delta, "--total-delta")
    ci_mode = _is_ci_mode()

    try:
        checker = DiffChecker(
            load_coverage_summary(new_summary), load_coverage_summary(old_summary)
        )
    except CovDiffError as e:
        reporter.print_error(str(e))
        raise click.Abort from e

    rows = checker.get_coverage_details(full_diff, strip_prefix)
    comment_url: str | None = None

    if post_comment:
        pr_info = get_pr_info_from_env(pr_number)
        if pr_info is None:
            raise click.UsageError(
                "--post-comment needs GITHUB_REPOSITORY and a PR number (--pr-number)."
            )
        sha = commit_sha or resolve_commit_sha(detect_ci_context(), Path.cwd())
        body = format_coverage_comment(rows, CommentContext(commit_sha=sha))
        try:
            result = GitHubCommentReporter().post_coverage_diff(
                pr_info, body, use_same_comment=not new_comment
            )
        except GitHubAPIError as e:
            reporter.print_error(f"Failed to post comment: {e}")
            raise click.Abort from e
        comment_url = result.get("comment_url") or None

    violation = _check_thresholds(checker, per_file_delta, total_tolerance)

    if ci_mode:
        _emit_json(
            {
                "status": "failed" if violation else "passed",
                "rows": rows,
                "total": checker.get_total_coverage_details(strip_prefix),
                "commentUrl": comment_url,
                "error": violation,
            }
        )
    else:
        _display_rows(rows, markdown=markdown)
        if comment_url:
            reporter.print_success(f"Posted comment: {comment_url}")

    if violation:
        if not ci_mode:
            reporter.print_error(violation)
        raise click.Abort

    if not ci_mode and not markdown:
        reporter.print_success("Coverage is within the configured tolerance.")


def _apply_run_overrides(config: CovDiffConfig, overrides: dict[str, Any]) -> None:
    if overrides["command"]:
        config.run.command = overrides["command"]
    if overrides["after_switch_command"]:
        config.run.after_switch_command = overrides["after_switch_command"]
    if overrides["full_diff"] is not None:
        config.report.full_coverage_diff = overrides["full_diff"]
    if overrides["delta"] is not None:
        config.thresholds.delta = _parse_tolerance_option(overrides["delta"], "--delta")
    if overrides["total_delta"] is not None:
        config.thresholds.total_delta = _parse_tolerance_option(
            overrides["total_delta"], "--total-delta"
        )
    if overrides["pr_number"] is not None:
        config.github.pr_number = overrides["pr_number"]


async def _run_and_publish(runner: CoverageDiffRunner) -> tuple[DiffChecker, RunOutcome]:
    checker = await runner.collect()
    return checker, runner.publish(checker)


@cli.command()
@_project_path_option
@click.option("--command", default=None, help="Override run.command.")
@click.option("--after-switch-command", default=None, help="Override run.after_switch_command.")
@click.option(
    "--full-diff/--changed-only", default=None, help="Override report.full_coverage_diff."
)
@click.option("--delta", default=None, help="Override thresholds.delta.")
@click.option("--total-delta", default=None, help="Override thresholds.total_delta.")
@click.option("--pr-number", type=int, default=None, help="Override github.pr_number.")
def run(path: str, **overrides: Any) -> None:
    """Run the coverage command on this checkout and the base, comment, then gate.

    Example:
      covdiff run --after-switch-command "git checkout origin/main" --delta 1
    """
    ci_mode = _is_ci_mode()

    config = _load_config_or_abort(path)

    _apply_run_overrides(config, overrides)
    init_sentry(config.sentry)

    errors = validate_config(config, require_command=True)
    if errors:
        for error in errors:
            reporter.print_error(error)
        raise click.Abort

    runner = CoverageDiffRunner(config)

    if not ci_mode:
        reporter.print_header("covdiff run")

    try:
        checker, outcome = asyncio.run(_run_and_publish(runner))
    except (CovDiffError, SubprocessError, GitHubAPIError) as e:
        reporter.print_error(str(e))
        raise click.Abort from e

    violation: str | None = None
    try:
        runner.enforce(checker)
    except CoverageThresholdError as e:
        violation = str(e)

    if ci_mode:
        _emit_json(
            {
                "status": "failed" if violation else "passed",
                "rows": outcome.coverage_details,
                "total": checker.get_total_coverage_details(runner.path_prefix),
                "commentUrl": outcome.comment_url,
                "warnings": outcome.warnings,
                "error": violation,
            }
        )
    else:
        reporter.print_coverage_table(outcome.coverage_details)
        for warning in outcome.warnings:
            reporter.print_warning(warning)
        if outcome.comment_url:
            reporter.print_success(f"Posted comment: {outcome.comment_url}")

    if violation:
        if not ci_mode:
            reporter.print_error(violation)
        raise click.Abort

    if not ci_mode:
        reporter.print_success("Coverage is within the configured tolerance.")


@cli.group("config")
def config_group() -> None:
    """Inspect `.covdiff.yml` configuration."""


@config_group.command("show")
@_project_path_option
@click.option("--json-output", "as_json", is_flag=True, help="Output as JSON instead of YAML.")
@click.option("--no-mask", is_flag=True, help="Show sensitive values unmasked.")
def config_show(path: str, *, as_json: bool, no_mask: bool) -> None:
    """Display resolved configuration with masked sensitive values."""
    config = _load_config_or_abort(path)

    config_dict = _config_to_dict(config)
    if not no_mask:
        config_dict = _mask_sensitive_values(config_dict)

    if as_json:
        click.echo(json.dumps(config_dict, indent=2))
    else:
        click.echo(yaml.safe_dump(config_dict, sort_keys=False, default_flow_style=False))


@config_group.command("validate")
@_project_path_option
def config_validate(path: str) -> None:
    """Validate `.covdiff.yml`."""
    config = _load_config_or_abort(path)

    errors = validate_config(config, require_command=True)

    if not errors:
        reporter.print_success("Configuration is valid!")
        return

    reporter.print_error(f"Found {len(errors)} configuration error(s):")
    console.print()
    for idx, error in enumerate(errors, start=1):
        console.print(f"  {idx}. [red]{error}[/red]")
    console.print()
    console.print(f"[dim]Fix these errors in {CONFIG_FILENAME} and run again.[/dim]")
    raise click.Abort
