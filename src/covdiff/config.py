"""Configuration parsing from ``.covdiff.yml``."""

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from covdiff.adapters.summary import DEFAULT_SUMMARY_PATH
from covdiff.models.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".covdiff.yml"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")

MAX_TOLERANCE = 100.0


def _resolve_env_vars(value: str) -> str:
    """Expand ``${NAME}`` from the environment; unset names become ``""``."""

    def _lookup(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in os.environ:
            logger.warning("%s references ${%s} but %s is not set", CONFIG_FILENAME, name, name)
        return os.environ.get(name, "")

    return _ENV_VAR_RE.sub(_lookup, value)


def _expand(value: Any) -> Any:
    if isinstance(value, str):
        return _resolve_env_vars(value)
    if isinstance(value, dict):
        return _resolve_dict(value)
    if isinstance(value, list):
        return [_expand(item) for item in value]
    return value


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Expand placeholders in every string of a parsed YAML mapping."""
    return {key: _expand(value) for key, value in data.items()}


@dataclass
class RunConfig:
    """How to produce the two coverage summaries."""

    command: str = ""
    """Command that runs the tests and writes the json-summary report."""

    after_switch_command: str = ""
    """Command run between the two coverage runs (e.g. ``git checkout origin/main``)."""

    summary_path: str = DEFAULT_SUMMARY_PATH
    """Location of ``coverage-summary.json``, relative to the project root."""

    timeout: float = 600.0
    """Timeout in seconds for each command."""


@dataclass
class ReportConfig:
    """Comment rendering and posting configuration."""

    full_coverage_diff: bool = False
    """Also list files whose coverage did not change."""

    use_same_comment: bool = True
    """Update the previous covdiff comment instead of adding a new one."""

    coverage_report_url: str = ""
    """Link to the full coverage report artifact."""

    coverage_report_expiry: str = ""
    """When the linked artifact expires (free text)."""


@dataclass
class ThresholdConfig:
    """Allowed coverage drops, in percentage points. None means unlimited."""

    delta: float | None = None
    """Allowed drop for each file."""

    total_delta: float | None = None
    """Allowed drop for the ``total`` entry."""


@dataclass
class GitHubConfig:
    """GitHub access configuration."""

    token: str = ""
    """Access token (supports ${ENV_VAR} expansion, defaults to GITHUB_TOKEN)."""

    pr_number: int = 0
    """Pull request number (0 = detect from the Actions environment)."""

    api_url: str = "https://api.github.com"
    """API root, for GitHub Enterprise Server."""


@dataclass
class SentryConfig:
    """Opt-in error reporting to Sentry."""

    enabled: bool = False
    """Nothing is sent unless this is True."""

    dsn: str = ""
    """Project DSN events are sent to."""

    traces_sample_rate: float = 0.0
    """Share of runs traced, from 0.0 (off) to 1.0."""

    environment: str = ""
    """Environment tag; "ci" or "local" when empty."""


@dataclass
class CovDiffConfig:
    """Complete covdiff configuration from ``.covdiff.yml``."""

    root: str
    """Project root directory."""

    run: RunConfig = field(default_factory=RunConfig)
    """Coverage command configuration."""

    report: ReportConfig = field(default_factory=ReportConfig)
    """Report configuration."""

    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    """Threshold configuration."""

    github: GitHubConfig = field(default_factory=GitHubConfig)
    """GitHub configuration."""

    sentry: SentryConfig = field(default_factory=SentryConfig)
    """Sentry configuration."""

    raw: dict[str, Any] = field(default_factory=dict)
    """The expanded YAML mapping, as loaded."""


def parse_tolerance(value: Any, name: str) -> float | None:
    """Parse an optional tolerance.

    None and blank strings mean "no limit".

    Raises:
        ConfigError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number (got: {value})")
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number (got: {value!r})") from exc
    if not math.isfinite(number):
        raise ConfigError(f"{name} must be a finite number (got: {value!r})")
    return number


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw.get(name, {})
    if not isinstance(section, dict):
        logger.warning("Ignoring non-mapping '%s' section in %s", name, CONFIG_FILENAME)
        return {}
    return section


def _parse_run_config(raw: dict[str, Any]) -> RunConfig:
    """Parse the run section from raw YAML."""
    run_raw = _section(raw, "run")
    return RunConfig(
        command=str(run_raw.get("command", "")),
        after_switch_command=str(run_raw.get("after_switch_command", "")),
        summary_path=str(run_raw.get("summary_path", DEFAULT_SUMMARY_PATH)),
        timeout=float(run_raw.get("timeout", 600.0)),
    )


def _parse_report_config(raw: dict[str, Any]) -> ReportConfig:
    """Parse the report section from raw YAML."""
    report_raw = _section(raw, "report")
    return ReportConfig(
        full_coverage_diff=_as_bool(report_raw.get("full_coverage_diff", False)),
        use_same_comment=_as_bool(report_raw.get("use_same_comment", True)),
        coverage_report_url=str(report_raw.get("coverage_report_url", "")),
        coverage_report_expiry=str(report_raw.get("coverage_report_expiry", "")),
    )


def _parse_threshold_config(raw: dict[str, Any]) -> ThresholdConfig:
    """Parse the thresholds section, falling back to COVDIFF_* variables."""
    thresholds_raw = _section(raw, "thresholds")
    return ThresholdConfig(
        delta=parse_tolerance(
            thresholds_raw.get("delta", os.environ.get("COVDIFF_DELTA")), "thresholds.delta"
        ),
        total_delta=parse_tolerance(
            thresholds_raw.get("total_delta", os.environ.get("COVDIFF_TOTAL_DELTA")),
            "thresholds.total_delta",
        ),
    )


def _parse_github_config(raw: dict[str, Any]) -> GitHubConfig:
    """Parse the github section from raw YAML."""
    github_raw = _section(raw, "github")
    return GitHubConfig(
        token=str(github_raw.get("token", "") or os.environ.get("GITHUB_TOKEN", "")),
        pr_number=int(github_raw.get("pr_number", 0) or 0),
        api_url=str(github_raw.get("api_url", "https://api.github.com")),
    )


def _parse_sentry_config(raw: dict[str, Any]) -> SentryConfig:
    """Parse the sentry section, falling back to COVDIFF_SENTRY_* variables."""
    sentry_raw = _section(raw, "sentry")

    def _setting(key: str, default: str) -> Any:
        return sentry_raw.get(key, os.environ.get(f"COVDIFF_SENTRY_{key.upper()}", default))

    return SentryConfig(
        enabled=_as_bool(_setting("enabled", "")),
        dsn=str(_setting("dsn", "")),
        traces_sample_rate=float(_setting("traces_sample_rate", "0.0")),
        environment=str(sentry_raw.get("environment", "")),
    )


def load_config(root: str | Path) -> CovDiffConfig:
    """Load and parse ``.covdiff.yml`` from *root*.

    Falls back to defaults and environment variables when the file is
    missing or incomplete.

    Raises:
        ConfigError: If the YAML is malformed or a value has the wrong type.
    """
    root_path = Path(root).resolve()
    config_file = root_path / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_file.is_file():
        try:
            parsed = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_file}: {exc}") from exc
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)
        elif parsed is not None:
            raise ConfigError(f"{config_file} must contain a mapping at the top level")
    else:
        logger.debug("No %s in %s, using defaults", CONFIG_FILENAME, root_path)

    try:
        return CovDiffConfig(
            root=str(root_path),
            run=_parse_run_config(raw),
            report=_parse_report_config(raw),
            thresholds=_parse_threshold_config(raw),
            github=_parse_github_config(raw),
            sentry=_parse_sentry_config(raw),
            raw=raw,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in {config_file}: {exc}") from exc


def _validate_threshold_config(thresholds: ThresholdConfig) -> list[str]:
    """Validate tolerance settings."""
    errors: list[str] = []

    for name, value in (
        ("thresholds.delta", thresholds.delta),
        ("thresholds.total_delta", thresholds.total_delta),
    ):
        if value is not None and not 0.0 <= value <= MAX_TOLERANCE:
            errors.append(f"{name} must be between 0 and 100 (got: {value})")

    return errors


def _validate_run_config(run: RunConfig, *, require_command: bool) -> list[str]:
    """Validate command settings."""
    errors: list[str] = []

    if require_command and not run.command.strip():
        errors.append("run.command is required")

    if run.timeout <= 0:
        errors.append(f"run.timeout must be positive (got: {run.timeout})")

    if not run.summary_path:
        errors.append("run.summary_path must not be empty")

    return errors


def _validate_sentry_config(sentry: SentryConfig) -> list[str]:
    """Check that an enabled Sentry has a DSN and a usable sample rate."""
    errors: list[str] = []
    if sentry.enabled and not sentry.dsn:
        errors.append("sentry.dsn is required when sentry.enabled is true")
    rate = sentry.traces_sample_rate
    if rate < 0.0 or rate > 1.0:
        errors.append(f"sentry.traces_sample_rate must be between 0.0 and 1.0 (got: {rate})")
    return errors


def validate_config(config: CovDiffConfig, *, require_command: bool = False) -> list[str]:
    """Return one message per problem found; an empty list means valid.

    ``require_command`` is set by ``covdiff run``, which cannot work without
    a coverage command.
    """
    errors: list[str] = []

    errors.extend(_validate_run_config(config.run, require_command=require_command))
    errors.extend(_validate_threshold_config(config.thresholds))
    errors.extend(_validate_sentry_config(config.sentry))

    if config.github.pr_number < 0:
        errors.append(f"github.pr_number must be non-negative (got: {config.github.pr_number})")

    return errors
