"""Coverage diff engine.

Compares a "new" and an "old" coverage summary report and:
1. Renders one Markdown table row per file whose coverage moved
2. Renders the aggregate row of the ``"total"`` pseudo-file
3. Fails when a metric dropped by more than the configured tolerance
"""

from __future__ import annotations

import logging
import math
import sys
from types import MappingProxyType
from typing import TYPE_CHECKING

from covdiff.models.coverage import (
    TOTAL_KEY,
    DiffCoverageData,
    DiffFileCoverageData,
    FileChange,
)
from covdiff.models.errors import CoverageThresholdError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from covdiff.models.coverage import CoverageReport

logger = logging.getLogger(__name__)

# ── Status markers ───────────────────────────────────────────────

INCREASED_COVERAGE_ICON = ":green_apple:"
DECREASED_COVERAGE_ICON = ":apple:"
UNCHANGED_COVERAGE_ICON = ":white_circle:"
NEW_COVERAGE_ICON = ":new:"
REMOVED_COVERAGE_ICON = ":fire:"

TOTAL_LABEL = "(Total of all files checked)"


# ── Helpers ──────────────────────────────────────────────────────


def percentage_diff(data: DiffCoverageData) -> float:
    """Return ``new - old`` rounded half up to 2 decimal places.

    A machine-epsilon bias is added before rounding so that values such as
    ``1.005`` (stored as ``1.00499...``) round the way they read.
    """
    diff = data.new_pct - data.old_pct
    return math.floor((diff + sys.float_info.epsilon) * 100 + 0.5) / 100


def compare_coverage_values(data: DiffFileCoverageData) -> FileChange:
    """Classify a file's old/new comparison.

    Unchanged wins over everything else, then a file with no old coverage is
    new, then a file with no new coverage is removed.
    """
    if not any(metric_data.changed for metric_data in data.values()):
        return FileChange.UNCHANGED
    if all(metric_data.old_pct == 0 for metric_data in data.values()):
        return FileChange.NEW
    if all(metric_data.new_pct == 0 for metric_data in data.values()):
        return FileChange.REMOVED
    return FileChange.CHANGED


def format_number(value: float) -> str:
    """Format a percentage the short way: ``80`` for 80.0, ``85.71`` for 85.71.

    Non-integral values use Python's shortest round-trip ``repr``. Beyond the
    two-decimal precision of coverage tools this can differ from JavaScript
    number printing (``1e-07`` rather than ``1e-7``).
    """
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _is_removed(data: DiffFileCoverageData) -> bool:
    return all(metric_data.new_pct == 0 for metric_data in data.values())


def _pretty_pct_diff(data: DiffCoverageData) -> str:
    number = percentage_diff(data)
    if number == 0:
        return ""
    sign = "+" if number > 0 else ""
    return f" **({sign}{number:.2f})**"


def _status_icon(data: DiffFileCoverageData) -> str:
    # Sum of the rounded deltas, compared at 2 decimals.
    overall = round(sum(percentage_diff(metric_data) for metric_data in data.values()), 2)
    if overall < 0:
        return DECREASED_COVERAGE_ICON
    if overall > 0:
        return INCREASED_COVERAGE_ICON
    return UNCHANGED_COVERAGE_ICON


# ── Engine ───────────────────────────────────────────────────────


class DiffChecker:
    """Per-file, per-metric comparison of two coverage summary reports.

    The diff report is built once in the constructor and never modified.
    Its keys are the union of both reports' keys: every key of the new
    report in its original order, followed by keys found only in the old
    report in their original order.
    """

    def __init__(self, report_new: CoverageReport, report_old: CoverageReport) -> None:
        """Build the diff report.

        Args:
            report_new: Coverage summary of the current change.
            report_old: Coverage summary of the baseline.
        """
        keys = list(report_new.files)
        seen = set(keys)
        for key in report_old.files:
            if key not in seen:
                keys.append(key)
                seen.add(key)

        self._diff_report: dict[str, DiffFileCoverageData] = {
            key: DiffFileCoverageData.from_summaries(
                report_new.files.get(key), report_old.files.get(key)
            )
            for key in keys
        }

    @property
    def diff_report(self) -> Mapping[str, DiffFileCoverageData]:
        """Read-only view of the diff report."""
        return MappingProxyType(self._diff_report)

    # ── Rendering ────────────────────────────────────────────────

    def get_coverage_details(self, full_diff: bool, path_prefix: str) -> list[str]:
        """Render one Markdown table row per file.

        Args:
            full_diff: Also emit rows for files whose coverage did not change.
            path_prefix: Prefix (usually the working directory) removed from
                displayed file paths.

        Returns:
            Rows in diff report order.
        """
        rows: list[str] = []
        for key, data in self._diff_report.items():
            name = self._display_name(key, path_prefix)
            change = compare_coverage_values(data)
            if change is not FileChange.UNCHANGED:
                rows.append(self._create_diff_line(name, data, change))
            elif full_diff:
                rows.append(self._create_unchanged_line(name, data))
        return rows

    def get_total_coverage_details(self, path_prefix: str = "") -> str | None:
        """Render the row of the ``"total"`` pseudo-file.

        The row is emitted whether or not the total moved.

        Args:
            path_prefix: Prefix removed from displayed file paths.

        Returns:
            The row, or None when neither report has a ``"total"`` entry.
        """
        data = self._diff_report.get(TOTAL_KEY)
        if data is None:
            return None
        name = self._display_name(TOTAL_KEY, path_prefix)
        change = compare_coverage_values(data)
        if change is FileChange.UNCHANGED:
            return self._create_unchanged_line(name, data)
        return self._create_diff_line(name, data, change)

    @staticmethod
    def _display_name(key: str, path_prefix: str) -> str:
        if key == TOTAL_KEY:
            return TOTAL_LABEL
        if path_prefix:
            return key.removeprefix(path_prefix)
        return key

    @staticmethod
    def _create_diff_line(name: str, data: DiffFileCoverageData, change: FileChange) -> str:
        if change is FileChange.NEW:
            cells = " | ".join(f"**{format_number(d.new_pct)}%**" for d in data.values())
            return f" {NEW_COVERAGE_ICON} | **{name}** | {cells}"
        if change is FileChange.REMOVED:
            cells = " | ".join(f"~~{format_number(d.old_pct)}%~~" for d in data.values())
            return f" {REMOVED_COVERAGE_ICON} | ~~{name}~~ | {cells}"

        cells = " | ".join(f"{d.new_pct:.2f}%{_pretty_pct_diff(d)}" for d in data.values())
        return f" {_status_icon(data)} | {name} | {cells}"

    @staticmethod
    def _create_unchanged_line(name: str, data: DiffFileCoverageData) -> str:
        cells = " | ".join(f"{format_number(d.new_pct)}%" for d in data.values())
        return f" {UNCHANGED_COVERAGE_ICON} | {name} | {cells}"

    # ── Threshold evaluation ─────────────────────────────────────

    def check_if_test_coverage_falls_below_delta(
        self,
        per_file_delta: float | None,
        total_delta: float | None,
    ) -> None:
        """Fail on the first metric whose drop exceeds its tolerance.

        Removed files are skipped. The ``"total"`` entry is compared against
        ``total_delta``, every other file against ``per_file_delta``. A
        tolerance of None disables the check for those entries. A drop equal
        to the tolerance passes.

        Args:
            per_file_delta: Allowed drop, in percentage points, for each file.
            total_delta: Allowed drop, in percentage points, for the total.

        Raises:
            CoverageThresholdError: On the first violation in diff report order.
        """
        for file_path, data in self._diff_report.items():
            if _is_removed(data):
                logger.info(
                    "%s : deleted or renamed and is not considered for coverage diff.",
                    file_path,
                )
                continue

            tolerance = total_delta if file_path == TOTAL_KEY else per_file_delta
            if tolerance is None:
                continue

            for metric, metric_data in data.items():
                if not metric_data.changed:
                    continue
                change = percentage_diff(metric_data)
                logger.debug(
                    "%s %s changed by %s%% (allowed drop %s%%)",
                    file_path,
                    metric.value,
                    format_number(change),
                    format_number(tolerance),
                )
                if -change > tolerance:
                    raise CoverageThresholdError(
                        f"Test coverage change of {format_number(change)}% is greater than "
                        f"max allowed ({format_number(tolerance)}%) for {metric.value} "
                        f"in {file_path}",
                        metric=metric.value,
                        file_path=file_path,
                        change=change,
                        tolerance=tolerance,
                    )
