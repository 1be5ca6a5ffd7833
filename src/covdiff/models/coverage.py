"""Coverage summary and coverage diff models.

A coverage summary report maps a file path to four percentages, one per
:class:`Metric`. The synthetic key ``"total"`` carries the aggregate over all
files. A diff report pairs the old and new percentage of every metric for every
file found in either report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

TOTAL_KEY = "total"
"""Report key of the aggregate over all files."""


class Metric(Enum):
    """The four coverage dimensions, in display order."""

    STATEMENTS = "statements"
    BRANCHES = "branches"
    FUNCTIONS = "functions"
    LINES = "lines"


class FileChange(Enum):
    """How a file's coverage moved between the old and the new report."""

    UNCHANGED = "unchanged"
    """Every metric has the same old and new percentage."""

    NEW = "new"
    """Every old percentage is 0 (the file had no prior coverage)."""

    REMOVED = "removed"
    """Every new percentage is 0 (the file has no current coverage)."""

    CHANGED = "changed"
    """At least one metric moved and the file is neither new nor removed."""


@dataclass(frozen=True)
class CoverageData:
    """Coverage of one metric for one file."""

    pct: float = 0.0
    """Percentage (0-100) of the metric's units exercised by tests."""


@dataclass(frozen=True)
class FileCoverageSummary:
    """The four metric percentages of a single file."""

    statements: CoverageData = field(default_factory=CoverageData)
    branches: CoverageData = field(default_factory=CoverageData)
    functions: CoverageData = field(default_factory=CoverageData)
    lines: CoverageData = field(default_factory=CoverageData)

    def get(self, metric: Metric) -> CoverageData:
        """Return the coverage data for *metric*."""
        if metric is Metric.STATEMENTS:
            return self.statements
        if metric is Metric.BRANCHES:
            return self.branches
        if metric is Metric.FUNCTIONS:
            return self.functions
        return self.lines

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileCoverageSummary:
        """Build a summary from one file entry of a json-summary report.

        Missing metrics and non-numeric ``pct`` values (Istanbul writes
        ``"Unknown"`` when a metric has no units) become 0.
        """
        return cls(
            statements=CoverageData(_read_pct(data.get(Metric.STATEMENTS.value))),
            branches=CoverageData(_read_pct(data.get(Metric.BRANCHES.value))),
            functions=CoverageData(_read_pct(data.get(Metric.FUNCTIONS.value))),
            lines=CoverageData(_read_pct(data.get(Metric.LINES.value))),
        )


def _read_pct(metric_data: Any) -> float:
    if not isinstance(metric_data, dict):
        return 0.0
    pct = metric_data.get("pct")
    if isinstance(pct, bool) or not isinstance(pct, int | float):
        return 0.0
    return float(pct)


@dataclass
class CoverageReport:
    """A coverage summary report keyed by file path.

    Insertion order of ``files`` is the order files appear in the source
    report and is preserved through diffing.
    """

    files: dict[str, FileCoverageSummary] = field(default_factory=dict)
    """Per-file summaries, optionally including the ``"total"`` key."""

    @property
    def total(self) -> FileCoverageSummary | None:
        """Return the aggregate entry, if the report has one."""
        return self.files.get(TOTAL_KEY)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CoverageReport:
        """Build a report from a parsed json-summary document."""
        files: dict[str, FileCoverageSummary] = {}
        for file_path, file_data in data.items():
            files[str(file_path)] = FileCoverageSummary.from_dict(
                file_data if isinstance(file_data, dict) else {}
            )
        return cls(files=files)


@dataclass(frozen=True)
class DiffCoverageData:
    """Old and new percentage of one metric for one file."""

    old_pct: float = 0.0
    new_pct: float = 0.0

    @property
    def changed(self) -> bool:
        """Return True when the old and new percentages differ."""
        return self.old_pct != self.new_pct


@dataclass(frozen=True)
class DiffFileCoverageData:
    """Old/new comparison of all four metrics for one file."""

    statements: DiffCoverageData
    branches: DiffCoverageData
    functions: DiffCoverageData
    lines: DiffCoverageData

    def get(self, metric: Metric) -> DiffCoverageData:
        """Return the comparison for *metric*."""
        if metric is Metric.STATEMENTS:
            return self.statements
        if metric is Metric.BRANCHES:
            return self.branches
        if metric is Metric.FUNCTIONS:
            return self.functions
        return self.lines

    def items(self) -> Iterator[tuple[Metric, DiffCoverageData]]:
        """Yield ``(metric, comparison)`` pairs in :class:`Metric` order."""
        for metric in Metric:
            yield metric, self.get(metric)

    def values(self) -> Iterator[DiffCoverageData]:
        """Yield the four comparisons in :class:`Metric` order."""
        for _, data in self.items():
            yield data

    @classmethod
    def from_summaries(
        cls,
        new: FileCoverageSummary | None,
        old: FileCoverageSummary | None,
    ) -> DiffFileCoverageData:
        """Pair two summaries, treating a missing summary as all zeros."""
        new = new or FileCoverageSummary()
        old = old or FileCoverageSummary()
        return cls(
            statements=DiffCoverageData(old_pct=old.statements.pct, new_pct=new.statements.pct),
            branches=DiffCoverageData(old_pct=old.branches.pct, new_pct=new.branches.pct),
            functions=DiffCoverageData(old_pct=old.functions.pct, new_pct=new.functions.pct),
            lines=DiffCoverageData(old_pct=old.lines.pct, new_pct=new.lines.pct),
        )
