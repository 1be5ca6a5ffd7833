"""Data models for covdiff."""

from covdiff.models.coverage import (
    TOTAL_KEY,
    CoverageData,
    CoverageReport,
    DiffCoverageData,
    DiffFileCoverageData,
    FileChange,
    FileCoverageSummary,
    Metric,
)
from covdiff.models.errors import (
    ConfigError,
    CovDiffError,
    CoverageReportError,
    CoverageThresholdError,
)

__all__ = [
    "TOTAL_KEY",
    "ConfigError",
    "CovDiffError",
    "CoverageData",
    "CoverageReport",
    "CoverageReportError",
    "CoverageThresholdError",
    "DiffCoverageData",
    "DiffFileCoverageData",
    "FileChange",
    "FileCoverageSummary",
    "Metric",
]
