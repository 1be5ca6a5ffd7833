"""Exception hierarchy for covdiff."""

from __future__ import annotations


class CovDiffError(Exception):
    """Base class for all covdiff failures."""


class CoverageReportError(CovDiffError):
    """Raised when a coverage summary file cannot be read or parsed."""


class ConfigError(CovDiffError):
    """Raised when ``.covdiff.yml`` is unusable."""


class CoverageThresholdError(CovDiffError):
    """Raised when a coverage drop exceeds the configured tolerance."""

    def __init__(
        self,
        message: str,
        *,
        metric: str,
        file_path: str,
        change: float,
        tolerance: float,
    ) -> None:
        """Initialize with the offending metric, file and numbers.

        Args:
            message: Human readable description.
            metric: Metric name (``statements``, ``branches``, ...).
            file_path: Report key of the offending file (``total`` for the aggregate).
            change: Rounded percentage change (negative for a drop).
            tolerance: The tolerance that was exceeded.
        """
        super().__init__(message)
        self.metric = metric
        self.file_path = file_path
        self.change = change
        self.tolerance = tolerance
