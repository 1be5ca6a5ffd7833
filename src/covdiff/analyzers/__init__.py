"""Coverage analyzers."""

from covdiff.analyzers.diff_checker import (
    DiffChecker,
    compare_coverage_values,
    percentage_diff,
)

__all__ = [
    "DiffChecker",
    "compare_coverage_values",
    "percentage_diff",
]
