"""covdiff: coverage diff reporting and regression gating for pull requests."""

__version__ = "0.1.0"
