"""Telemetry integrations for covdiff."""

from covdiff.telemetry.sentry_integration import (
    init_sentry,
    is_sentry_enabled,
    record_metric_count,
    set_run_tags,
    start_span,
)

__all__ = [
    "init_sentry",
    "is_sentry_enabled",
    "record_metric_count",
    "set_run_tags",
    "start_span",
]
