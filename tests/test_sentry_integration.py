"""Tests for Sentry integration."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from covdiff.config import SentryConfig
from covdiff.telemetry import sentry_integration


@pytest.fixture(autouse=True)
def _reset_sentry_state() -> Generator[None]:
    """Reset Sentry singleton state between tests."""
    sentry_integration._initialized["value"] = False
    yield
    sentry_integration._initialized["value"] = False


# ---------------------------------------------------------------------------
# init_sentry
# ---------------------------------------------------------------------------


def test_init_sentry_disabled_does_not_call_sdk() -> None:
    config = SentryConfig(enabled=False, dsn="https://key@sentry.io/123")
    fake_sdk = MagicMock()

    with patch.object(sentry_integration, "sentry_sdk", fake_sdk, create=True):
        sentry_integration.init_sentry(config)

    fake_sdk.init.assert_not_called()
    assert not sentry_integration.is_sentry_enabled()


def test_init_sentry_enabled_no_dsn_warns(caplog: pytest.LogCaptureFixture) -> None:
    config = SentryConfig(enabled=True, dsn="")
    sentry_integration.init_sentry(config)

    assert not sentry_integration.is_sentry_enabled()
    assert "no DSN configured" in caplog.text


def test_init_sentry_sdk_missing_warns(caplog: pytest.LogCaptureFixture) -> None:
    config = SentryConfig(enabled=True, dsn="https://key@sentry.io/123")

    with patch.object(sentry_integration, "_sentry_available", False):
        sentry_integration.init_sentry(config)

    assert not sentry_integration.is_sentry_enabled()
    assert "sentry_sdk is not installed" in caplog.text


def test_init_sentry_enabled_calls_sdk() -> None:
    config = SentryConfig(
        enabled=True,
        dsn="https://key@sentry.io/123",
        traces_sample_rate=0.5,
        environment="staging",
    )
    fake_sdk = MagicMock()

    with (
        patch.object(sentry_integration, "_sentry_available", True),
        patch.object(sentry_integration, "sentry_sdk", fake_sdk, create=True),
        patch.object(sentry_integration, "_LoggingIntegration", MagicMock(), create=True),
    ):
        sentry_integration.init_sentry(config)
        sentry_integration.init_sentry(config)

    fake_sdk.init.assert_called_once()
    kwargs = fake_sdk.init.call_args[1]
    assert kwargs["dsn"] == "https://key@sentry.io/123"
    assert kwargs["environment"] == "staging"
    assert kwargs["traces_sample_rate"] == 0.5
    assert kwargs["send_default_pii"] is False
    assert kwargs["release"].startswith("covdiff@")
    assert sentry_integration.is_sentry_enabled()


# ---------------------------------------------------------------------------
# Scrubbing
# ---------------------------------------------------------------------------


def test_scrub_string_redacts_tokens() -> None:
    assert "ghp_abc" not in sentry_integration._scrub_string("token=ghp_abc failed")


def test_scrub_path_hides_home() -> None:
    assert sentry_integration._scrub_path("/home/alex/repo/a.py") == "/~/repo/a.py"
    assert sentry_integration._scrub_path("/Users/sam/repo/a.py") == "/~/repo/a.py"


def test_scrub_event() -> None:
    event: dict[str, Any] = {
        "server_name": "runner-7",
        "exception": {
            "values": [
                {
                    "stacktrace": {
                        "frames": [
                            {"abs_path": "/home/alex/x.py", "vars": {"token": "t"}},
                        ]
                    }
                }
            ]
        },
        "breadcrumbs": {"values": [{"message": "password: hunter2", "data": {"dsn": "d"}}]},
        "extra": {"github_token": "t", "file": "a.ts"},
    }

    scrubbed = sentry_integration._before_send(event, {})

    assert scrubbed is not None
    assert "server_name" not in scrubbed
    frame = scrubbed["exception"]["values"][0]["stacktrace"]["frames"][0]
    assert "vars" not in frame
    assert frame["abs_path"] == "/~/x.py"
    crumb = scrubbed["breadcrumbs"]["values"][0]
    assert "hunter2" not in crumb["message"]
    assert crumb["data"]["dsn"] == "[REDACTED]"
    assert scrubbed["extra"] == {"github_token": "[REDACTED]", "file": "a.ts"}


# ---------------------------------------------------------------------------
# Metrics and spans
# ---------------------------------------------------------------------------


def test_record_metric_count_noop_when_disabled() -> None:
    fake_sdk = MagicMock()

    with patch.object(sentry_integration, "sentry_sdk", fake_sdk, create=True):
        sentry_integration.record_metric_count("covdiff.threshold_violation")

    fake_sdk.metrics.count.assert_not_called()


def test_record_metric_count_when_enabled() -> None:
    sentry_integration._initialized["value"] = True
    fake_sdk = MagicMock()

    with patch.object(sentry_integration, "sentry_sdk", fake_sdk, create=True):
        sentry_integration.record_metric_count("covdiff.threshold_violation", metric="lines")

    fake_sdk.metrics.count.assert_called_once_with(
        "covdiff.threshold_violation", 1.0, attributes={"metric": "lines"}
    )


def test_start_span_noop_when_disabled() -> None:
    with sentry_integration.start_span("covdiff.collect", "coverage run") as span:
        span.set_data("key", "value")

    assert isinstance(span, sentry_integration._NoOpSpan)


def test_start_span_when_enabled() -> None:
    sentry_integration._initialized["value"] = True
    fake_sdk = MagicMock()

    with patch.object(sentry_integration, "sentry_sdk", fake_sdk, create=True):
        sentry_integration.start_span("covdiff.comment", "PR #1")

    fake_sdk.start_span.assert_called_once_with(op="covdiff.comment", name="PR #1")


# ---------------------------------------------------------------------------
# Run tags
# ---------------------------------------------------------------------------


def test_set_run_tags_noop_when_disabled() -> None:
    fake_sdk = MagicMock()

    with patch.object(sentry_integration, "sentry_sdk", fake_sdk, create=True):
        sentry_integration.set_run_tags(pr=12)

    fake_sdk.set_tag.assert_not_called()


def test_set_run_tags_skips_none() -> None:
    sentry_integration._initialized["value"] = True
    fake_sdk = MagicMock()

    with patch.object(sentry_integration, "sentry_sdk", fake_sdk, create=True):
        sentry_integration.set_run_tags(pr=12, commit=None)

    fake_sdk.set_tag.assert_called_once_with("covdiff.pr", "12")
