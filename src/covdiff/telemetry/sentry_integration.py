"""Opt-in Sentry error reporting for covdiff runs.

Nothing is sent unless ``sentry.enabled: true`` is set in ``.covdiff.yml``
(or ``COVDIFF_SENTRY_ENABLED=true``) together with a DSN, and the ``sentry``
extra is installed. Events carry the run's PR number and commit as tags;
tokens, DSNs and home directories are scrubbed before sending.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import TYPE_CHECKING, Any

from covdiff import __version__
from covdiff.utils.ci_context import detect_ci_context

try:
    import sentry_sdk
    import sentry_sdk.metrics
    from sentry_sdk.integrations.logging import LoggingIntegration as _LoggingIntegration

    _sentry_available = True
except ImportError:
    _sentry_available = False

if TYPE_CHECKING:
    from types import TracebackType

    from covdiff.config import SentryConfig

logger = logging.getLogger(__name__)

_init_lock = threading.Lock()
_initialized: dict[str, bool] = {"value": False}

_REDACTED = "[REDACTED]"

# "token=abc", "Authorization: Bearer abc", "dsn https://key@host/1"
_SECRET_RE = re.compile(
    r"(token|secret|password|dsn|authorization|bearer)\s*[:=]?\s*\S+",
    re.IGNORECASE,
)

_HOME_DIR_RE = re.compile(r"/(?:home|Users)/[^/]+")

_SECRET_KEYS = frozenset({"token", "github_token", "authorization", "password", "secret", "dsn"})

_FRAME_PATH_KEYS = ("filename", "abs_path")


def init_sentry(config: SentryConfig) -> None:
    """Initialize the Sentry SDK once, if enabled and configured.

    Safe to call from several entry points; only the first successful call
    has an effect.
    """
    with _init_lock:
        if _initialized["value"]:
            return

        reason = _skip_reason(config)
        if reason:
            if config.enabled:
                logger.warning("Sentry enabled but %s", reason)
            else:
                logger.debug("Sentry disabled (%s)", reason)
            return

        environment = config.environment or ("ci" if detect_ci_context().is_ci else "local")
        sentry_sdk.init(
            dsn=config.dsn,
            release=f"covdiff@{__version__}",
            environment=environment,
            traces_sample_rate=config.traces_sample_rate,
            send_default_pii=False,
            server_name="",
            before_send=_before_send,
            before_send_transaction=_before_send,
            in_app_include=["covdiff"],
            integrations=[_LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        )
        _initialized["value"] = True
        logger.info(
            "Sentry initialized for %s (tracing %.2f)", environment, config.traces_sample_rate
        )


def _skip_reason(config: SentryConfig) -> str | None:
    if not config.enabled:
        return "sentry.enabled is false"
    if not config.dsn:
        return "no DSN configured"
    if not _sentry_available:
        return "sentry_sdk is not installed"
    return None


def is_sentry_enabled() -> bool:
    """Return whether Sentry has been successfully initialized."""
    return _initialized["value"]


def set_run_tags(**tags: str | int | None) -> None:
    """Attach run details (PR number, commit) to every later event.

    ``None`` values are skipped. No-op if Sentry is disabled.
    """
    if not _initialized["value"]:
        return
    for key, value in tags.items():
        if value is not None:
            sentry_sdk.set_tag(f"covdiff.{key}", str(value))


# ── Scrubbing ────────────────────────────────────────────────────


def _scrub_path(path: str) -> str:
    return _HOME_DIR_RE.sub("/~", path)


def _scrub_string(value: str) -> str:
    return _SECRET_RE.sub(_REDACTED, value)


def _scrub_value(key: str, value: Any) -> Any:
    if key.lower() in _SECRET_KEYS:
        return _REDACTED
    if isinstance(value, str):
        return _scrub_string(value)
    if isinstance(value, dict):
        return {k: _scrub_value(k, v) for k, v in value.items()}
    return value


def _scrub_frames(event: dict[str, Any]) -> None:
    exception = event.get("exception")
    if not isinstance(exception, dict):
        return
    for value in exception.get("values", []):
        stacktrace = value.get("stacktrace")
        if not isinstance(stacktrace, dict):
            continue
        for frame in stacktrace.get("frames", []):
            # Local variables may hold the GitHub token.
            frame.pop("vars", None)
            for key in _FRAME_PATH_KEYS:
                if isinstance(frame.get(key), str):
                    frame[key] = _scrub_path(frame[key])


def _scrub_breadcrumbs(event: dict[str, Any]) -> None:
    breadcrumbs = event.get("breadcrumbs")
    if not isinstance(breadcrumbs, dict):
        return
    for crumb in breadcrumbs.get("values", []):
        if isinstance(crumb.get("message"), str):
            crumb["message"] = _scrub_string(crumb["message"])
        if isinstance(crumb.get("data"), dict):
            crumb["data"] = _scrub_value("data", crumb["data"])


def _before_send(event: dict[str, Any], _hint: dict[str, Any]) -> dict[str, Any] | None:
    """Strip secrets, local variables, home paths and the hostname from an event."""
    _scrub_frames(event)
    _scrub_breadcrumbs(event)
    for section in ("tags", "extra"):
        if isinstance(event.get(section), dict):
            event[section] = _scrub_value(section, event[section])
    event.pop("server_name", None)
    return event


# ── Metrics and spans ────────────────────────────────────────────


def record_metric_count(name: str, value: int = 1, **attrs: str | int | float) -> None:
    """Emit a Sentry counter metric. No-op if Sentry is disabled."""
    if not _initialized["value"]:
        return
    sentry_sdk.metrics.count(name, float(value), attributes=dict(attrs) if attrs else None)


class _NoOpSpan:
    """Stand-in span used while Sentry is disabled."""

    def __enter__(self) -> _NoOpSpan:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        return None

    def set_data(self, key: str, value: Any) -> None:
        """Ignore span data."""


def start_span(op: str, name: str) -> Any:
    """Return a span context manager for one step of a run."""
    if not _initialized["value"]:
        return _NoOpSpan()
    return sentry_sdk.start_span(op=op, name=name)
