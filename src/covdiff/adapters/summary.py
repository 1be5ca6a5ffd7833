"""Istanbul json-summary adapter.

Istanbul's ``json-summary`` reporter (``jest --coverageReporters=json-summary``,
``c8 --reporter=json-summary``, ``vitest --coverage.reporter=json-summary``)
writes ``coverage-summary.json``:

{
  "total": {"lines": {"total": 10, "covered": 8, "skipped": 0, "pct": 80}, ...},
  "/abs/path/to/file.ts": {"lines": {...}, "statements": {...},
                           "functions": {...}, "branches": {...}}
}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from covdiff.models.coverage import CoverageReport
from covdiff.models.errors import CoverageReportError

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_PATH = "coverage/coverage-summary.json"


def load_coverage_summary(path: str | Path) -> CoverageReport:
    """Read a json-summary file into a :class:`CoverageReport`.

    Args:
        path: Location of ``coverage-summary.json``.

    Returns:
        The report, with files in the order they appear in the document.

    Raises:
        CoverageReportError: If the file is missing, unreadable, not JSON, or
            not a JSON object.
    """
    summary_path = Path(path)
    try:
        text = summary_path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read coverage summary {summary_path}: {exc}"
        raise CoverageReportError(msg) from exc

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON in coverage summary {summary_path}: {exc}"
        raise CoverageReportError(msg) from exc

    if not isinstance(data, dict):
        raise CoverageReportError(
            f"Coverage summary {summary_path} must be a JSON object, got {type(data).__name__}"
        )

    report = CoverageReport.from_dict(data)
    logger.debug("Loaded %d entries from %s", len(report.files), summary_path)
    return report
