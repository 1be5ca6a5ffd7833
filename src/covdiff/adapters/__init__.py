"""Adapters that read coverage reports produced by external tools."""

from covdiff.adapters.summary import DEFAULT_SUMMARY_PATH, load_coverage_summary

__all__ = ["DEFAULT_SUMMARY_PATH", "load_coverage_summary"]
