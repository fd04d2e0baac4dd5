"""Verify module - run Playwright, parse reports, classify failures."""

from .classifier import classify, classify_test_result, classify_test_results
from .parser import PlaywrightReport, TestResult, extract_test_results, get_summary, parse_report
from .runner import PlaywrightRunner, RunnerOptions
from .stability import StabilityResult, check_stability, check_stability_async
from .summary import (
    VerifyFn,
    build_verify_summary,
    format_verify_summary,
    generate_summary_from_report,
    make_verify_fn,
    save_summary,
)

__all__ = [
    "PlaywrightReport",
    "PlaywrightRunner",
    "RunnerOptions",
    "StabilityResult",
    "TestResult",
    "VerifyFn",
    "build_verify_summary",
    "check_stability",
    "check_stability_async",
    "classify",
    "classify_test_result",
    "classify_test_results",
    "extract_test_results",
    "format_verify_summary",
    "generate_summary_from_report",
    "get_summary",
    "make_verify_fn",
    "parse_report",
    "save_summary",
]
