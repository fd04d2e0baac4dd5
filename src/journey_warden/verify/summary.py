"""Build VerifySummary records from runner results and JSON reports."""

import json
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import replace
from pathlib import Path
from typing import Any

from ..models import (
    FailureDetails,
    RunnerInfo,
    RunnerResult,
    StabilityInfo,
    VerifyCounts,
    VerifyStatus,
    VerifySummary,
)
from .classifier import classify_error, classify_test_results, get_failure_stats
from .parser import (
    ParsedSummary,
    PlaywrightReport,
    TestResult,
    get_failed_tests,
    get_summary,
    parse_report,
)
from .runner import PlaywrightRunner, RunnerOptions

logger = logging.getLogger(__name__)

VerifyFn = Callable[[], Awaitable[VerifySummary]]

# Failure key for errors raised while loading the test files themselves
LOAD_ERROR_KEY = "(load error)"

_STACK_LINE = re.compile(r"\.spec\.[jt]sx?:(\d+)")


def build_verify_summary(
    runner_result: RunnerResult,
    journey_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    stability: StabilityInfo | None = None,
) -> VerifySummary:
    """Combine a runner result with its report into a VerifySummary.

    PASSED means at least one test ran, nothing failed and Playwright exited
    cleanly. A report with top-level errors (a spec file that does not load)
    is an ERROR with the load error recorded as a failure.
    """
    summary = VerifySummary(
        status=VerifyStatus.ERROR,
        duration=runner_result.duration,
        runner=RunnerInfo(exit_code=runner_result.exit_code, command=runner_result.command),
        report_path=runner_result.report_path,
        journey_id=journey_id,
        metadata=metadata,
    )

    if not runner_result.report_path:
        summary.status = VerifyStatus.PASSED if runner_result.success else VerifyStatus.FAILED
        return _with_stability(summary, stability)

    report = parse_report(runner_result.report_path)
    if report is None:
        logger.warning("Report at %s could not be parsed", runner_result.report_path)
        return summary

    parsed = get_summary(report)
    _fill_from_report(summary, report, parsed)
    summary.status = report_status(report, parsed, runner_result.success)
    if summary.status == VerifyStatus.ERROR:
        logger.warning(
            "Run produced no usable test outcome (exit %d, %d tests, %d report errors)",
            runner_result.exit_code,
            parsed.total,
            len(report.errors),
        )
    return _with_stability(summary, stability)


def report_status(
    report: PlaywrightReport,
    parsed: ParsedSummary,
    exited_cleanly: bool = True,
) -> VerifyStatus:
    if report.errors:
        return VerifyStatus.ERROR
    if parsed.failed > 0 or report.stats.get("unexpected", 0) > 0:
        return VerifyStatus.FAILED
    if parsed.flaky > 0:
        return VerifyStatus.FLAKY
    if parsed.total == 0 or not exited_cleanly:
        return VerifyStatus.ERROR
    return VerifyStatus.PASSED


def _fill_from_report(summary: VerifySummary, report: PlaywrightReport, parsed: ParsedSummary) -> None:
    summary.counts = VerifyCounts(
        total=parsed.total,
        passed=parsed.passed,
        failed=parsed.failed,
        skipped=parsed.skipped,
        flaky=parsed.flaky,
    )

    failed_tests = get_failed_tests(report)
    classifications = classify_test_results(failed_tests)
    details = FailureDetails(
        tests=[t.key for t in failed_tests],
        classifications=classifications,
        errors={t.key: t.errors[0].message for t in failed_tests if t.errors},
        lines={t.key: line for t in failed_tests if (line := failing_line(t)) is not None},
    )

    if report.errors:
        first = report.errors[0]
        details.tests.insert(0, LOAD_ERROR_KEY)
        details.classifications = {LOAD_ERROR_KEY: classify_error(first), **details.classifications}
        details.errors = {LOAD_ERROR_KEY: "\n".join(e.message for e in report.errors), **details.errors}
        if first.line:
            details.lines = {LOAD_ERROR_KEY: first.line, **details.lines}

    details.stats = get_failure_stats(details.classifications)
    summary.failures = details


def _with_stability(summary: VerifySummary, stability: StabilityInfo | None) -> VerifySummary:
    if stability is None:
        return summary
    summary.stability = stability
    if not stability.stable and summary.status == VerifyStatus.PASSED:
        summary.status = VerifyStatus.FLAKY
    return summary


def generate_summary_from_report(
    report: PlaywrightReport,
    journey_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> VerifySummary:
    """Summary for a report produced outside the runner (e.g. a CI artifact)."""
    parsed = get_summary(report)
    status = report_status(report, parsed)
    summary = VerifySummary(
        status=status,
        duration=int(parsed.duration),
        runner=RunnerInfo(exit_code=0 if status == VerifyStatus.PASSED else 1, command="N/A"),
        journey_id=journey_id,
        metadata=metadata,
    )
    if parsed.start_time:
        summary.timestamp = parsed.start_time.isoformat()
    _fill_from_report(summary, report, parsed)
    return summary


RECOMMENDATIONS = (
    ("selector", "selector issue(s): Update locators to use stable selectors (role, label, testid)"),
    ("timing", "timing issue(s): Add explicit waits or increase timeout"),
    ("navigation", "navigation issue(s): Wait for the expected URL before continuing"),
    ("auth", "auth issue(s): Check authentication state and credentials"),
    ("env", "environment issue(s): Verify application is running and accessible"),
    ("data", "data issue(s): Review test data and expected values"),
    ("script", "script error(s): Fix the test code so it compiles and runs"),
)


def get_recommendations(summary: VerifySummary) -> list[str]:
    recommendations = []
    if summary.failures.tests:
        stats = summary.failures.stats
        for category, advice in RECOMMENDATIONS:
            if stats.get(category, 0) > 0:
                recommendations.append(f"{stats[category]} {advice}")

    if summary.stability and not summary.stability.stable:
        recommendations.append(
            f"{len(summary.stability.flaky_tests)} flaky test(s) detected: "
            "Review for race conditions and add proper waits"
        )
    return recommendations


def format_verify_summary(summary: VerifySummary) -> str:
    """Render a summary as markdown."""
    icon = {VerifyStatus.PASSED: "✅", VerifyStatus.FLAKY: "⚠️"}.get(summary.status, "❌")
    lines = [f"{icon} Verification {summary.status.value.upper()}", ""]
    if summary.journey_id:
        lines.append(f"Journey: {summary.journey_id}")
    lines.extend([
        f"Duration: {round(summary.duration / 1000)}s",
        "",
        "## Results",
        f"- Total: {summary.counts.total}",
        f"- Passed: {summary.counts.passed}",
        f"- Failed: {summary.counts.failed}",
        f"- Skipped: {summary.counts.skipped}",
        f"- Flaky: {summary.counts.flaky}",
        "",
    ])

    if summary.failures.tests:
        lines.append("## Failed Tests")
        lines.extend(f"- {test}" for test in summary.failures.tests)
        lines.append("")

    if summary.stability:
        lines.extend([
            "## Stability",
            f"- Stable: {'Yes' if summary.stability.stable else 'No'}",
            f"- Flaky Rate: {round(summary.stability.flaky_rate * 100)}%",
            "",
        ])

    if recommendations := get_recommendations(summary):
        lines.append("## Recommendations")
        lines.extend(f"- {r}" for r in recommendations)

    return "\n".join(lines)


def save_summary(summary: VerifySummary, output_path: Path | str) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(summary.to_dict(), f, indent=2, ensure_ascii=False)
    return output_path


def failing_line(result: TestResult) -> int | None:
    """Source line where a failed test broke, if the report records one."""
    for error in result.errors:
        if error.line:
            return error.line
        if error.stack and (match := _STACK_LINE.search(error.stack)):
            return int(match.group(1))
    return None


def make_verify_fn(
    runner: PlaywrightRunner,
    options: RunnerOptions | None = None,
    journey_id: str | None = None,
) -> VerifyFn:
    """Verify function that reruns Playwright and summarizes the outcome."""
    options = options or RunnerOptions()

    if journey_id and not options.test_file and not options.grep:
        options = replace(options, grep=f"@{journey_id}")

    async def verify() -> VerifySummary:
        if options.test_file and not Path(options.test_file).exists():
            # Reports the missing file without spawning Playwright
            result = runner.run_test_file(Path(options.test_file), options)
        else:
            result = await runner.run_async(options)
        return build_verify_summary(result, journey_id=journey_id)

    return verify
