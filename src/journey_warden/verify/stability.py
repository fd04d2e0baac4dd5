"""Stability checks: rerun tests several times and look for flakiness."""

import logging
from dataclasses import dataclass, field, replace

from ..models import RunnerResult, StabilityInfo
from .parser import ParsedSummary, PlaywrightReport, extract_test_results, get_summary, parse_report
from .runner import PlaywrightRunner, RunnerOptions

logger = logging.getLogger(__name__)

DEFAULT_REPEAT_COUNT = 3
QUICK_REPEAT_COUNT = 2
THOROUGH_REPEAT_COUNT = 5
DEFAULT_QUARANTINE_THRESHOLD = 0.3


@dataclass
class StabilityResult:
    """Outcome of one repeated run."""

    stable: bool
    runs_completed: int
    runner_result: RunnerResult
    flaky_tests: list[str] = field(default_factory=list)
    flaky_rate: float = 0.0
    run_summaries: list[ParsedSummary] = field(default_factory=list)

    def to_info(self) -> StabilityInfo:
        return StabilityInfo(
            stable=self.stable,
            flaky_tests=list(self.flaky_tests),
            flaky_rate=self.flaky_rate,
        )


def find_flaky_tests(report: PlaywrightReport) -> list[str]:
    """Tests that passed only on retry, or whose repetitions disagree."""
    outcomes: dict[str, set[str]] = {}
    flaky: list[str] = []

    for result in extract_test_results(report):
        if not result.final or result.status == "skipped":
            continue
        outcomes.setdefault(result.key, set()).add("failed" if result.failed else "passed")
        if result.flaky and result.key not in flaky:
            flaky.append(result.key)

    for key, seen in outcomes.items():
        if len(seen) > 1 and key not in flaky:
            flaky.append(key)
    return flaky


def _repeat_options(options: RunnerOptions | None, repeat_count: int) -> RunnerOptions:
    return replace(options or RunnerOptions(), repeat_each=repeat_count, fail_on_flaky=True)


def evaluate_stability(
    runner_result: RunnerResult,
    repeat_count: int,
    max_flaky_rate: float = 0.0,
) -> StabilityResult:
    """Judge a repeated run from its report, falling back to console output."""
    result = StabilityResult(stable=True, runs_completed=repeat_count, runner_result=runner_result)

    report = parse_report(runner_result.report_path) if runner_result.report_path else None
    if report is not None:
        summary = get_summary(report)
        result.run_summaries.append(summary)
        result.flaky_tests = find_flaky_tests(report)
        distinct = {r.key for r in extract_test_results(report) if r.status != "skipped"}
        result.flaky_rate = len(result.flaky_tests) / len(distinct) if distinct else 0.0
        result.stable = result.flaky_rate <= max_flaky_rate
    elif not runner_result.success and "flaky" in f"{runner_result.stdout}{runner_result.stderr}":
        result.stable = False

    if not result.stable:
        logger.warning(
            "%d flaky test(s) after %d runs: %s",
            len(result.flaky_tests),
            repeat_count,
            ", ".join(result.flaky_tests) or "see runner output",
        )
    return result


def check_stability(
    runner: PlaywrightRunner,
    options: RunnerOptions | None = None,
    repeat_count: int = DEFAULT_REPEAT_COUNT,
    max_flaky_rate: float = 0.0,
) -> StabilityResult:
    """Run the selected tests `repeat_count` times and report flakiness."""
    runner_result = runner.run(_repeat_options(options, repeat_count))
    return evaluate_stability(runner_result, repeat_count, max_flaky_rate)


async def check_stability_async(
    runner: PlaywrightRunner,
    options: RunnerOptions | None = None,
    repeat_count: int = DEFAULT_REPEAT_COUNT,
    max_flaky_rate: float = 0.0,
) -> StabilityResult:
    runner_result = await runner.run_async(_repeat_options(options, repeat_count))
    return evaluate_stability(runner_result, repeat_count, max_flaky_rate)


def quick_stability_check(runner: PlaywrightRunner, options: RunnerOptions | None = None) -> StabilityResult:
    return check_stability(runner, options, repeat_count=QUICK_REPEAT_COUNT)


def thorough_stability_check(runner: PlaywrightRunner, options: RunnerOptions | None = None) -> StabilityResult:
    return check_stability(runner, options, repeat_count=THOROUGH_REPEAT_COUNT)


def is_test_stable(
    runner: PlaywrightRunner,
    test_file: str,
    test_name: str,
    repeat_count: int = DEFAULT_REPEAT_COUNT,
    options: RunnerOptions | None = None,
) -> bool:
    options = replace(options or RunnerOptions(), test_file=test_file, grep=test_name)
    return check_stability(runner, options, repeat_count=repeat_count).stable


def get_flakiness_score(result: StabilityResult) -> float:
    if result.runs_completed == 0:
        return 0.0
    return result.flaky_rate


def should_quarantine(result: StabilityResult, threshold: float = DEFAULT_QUARANTINE_THRESHOLD) -> bool:
    return result.flaky_rate > threshold


def generate_stability_report(result: StabilityResult) -> str:
    """Render a stability result as markdown."""
    lines = [
        "# Stability Check Report",
        "",
        f"**Status**: {'✅ STABLE' if result.stable else '⚠️ UNSTABLE'}",
        f"**Runs Completed**: {result.runs_completed}",
        f"**Flaky Rate**: {round(result.flaky_rate * 100)}%",
        "",
    ]

    if result.flaky_tests:
        lines.extend(["## Flaky Tests Detected", ""])
        lines.extend(f"- {test}" for test in result.flaky_tests)
        lines.extend([
            "",
            "### Recommendations",
            "",
            "1. Review test steps for race conditions",
            "2. Add explicit waits for expected states",
            "3. Check for shared state between tests",
            "4. Consider isolation improvements",
        ])
    else:
        lines.extend(["## All Tests Stable", "", "No flakiness detected after repeated runs."])

    return "\n".join(lines)
