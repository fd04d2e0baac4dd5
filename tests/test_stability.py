"""
Unit tests for repeated-run stability checks.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from journey_warden.models import RunnerResult
from journey_warden.verify.parser import parse_report
from journey_warden.verify.runner import PlaywrightRunner, RunnerOptions
from journey_warden.verify.stability import (
    StabilityResult,
    check_stability,
    check_stability_async,
    evaluate_stability,
    find_flaky_tests,
    generate_stability_report,
    get_flakiness_score,
    is_test_stable,
    quick_stability_check,
    should_quarantine,
    thorough_stability_check,
)

PAYS_KEY = "checkout.spec.ts > pays for the order @JRN-0003"


def _runner_result(success=False, report_path=None, stdout=""):
    return RunnerResult(
        success=success,
        exit_code=0 if success else 1,
        stdout=stdout,
        stderr="",
        duration=2000,
        command="npx playwright test --repeat-each 3 --fail-on-flaky-tests",
        report_path=str(report_path) if report_path else None,
    )


class TestFindFlakyTests:
    """Test cases for find_flaky_tests()."""

    def test_disagreeing_repetitions(self, repeated_report_path):
        assert find_flaky_tests(parse_report(repeated_report_path)) == [PAYS_KEY]

    def test_passed_on_retry(self, flaky_report_path):
        assert find_flaky_tests(parse_report(flaky_report_path)) == ["cart.spec.ts > adds an item @JRN-0002"]

    def test_consistent_results(self, passed_report_path, failed_report_path):
        assert find_flaky_tests(parse_report(passed_report_path)) == []
        assert find_flaky_tests(parse_report(failed_report_path)) == []


class TestCheckStability:
    """Test cases for check_stability() against a mocked runner."""

    def setup_method(self):
        self.runner = Mock(spec=PlaywrightRunner)

    def test_repeats_and_fails_on_flaky(self, repeated_report_path):
        self.runner.run.return_value = _runner_result(report_path=repeated_report_path)

        result = check_stability(self.runner, RunnerOptions(test_file="checkout.spec.ts"), repeat_count=3)

        options = self.runner.run.call_args.args[0]
        assert options.repeat_each == 3
        assert options.fail_on_flaky is True
        assert options.test_file == "checkout.spec.ts"
        assert result.stable is False
        assert result.runs_completed == 3
        assert result.flaky_tests == [PAYS_KEY]
        assert result.flaky_rate == 0.5
        assert result.run_summaries[0].total == 5

    def test_tolerated_flaky_rate(self, repeated_report_path):
        self.runner.run.return_value = _runner_result(report_path=repeated_report_path)

        result = check_stability(self.runner, repeat_count=2, max_flaky_rate=0.5)

        assert result.stable is True
        assert result.flaky_tests == [PAYS_KEY]

    def test_stable_run(self, passed_report_path):
        self.runner.run.return_value = _runner_result(success=True, report_path=passed_report_path)

        result = check_stability(self.runner)

        assert result.stable is True
        assert result.flaky_rate == 0.0
        assert self.runner.run.call_args.args[0].repeat_each == 3

    def test_quick_and_thorough_repeat_counts(self, passed_report_path):
        self.runner.run.return_value = _runner_result(success=True, report_path=passed_report_path)

        assert quick_stability_check(self.runner).runs_completed == 2
        assert self.runner.run.call_args.args[0].repeat_each == 2
        assert thorough_stability_check(self.runner).runs_completed == 5
        assert self.runner.run.call_args.args[0].repeat_each == 5

    def test_is_test_stable_selects_one_test(self, repeated_report_path):
        self.runner.run.return_value = _runner_result(report_path=repeated_report_path)

        assert is_test_stable(self.runner, "checkout.spec.ts", "pays for the order") is False
        options = self.runner.run.call_args.args[0]
        assert options.test_file == "checkout.spec.ts"
        assert options.grep == "pays for the order"

    @pytest.mark.asyncio
    async def test_async_check_uses_run_async(self, repeated_report_path):
        self.runner.run_async = AsyncMock(return_value=_runner_result(report_path=repeated_report_path))

        result = await check_stability_async(self.runner, repeat_count=4)

        self.runner.run.assert_not_called()
        assert self.runner.run_async.call_args.args[0].repeat_each == 4
        assert result.stable is False


class TestEvaluateStability:
    """Test cases for judging runs without a usable report."""

    def test_flaky_mentioned_in_output(self):
        result = evaluate_stability(_runner_result(stdout="  1 flaky\n    checkout.spec.ts:11"), repeat_count=3)

        assert result.stable is False
        assert result.flaky_tests == []

    def test_clean_output_is_stable(self):
        assert evaluate_stability(_runner_result(success=True, stdout="3 passed"), repeat_count=3).stable is True

    def test_failure_without_flakiness_is_stable(self):
        """Consistent failures are a failed run, not a flaky one."""
        assert evaluate_stability(_runner_result(stdout="3 failed"), repeat_count=3).stable is True


class TestStabilityHelpers:
    """Test cases for scoring, quarantine and the markdown report."""

    def _result(self, flaky_tests, flaky_rate, runs=3):
        return StabilityResult(
            stable=not flaky_tests,
            runs_completed=runs,
            runner_result=_runner_result(success=not flaky_tests),
            flaky_tests=flaky_tests,
            flaky_rate=flaky_rate,
        )

    def test_flakiness_score(self):
        assert get_flakiness_score(self._result([PAYS_KEY], 0.5)) == 0.5
        assert get_flakiness_score(self._result([PAYS_KEY], 0.5, runs=0)) == 0.0

    def test_should_quarantine(self):
        assert should_quarantine(self._result([PAYS_KEY], 0.5)) is True
        assert should_quarantine(self._result([PAYS_KEY], 0.25)) is False
        assert should_quarantine(self._result([PAYS_KEY], 0.25), threshold=0.2) is True

    def test_report_for_unstable_run(self):
        report = generate_stability_report(self._result([PAYS_KEY], 0.5))

        assert "**Status**: ⚠️ UNSTABLE" in report
        assert "**Flaky Rate**: 50%" in report
        assert f"- {PAYS_KEY}" in report
        assert "4. Consider isolation improvements" in report

    def test_report_for_stable_run(self):
        report = generate_stability_report(self._result([], 0.0))

        assert "**Status**: ✅ STABLE" in report
        assert "## All Tests Stable" in report
        assert "## Flaky Tests Detected" not in report
