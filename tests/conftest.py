"""
Pytest configuration and shared fixtures for the test suite.
"""

import shutil
from pathlib import Path

import pytest

from journey_warden.models import (
    FailureCategory,
    FailureClassification,
    FailureDetails,
    RunnerInfo,
    VerifyStatus,
    VerifySummary,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture(scope="session")
def fixtures_dir():
    """Directory holding sample Playwright reports and spec files."""
    return FIXTURES_DIR


@pytest.fixture
def failed_report_path():
    return FIXTURES_DIR / "report_failed.json"


@pytest.fixture
def flaky_report_path():
    return FIXTURES_DIR / "report_flaky.json"


@pytest.fixture
def passed_report_path():
    return FIXTURES_DIR / "report_passed.json"


@pytest.fixture
def repeated_report_path():
    """Report of a --repeat-each 2 run where one test passed only once."""
    return FIXTURES_DIR / "report_repeated.json"


@pytest.fixture
def heal_logs_dir(tmp_path):
    """Create a temporary heal-log directory for testing."""
    logs_dir = tmp_path / "heal-logs"
    logs_dir.mkdir()
    return logs_dir


@pytest.fixture
def spec_copy(tmp_path):
    """Writable copy of the sample login spec."""
    target = tmp_path / "login.spec.ts"
    shutil.copy(FIXTURES_DIR / "login.spec.ts", target)
    return target


@pytest.fixture
def make_classification():
    """Factory for classifications of a given category."""

    def factory(category: FailureCategory, confidence: float = 1.0) -> FailureClassification:
        return FailureClassification(
            category=category,
            confidence=confidence,
            explanation=f"{category.value} failure",
            suggestion="Fix it",
            is_test_issue=category in (
                FailureCategory.SELECTOR,
                FailureCategory.TIMING,
                FailureCategory.SCRIPT,
            ),
        )

    return factory


@pytest.fixture
def make_summary(make_classification):
    """Factory for verify summaries with at most one failing test."""

    def factory(
        status: VerifyStatus,
        category: FailureCategory | None = None,
        error: str = "",
        line: int | None = None,
        report_path: str | None = None,
    ) -> VerifySummary:
        failures = FailureDetails()
        if status == VerifyStatus.FAILED:
            key = "login.spec.ts > user can sign in"
            failures.tests.append(key)
            if category is not None:
                failures.classifications[key] = make_classification(category)
            if error:
                failures.errors[key] = error
            if line is not None:
                failures.lines[key] = line
        return VerifySummary(
            status=status,
            duration=100,
            runner=RunnerInfo(exit_code=0 if status == VerifyStatus.PASSED else 1, command="npx playwright test"),
            failures=failures,
            report_path=report_path,
        )

    return factory
