"""Playwright JSON report parser."""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

FAILED_STATUSES = ("failed", "timedOut", "interrupted")


@dataclass
class TestError:
    """An error recorded against a test result or step."""

    __test__ = False

    message: str
    stack: str | None = None
    file: str | None = None
    line: int | None = None
    column: int | None = None
    snippet: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "TestError":
        location = data.get("location") or {}
        return cls(
            message=data.get("message") or data.get("value") or "",
            stack=data.get("stack"),
            file=location.get("file"),
            line=location.get("line"),
            column=location.get("column"),
            snippet=data.get("snippet"),
        )

    @property
    def text(self) -> str:
        """Message and stack joined, as fed to the classifier."""
        return f"{self.message} {self.stack or ''}"


@dataclass
class ReportStep:
    """A step (action, assertion, hook) inside a test result."""

    title: str
    category: str
    duration: float
    error: TestError | None = None
    steps: list["ReportStep"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ReportStep":
        error = data.get("error")
        return cls(
            title=data.get("title", ""),
            category=data.get("category", ""),
            duration=data.get("duration", 0),
            error=TestError.from_dict(error) if error else None,
            steps=[cls.from_dict(s) for s in data.get("steps", [])],
        )


@dataclass
class TestResult:
    """One execution (attempt) of one test."""

    __test__ = False

    title: str
    title_path: list[str]
    status: str
    duration: float
    retry: int
    file: str = ""
    line: int = 0
    column: int = 0
    errors: list[TestError] = field(default_factory=list)
    steps: list[ReportStep] = field(default_factory=list)
    attachments: list[dict] = field(default_factory=list)
    annotations: list[dict] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    project_name: str = ""
    final: bool = True  # last result recorded for its test

    @property
    def key(self) -> str:
        """Stable identifier used to key classifications."""
        return " > ".join(self.title_path)

    @property
    def failed(self) -> bool:
        return self.status in FAILED_STATUSES

    @property
    def flaky(self) -> bool:
        return self.status == "passed" and self.retry > 0

    @property
    def error_messages(self) -> list[str]:
        return [e.message for e in self.errors]

    @property
    def error_stacks(self) -> list[str]:
        return [e.stack for e in self.errors if e.stack is not None]


@dataclass
class PlaywrightReport:
    """Raw Playwright JSON report with typed access to its sections."""

    suites: list[dict]
    stats: dict
    errors: list[TestError] = field(default_factory=list)
    config: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "PlaywrightReport":
        return cls(
            suites=data.get("suites") or [],
            stats=data.get("stats") or {},
            errors=[TestError.from_dict(e) for e in data.get("errors") or []],
            config=data.get("config") or {},
        )


@dataclass
class ParsedSummary:
    """Per-test counts derived from a report."""

    total: int
    passed: int
    failed: int
    skipped: int
    flaky: int
    duration: float
    start_time: datetime | None
    files: list[str]
    failed_tests: list[TestResult]
    flaky_tests: list[TestResult]


def parse_report(path: Path | str) -> PlaywrightReport | None:
    """Load a report from disk. Returns None if missing or unreadable."""
    path = Path(path)
    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        logger.warning("Could not read report %s: %s", path, e)
        return None

    return parse_report_content(content)


def parse_report_content(content: str) -> PlaywrightReport | None:
    """Parse report JSON text. Returns None if it is not a report object."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.warning("Corrupt Playwright report: %s", e)
        return None

    if not isinstance(data, dict):
        return None
    return PlaywrightReport.from_dict(data)


def extract_test_results(report: PlaywrightReport) -> list[TestResult]:
    """Flatten nested suites depth-first into a list of results."""
    results: list[TestResult] = []

    def walk(suite: dict, title_path: list[str]) -> None:
        current = [t for t in [*title_path, suite.get("title", "")] if t]

        for spec in suite.get("specs", []):
            spec_location = {
                "file": spec.get("file") or suite.get("file", ""),
                "line": spec.get("line", 0),
                "column": spec.get("column", 0),
            }
            for test in spec.get("tests", []):
                test_results = test.get("results", [])
                for index, raw in enumerate(test_results):
                    results.append(_build_result(
                        raw,
                        spec=spec,
                        title_path=[*current, spec.get("title", "")],
                        spec_location=spec_location,
                        project_name=test.get("projectName", ""),
                        final=index == len(test_results) - 1,
                    ))

        for child in suite.get("suites", []):
            walk(child, current)

    for suite in report.suites:
        walk(suite, [])

    return results


def _build_result(
    raw: dict,
    spec: dict,
    title_path: list[str],
    spec_location: dict,
    project_name: str,
    final: bool,
) -> TestResult:
    location = raw.get("location") or spec_location
    return TestResult(
        title=spec.get("title", ""),
        title_path=title_path,
        status=raw.get("status", "failed"),
        duration=raw.get("duration", 0),
        retry=raw.get("retry", 0),
        file=location.get("file", ""),
        line=location.get("line", 0),
        column=location.get("column", 0),
        errors=[TestError.from_dict(e) for e in raw.get("errors", [])],
        steps=[ReportStep.from_dict(s) for s in raw.get("steps", [])],
        attachments=list(raw.get("attachments", [])),
        annotations=list(raw.get("annotations", [])),
        tags=list(spec.get("tags", [])),
        project_name=project_name,
        final=final,
    )


def get_summary(report: PlaywrightReport) -> ParsedSummary:
    """Count tests by the status of their final result."""
    all_results = extract_test_results(report)
    finals = [r for r in all_results if r.final]

    failed = [r for r in finals if r.failed]
    flaky = [r for r in finals if r.flaky]

    files: list[str] = []
    for r in all_results:
        if r.file and r.file not in files:
            files.append(r.file)

    return ParsedSummary(
        total=len(finals),
        passed=sum(1 for r in finals if r.status == "passed"),
        failed=len(failed),
        skipped=sum(1 for r in finals if r.status == "skipped"),
        flaky=len(flaky),
        duration=report.stats.get("duration", 0),
        start_time=_parse_start_time(report.stats.get("startTime")),
        files=files,
        failed_tests=failed,
        flaky_tests=flaky,
    )


def _parse_start_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def get_failed_tests(report: PlaywrightReport) -> list[TestResult]:
    return [r for r in extract_test_results(report) if r.final and r.failed]


def get_flaky_tests(report: PlaywrightReport) -> list[TestResult]:
    return [r for r in extract_test_results(report) if r.final and r.flaky]


def find_tests_by_title(report: PlaywrightReport, pattern: str | re.Pattern) -> list[TestResult]:
    """Results whose title matches a pattern (strings match case-insensitively)."""
    regex = re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
    return [r for r in extract_test_results(report) if regex.search(r.title)]


def find_tests_by_tag(report: PlaywrightReport, tag: str) -> list[TestResult]:
    """Results carrying a tag, with or without its leading `@`."""
    wanted = {tag, tag.lstrip("@"), "@" + tag.lstrip("@")}
    return [r for r in extract_test_results(report) if wanted & set(r.tags)]


def get_failed_step(result: TestResult) -> ReportStep | None:
    """First step carrying an error, searched depth-first."""

    def find(steps: list[ReportStep]) -> ReportStep | None:
        for step in steps:
            if step.error:
                return step
            if found := find(step.steps):
                return found
        return None

    return find(result.steps)


def is_report_successful(report: PlaywrightReport) -> bool:
    return report.stats.get("unexpected", 0) == 0


def has_flaky(report: PlaywrightReport) -> bool:
    return report.stats.get("flaky", 0) > 0


def format_test_result(result: TestResult) -> str:
    """One-line status with indented error messages."""
    retry = f" (retry {result.retry})" if result.retry > 0 else ""
    output = f"[{result.status.upper()}] {result.key} ({result.duration}ms){retry}"

    if result.errors:
        output += "\n  Errors:"
        for error in result.errors:
            output += f"\n    - {error.message}"

    return output


def generate_markdown_summary(report: PlaywrightReport) -> str:
    """Markdown overview of a run, with failing and flaky tests listed."""
    summary = get_summary(report)
    lines = [
        "# Test Results Summary",
        "",
        f"**Status**: {'✅ PASSED' if summary.failed == 0 else '❌ FAILED'}",
        f"**Duration**: {round(summary.duration / 1000)}s",
        "",
        "## Stats",
        "",
        f"- Total: {summary.total}",
        f"- Passed: {summary.passed}",
        f"- Failed: {summary.failed}",
        f"- Skipped: {summary.skipped}",
        f"- Flaky: {summary.flaky}",
    ]

    if summary.failed_tests:
        lines.extend(["", "## Failed Tests", ""])
        for test in summary.failed_tests:
            lines.append(f"### {test.key}")
            for error in test.errors:
                lines.extend(["", "```", error.message, "```"])

    if summary.flaky_tests:
        lines.extend(["", "## Flaky Tests", ""])
        for test in summary.flaky_tests:
            lines.append(f"- {test.key} (passed on retry {test.retry})")

    return "\n".join(lines)
