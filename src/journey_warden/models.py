"""Core data models for Journey Warden."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class FailureCategory(str, Enum):
    """Likely root cause of a test failure."""

    SELECTOR = "selector"
    TIMING = "timing"
    NAVIGATION = "navigation"
    DATA = "data"
    AUTH = "auth"
    ENV = "env"
    SCRIPT = "script"
    UNKNOWN = "unknown"


class FixType(str, Enum):
    """Code-mutation strategies the healing loop may apply."""

    SELECTOR_REFINE = "selector-refine"
    ADD_EXACT = "add-exact"
    MISSING_AWAIT = "missing-await"
    NAVIGATION_WAIT = "navigation-wait"
    TIMEOUT_INCREASE = "timeout-increase"
    WEB_FIRST_ASSERTION = "web-first-assertion"


class ForbiddenFixType(str, Enum):
    """Fixes that must never be applied, whatever the configuration says."""

    ADD_SLEEP = "add-sleep"
    REMOVE_ASSERTION = "remove-assertion"
    WEAKEN_ASSERTION = "weaken-assertion"
    FORCE_CLICK = "force-click"
    BYPASS_AUTH = "bypass-auth"


class VerifyStatus(str, Enum):
    """Overall outcome of one verification run."""

    PASSED = "passed"
    FAILED = "failed"
    FLAKY = "flaky"
    ERROR = "error"


class AttemptResult(str, Enum):
    """Outcome of a single healing attempt."""

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


class HealingLogStatus(str, Enum):
    """Status persisted in the heal log."""

    IN_PROGRESS = "in_progress"
    HEALED = "healed"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


class HealingStatus(str, Enum):
    """Terminal status returned by the healing loop."""

    HEALED = "healed"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
    NOT_HEALABLE = "not_healable"


def utc_now() -> str:
    """ISO-8601 timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RunnerResult:
    """Result of one Playwright subprocess invocation."""

    success: bool
    exit_code: int
    stdout: str
    stderr: str
    duration: int  # ms
    command: str
    report_path: str | None = None


@dataclass(frozen=True)
class FailureClassification:
    """Classified root cause of a failing test."""

    category: FailureCategory
    confidence: float  # 0.0 - 1.0
    explanation: str
    suggestion: str
    is_test_issue: bool
    matched_keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "suggestion": self.suggestion,
            "isTestIssue": self.is_test_issue,
            "matchedKeywords": list(self.matched_keywords),
        }


@dataclass
class VerifyCounts:
    """Per-status test counts."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    flaky: int = 0


@dataclass
class FailureDetails:
    """Failing tests keyed by their title path."""

    tests: list[str] = field(default_factory=list)
    classifications: dict[str, FailureClassification] = field(default_factory=dict)
    stats: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    lines: dict[str, int] = field(default_factory=dict)


@dataclass
class StabilityInfo:
    """Outcome of a repeated run used to detect flaky tests."""

    stable: bool
    flaky_tests: list[str] = field(default_factory=list)
    flaky_rate: float = 0.0


@dataclass
class RunnerInfo:
    """How the verification run was invoked."""

    exit_code: int
    command: str


@dataclass
class VerifySummary:
    """Normalized outcome of one test run."""

    status: VerifyStatus
    duration: int
    runner: RunnerInfo
    counts: VerifyCounts = field(default_factory=VerifyCounts)
    failures: FailureDetails = field(default_factory=FailureDetails)
    report_path: str | None = None
    journey_id: str | None = None
    metadata: dict[str, Any] | None = None
    timestamp: str = field(default_factory=utc_now)
    stability: StabilityInfo | None = None

    @property
    def passed(self) -> bool:
        return self.status == VerifyStatus.PASSED

    def to_dict(self) -> dict:
        data = {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "duration": self.duration,
            "counts": {
                "total": self.counts.total,
                "passed": self.counts.passed,
                "failed": self.counts.failed,
                "skipped": self.counts.skipped,
                "flaky": self.counts.flaky,
            },
            "failures": {
                "tests": list(self.failures.tests),
                "classifications": {
                    key: c.to_dict() for key, c in self.failures.classifications.items()
                },
                "stats": dict(self.failures.stats),
            },
            "runner": {"exitCode": self.runner.exit_code, "command": self.runner.command},
        }
        if self.report_path:
            data["reportPath"] = self.report_path
        if self.journey_id:
            data["journeyId"] = self.journey_id
        if self.metadata:
            data["metadata"] = self.metadata
        if self.stability:
            data["stability"] = {
                "stable": self.stability.stable,
                "flakyTests": list(self.stability.flaky_tests),
                "flakyRate": self.stability.flaky_rate,
            }
        return data


@dataclass(frozen=True)
class AriaInfo:
    """Accessibility metadata for the element a broken selector targeted."""

    role: str | None = None
    name: str | None = None
    level: int | None = None
    test_id: str | None = None
    label: str | None = None
    placeholder: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "AriaInfo":
        return cls(
            role=data.get("role"),
            name=data.get("name"),
            level=data.get("level"),
            test_id=data.get("testId") or data.get("test_id"),
            label=data.get("label"),
            placeholder=data.get("placeholder"),
        )


@dataclass(frozen=True)
class FixResult:
    """Outcome of running one fix strategy over test source."""

    applied: bool
    code: str
    description: str
    confidence: float = 0.0
    fix_count: int = 0
    new_locator: str | None = None


@dataclass(frozen=True)
class HealingAttempt:
    """One entry of the heal log."""

    attempt: int
    failure_type: FailureCategory
    fix_type: FixType
    file: str
    change: str
    result: AttemptResult
    duration: int
    evidence: list[str] = field(default_factory=list)
    error_message: str | None = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        data = {
            "attempt": self.attempt,
            "timestamp": self.timestamp,
            "failureType": self.failure_type.value,
            "fixType": self.fix_type.value,
            "file": self.file,
            "change": self.change,
            "evidence": list(self.evidence),
            "result": self.result.value,
            "duration": self.duration,
        }
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "HealingAttempt":
        return cls(
            attempt=data["attempt"],
            timestamp=data.get("timestamp", ""),
            failure_type=FailureCategory(data["failureType"]),
            fix_type=FixType(data["fixType"]),
            file=data.get("file", ""),
            change=data.get("change", ""),
            evidence=list(data.get("evidence", [])),
            result=AttemptResult(data["result"]),
            error_message=data.get("errorMessage"),
            duration=data.get("duration", 0),
        )


@dataclass
class HealingSummary:
    """Statistics computed when a healing session ends."""

    total_attempts: int
    successful_fixes: int
    failed_attempts: int
    total_duration: int
    fix_types_attempted: list[FixType]
    recommendation: str | None = None

    def to_dict(self) -> dict:
        data = {
            "totalAttempts": self.total_attempts,
            "successfulFixes": self.successful_fixes,
            "failedAttempts": self.failed_attempts,
            "totalDuration": self.total_duration,
            "fixTypesAttempted": [f.value for f in self.fix_types_attempted],
        }
        if self.recommendation is not None:
            data["recommendation"] = self.recommendation
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "HealingSummary":
        return cls(
            total_attempts=data.get("totalAttempts", 0),
            successful_fixes=data.get("successfulFixes", 0),
            failed_attempts=data.get("failedAttempts", 0),
            total_duration=data.get("totalDuration", 0),
            fix_types_attempted=[FixType(f) for f in data.get("fixTypesAttempted", [])],
            recommendation=data.get("recommendation"),
        )


@dataclass
class HealingLog:
    """Complete healing history for one journey."""

    journey_id: str
    session_start: str
    max_attempts: int
    status: HealingLogStatus = HealingLogStatus.IN_PROGRESS
    attempts: list[HealingAttempt] = field(default_factory=list)
    session_end: str | None = None
    summary: HealingSummary | None = None

    def to_dict(self) -> dict:
        data = {
            "journeyId": self.journey_id,
            "sessionStart": self.session_start,
            "maxAttempts": self.max_attempts,
            "status": self.status.value,
            "attempts": [a.to_dict() for a in self.attempts],
        }
        if self.session_end is not None:
            data["sessionEnd"] = self.session_end
        if self.summary is not None:
            data["summary"] = self.summary.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "HealingLog":
        summary = data.get("summary")
        return cls(
            journey_id=data["journeyId"],
            session_start=data["sessionStart"],
            session_end=data.get("sessionEnd"),
            max_attempts=data.get("maxAttempts", 0),
            status=HealingLogStatus(data.get("status", "in_progress")),
            attempts=[HealingAttempt.from_dict(a) for a in data.get("attempts", [])],
            summary=HealingSummary.from_dict(summary) if summary else None,
        )


@dataclass
class HealingLoopResult:
    """What a healing session returns to its caller."""

    success: bool
    status: HealingStatus
    attempts: int
    log_path: str
    applied_fix: FixType | None = None
    recommendation: str | None = None
    modified_code: str | None = None
