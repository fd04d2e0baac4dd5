"""Failure classifier: map Playwright error text to a root-cause category."""

import re
from dataclasses import dataclass

from ..models import FailureCategory, FailureClassification
from .parser import TestError, TestResult


@dataclass(frozen=True)
class CategoryPattern:
    """Keyword patterns that identify one failure category."""

    category: FailureCategory
    keywords: tuple[re.Pattern, ...]
    explanation: str
    suggestion: str
    is_test_issue: bool


def _patterns(*sources: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(s, re.IGNORECASE) for s in sources)


# Order matters: on equal match counts the earlier category wins.
CLASSIFICATION_PATTERNS: tuple[CategoryPattern, ...] = (
    CategoryPattern(
        category=FailureCategory.SELECTOR,
        keywords=_patterns(
            r"locator\s+resolved\s+to\s+\d+\s+elements",
            r"locator\.click:\s+Error",
            r"waiting\s+for\s+locator",
            r"element\s+is\s+not\s+visible",
            r"element\s+is\s+not\s+attached",
            r"element\s+is\s+not\s+enabled",
            r"getBy\w+\s*\([^)]+\)",
            r"strict\s+mode\s+violation",
            r"No\s+element\s+matches\s+selector",
            r"Target\s+closed",
            r"element\s+is\s+outside\s+of\s+the\s+viewport",
        ),
        explanation="Element locator failed to find or interact with element",
        suggestion="Update selector to use more stable locator strategy (role, label, testid)",
        is_test_issue=True,
    ),
    CategoryPattern(
        category=FailureCategory.TIMING,
        keywords=_patterns(
            r"timeout\s+\d+ms\s+exceeded",
            r"exceeded\s+while\s+waiting",
            r"timed?\s*out",
            r"waiting\s+for\s+navigation",
            r"waiting\s+for\s+load\s+state",
            r"response\s+took\s+too\s+long",
            r"expect\.\w+:\s+Timeout",
            r"navigation\s+was\s+interrupted",
        ),
        explanation="Operation timed out waiting for element or network",
        suggestion="Increase timeout or add explicit wait for expected state",
        is_test_issue=True,
    ),
    CategoryPattern(
        category=FailureCategory.NAVIGATION,
        keywords=_patterns(
            r"expected\s+url.*to.*match",
            r"expected.*toHaveURL",
            r"page\s+has\s+been\s+closed",
            r"navigation\s+failed",
            r"net::ERR_",
            r"ERR_CONNECTION",
            r"ERR_NAME_NOT_RESOLVED",
            r"redirect",
            r"page\.goto:\s+Error",
            r"URL\s+is\s+not\s+valid",
        ),
        explanation="Navigation to URL failed or URL mismatch",
        suggestion="Check URL configuration and network connectivity",
        is_test_issue=False,
    ),
    CategoryPattern(
        category=FailureCategory.DATA,
        keywords=_patterns(
            r"expected.*to\s+(?:be|equal|match|contain|have)",
            r"received.*but\s+expected",
            r"toEqual",
            r"toBe\(",
            r"toContain",
            r"toHaveText",
            r"toHaveValue",
            r"assertion\s+failed",
            r"expected\s+value",
            r"does\s+not\s+match",
        ),
        explanation="Assertion failed due to unexpected data",
        suggestion="Verify test data matches expected application state",
        is_test_issue=False,
    ),
    CategoryPattern(
        category=FailureCategory.AUTH,
        keywords=_patterns(
            r"401\s+Unauthorized",
            r"403\s+Forbidden",
            r"authentication\s+failed",
            r"login\s+failed",
            r"session\s+expired",
            r"token\s+invalid",
            r"access\s+denied",
            r"not\s+authenticated",
            r"sign\s*in\s+required",
            r"invalid\s+credentials",
        ),
        explanation="Authentication or authorization failed",
        suggestion="Check authentication state and credentials",
        is_test_issue=False,
    ),
    CategoryPattern(
        category=FailureCategory.ENV,
        keywords=_patterns(
            r"ECONNREFUSED",
            r"ENOTFOUND",
            r"ETIMEDOUT",
            r"connection\s+refused",
            r"network\s+error",
            r"502\s+Bad\s+Gateway",
            r"503\s+Service\s+Unavailable",
            r"504\s+Gateway\s+Timeout",
            r"server\s+error",
            r"browser\s+has\s+been\s+closed",
            r"browser\s+crash",
            r"context\s+closed",
        ),
        explanation="Environment or infrastructure issue",
        suggestion="Check application availability and environment configuration",
        is_test_issue=False,
    ),
    CategoryPattern(
        category=FailureCategory.SCRIPT,
        keywords=_patterns(
            r"SyntaxError",
            r"TypeError",
            r"ReferenceError",
            r"undefined\s+is\s+not",
            r"is\s+not\s+a\s+function",
            r"Cannot\s+read\s+propert",
            r"null\s+is\s+not",
            r"is\s+not\s+defined",
            r"Unexpected\s+token",
        ),
        explanation="Test script has a code error",
        suggestion="Fix the JavaScript/TypeScript error in the test",
        is_test_issue=True,
    ),
)

UNKNOWN_CLASSIFICATION = FailureClassification(
    category=FailureCategory.UNKNOWN,
    confidence=0.0,
    explanation="Unable to classify failure",
    suggestion="Review error details manually",
    is_test_issue=False,
)

NOT_FAILED_CLASSIFICATION = FailureClassification(
    category=FailureCategory.UNKNOWN,
    confidence=0.0,
    explanation="Test did not fail or has no errors",
    suggestion="N/A",
    is_test_issue=False,
)


def classify(error_text: str) -> FailureClassification:
    """Classify raw error text (message plus stack)."""
    best: CategoryPattern | None = None
    best_matches: list[str] = []

    for pattern in CLASSIFICATION_PATTERNS:
        matches = [k.pattern for k in pattern.keywords if k.search(error_text)]
        if len(matches) > len(best_matches):
            best = pattern
            best_matches = matches

    if best is None:
        return UNKNOWN_CLASSIFICATION

    return FailureClassification(
        category=best.category,
        confidence=min(len(best_matches) / 3, 1.0),
        explanation=best.explanation,
        suggestion=best.suggestion,
        is_test_issue=best.is_test_issue,
        matched_keywords=best_matches,
    )


def classify_error(error: TestError) -> FailureClassification:
    return classify(error.text)


def classify_test_result(result: TestResult) -> FailureClassification:
    """Most confident classification among a failed test's errors."""
    if not result.failed or not result.errors:
        return NOT_FAILED_CLASSIFICATION

    best = classify_error(result.errors[0])
    for error in result.errors[1:]:
        candidate = classify_error(error)
        if candidate.confidence > best.confidence:
            best = candidate
    return best


def classify_test_results(results: list[TestResult]) -> dict[str, FailureClassification]:
    """Classify every failed result, keyed by title path."""
    return {r.key: classify_test_result(r) for r in results if r.failed}


def get_failure_stats(classifications: dict[str, FailureClassification]) -> dict[str, int]:
    """Count classifications per category, every category present."""
    stats = {category.value: 0 for category in FailureCategory}
    for classification in classifications.values():
        stats[classification.category.value] += 1
    return stats


def is_healable(classification: FailureClassification) -> bool:
    """Quick check for the categories most often fixed by code changes."""
    return classification.category in (FailureCategory.SELECTOR, FailureCategory.TIMING)


def get_healable_failures(
    classifications: dict[str, FailureClassification],
) -> dict[str, FailureClassification]:
    return {key: c for key, c in classifications.items() if is_healable(c)}


def generate_classification_report(classifications: dict[str, FailureClassification]) -> str:
    """Markdown report of categories and per-test details."""
    lines = ["# Failure Classification Report", "", "## Summary", ""]

    for category, count in get_failure_stats(classifications).items():
        if count > 0:
            lines.append(f"- {category}: {count}")

    lines.extend(["", "## Detailed Classifications", ""])

    for test_name, c in classifications.items():
        lines.extend([
            f"### {test_name}",
            "",
            f"- **Category**: {c.category.value}",
            f"- **Confidence**: {round(c.confidence * 100)}%",
            f"- **Explanation**: {c.explanation}",
            f"- **Suggestion**: {c.suggestion}",
            f"- **Is Test Issue**: {'Yes' if c.is_test_issue else 'No'}",
            "",
        ])

    return "\n".join(lines)
