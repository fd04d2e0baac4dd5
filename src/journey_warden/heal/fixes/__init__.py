"""Fix strategies - pure source-text rewrites for Playwright tests."""

from collections.abc import Callable
from dataclasses import dataclass

from ...models import AriaInfo, FailureClassification, FixResult, FixType
from .navigation import apply_navigation_fix
from .selector import add_exact_to_locator, apply_selector_fix
from .timing import (
    DEFAULT_MAX_TIMEOUT_MS,
    apply_timing_fix,
    convert_to_web_first_assertion,
    fix_missing_await,
)


@dataclass(frozen=True)
class FixContext:
    """What a fix strategy may know about the failure it is repairing."""

    line_number: int = 1
    error_message: str = ""
    classification: FailureClassification | None = None
    aria_info: AriaInfo | None = None
    max_timeout_increase: int = DEFAULT_MAX_TIMEOUT_MS
    expected_url: str | None = None


FixStrategy = Callable[[str, FixContext], FixResult]

FIX_STRATEGIES: dict[str, FixStrategy] = {
    FixType.SELECTOR_REFINE.value: lambda code, ctx: apply_selector_fix(code, ctx.aria_info),
    FixType.ADD_EXACT.value: lambda code, ctx: add_exact_to_locator(code),
    FixType.MISSING_AWAIT.value: lambda code, ctx: fix_missing_await(code),
    FixType.NAVIGATION_WAIT.value: lambda code, ctx: apply_navigation_fix(
        code, ctx.line_number, ctx.error_message, ctx.expected_url
    ),
    FixType.WEB_FIRST_ASSERTION.value: lambda code, ctx: convert_to_web_first_assertion(code),
    FixType.TIMEOUT_INCREASE.value: lambda code, ctx: apply_timing_fix(
        code,
        ctx.line_number,
        ctx.error_message,
        max_timeout=ctx.max_timeout_increase,
    ),
}


def apply_fix(code: str, fix_type: FixType | str, context: FixContext | None = None) -> FixResult:
    """Run one fix strategy over test source."""
    value = fix_type.value if isinstance(fix_type, FixType) else str(fix_type)
    strategy = FIX_STRATEGIES.get(value)
    if strategy is None:
        return FixResult(applied=False, code=code, description=f"Unknown fix type: {value}")
    return strategy(code, context or FixContext())


__all__ = ["FIX_STRATEGIES", "FixContext", "FixStrategy", "apply_fix"]
