"""Healing rule catalog and the decisions derived from it."""

from dataclasses import dataclass, field

from ..config import DEFAULT_HEALING_CONFIG, HealingConfig
from ..models import FailureCategory, FailureClassification, FixType, ForbiddenFixType


@dataclass(frozen=True)
class HealingRule:
    """A fix type and the failure categories it may repair."""

    fix_type: FixType
    applies_to: tuple[FailureCategory, ...]
    priority: int  # lower runs first
    description: str
    enabled_by_default: bool = True


@dataclass
class HealingEvaluation:
    """Whether a failure can be healed and which fixes to try, in order."""

    can_heal: bool
    applicable_fixes: list[FixType] = field(default_factory=list)
    reason: str | None = None


DEFAULT_HEALING_RULES: tuple[HealingRule, ...] = (
    HealingRule(
        fix_type=FixType.MISSING_AWAIT,
        applies_to=(FailureCategory.SELECTOR, FailureCategory.TIMING, FailureCategory.SCRIPT),
        priority=1,
        description="Add missing await to async operations",
    ),
    HealingRule(
        fix_type=FixType.SELECTOR_REFINE,
        applies_to=(FailureCategory.SELECTOR,),
        priority=2,
        description="Replace CSS selector with role/label/testid",
    ),
    HealingRule(
        fix_type=FixType.ADD_EXACT,
        applies_to=(FailureCategory.SELECTOR,),
        priority=3,
        description="Add exact: true to resolve ambiguous locators",
    ),
    HealingRule(
        fix_type=FixType.NAVIGATION_WAIT,
        applies_to=(FailureCategory.NAVIGATION,),
        priority=4,
        description="Add waitForURL or toHaveURL assertion",
    ),
    HealingRule(
        fix_type=FixType.WEB_FIRST_ASSERTION,
        applies_to=(FailureCategory.TIMING, FailureCategory.DATA),
        priority=5,
        description="Convert to auto-retrying web-first assertion",
    ),
    HealingRule(
        fix_type=FixType.TIMEOUT_INCREASE,
        applies_to=(FailureCategory.TIMING,),
        priority=6,
        description="Increase operation timeout (bounded)",
        enabled_by_default=False,
    ),
)

UNHEALABLE_CATEGORIES: tuple[FailureCategory, ...] = (
    FailureCategory.AUTH,
    FailureCategory.ENV,
    FailureCategory.UNKNOWN,
)

HEALING_RECOMMENDATIONS = {
    FailureCategory.SELECTOR: "Refine selector to use role, label, or testid locator strategy",
    FailureCategory.TIMING: "Add explicit wait for expected state or use web-first assertion",
    FailureCategory.NAVIGATION: "Add waitForURL or toHaveURL assertion after navigation",
    FailureCategory.DATA: "Verify test data and consider using expect.poll for dynamic values",
    FailureCategory.AUTH: "Check authentication state; may need to refresh session",
    FailureCategory.ENV: "Verify environment connectivity and application availability",
    FailureCategory.SCRIPT: "Fix the JavaScript/TypeScript error in the test code",
}

POST_HEALING_TAILS = {
    FailureCategory.SELECTOR: (
        " Consider adding data-testid to the target element or quarantining the test."
    ),
    FailureCategory.TIMING: (
        " The application may have a genuine performance issue. Consider quarantining."
    ),
    FailureCategory.NAVIGATION: " The navigation flow may have changed. Review Journey steps.",
}


def _value(fix: FixType | str) -> str:
    return fix.value if isinstance(fix, FixType) else str(fix)


def is_category_healable(category: FailureCategory) -> bool:
    return category not in UNHEALABLE_CATEGORIES


def is_fix_forbidden(fix_type: FixType | str, config: HealingConfig | None = None) -> bool:
    """Forbidden fixes come from the fixed list plus any the config adds."""
    value = _value(fix_type)
    if value in [f.value for f in ForbiddenFixType]:
        return True
    return config is not None and value in config.forbidden_fixes


def is_fix_allowed(fix_type: FixType | str, config: HealingConfig = DEFAULT_HEALING_CONFIG) -> bool:
    return (
        config.enabled
        and _value(fix_type) in config.allowed_fixes
        and not is_fix_forbidden(fix_type, config)
    )


def get_applicable_rules(
    classification: FailureClassification,
    config: HealingConfig = DEFAULT_HEALING_CONFIG,
) -> list[HealingRule]:
    """Allowed rules for the classification's category, by priority."""
    if not config.enabled or not is_category_healable(classification.category):
        return []

    rules = [
        rule for rule in DEFAULT_HEALING_RULES
        if classification.category in rule.applies_to and is_fix_allowed(rule.fix_type, config)
    ]
    return sorted(rules, key=lambda r: r.priority)


def evaluate_healing(
    classification: FailureClassification,
    config: HealingConfig = DEFAULT_HEALING_CONFIG,
) -> HealingEvaluation:
    """Decide whether healing may proceed for a classified failure."""
    if not config.enabled:
        return HealingEvaluation(can_heal=False, reason="Healing is disabled")

    if not is_category_healable(classification.category):
        return HealingEvaluation(
            can_heal=False,
            reason=f"Category '{classification.category.value}' cannot be healed automatically",
        )

    rules = get_applicable_rules(classification, config)
    if not rules:
        return HealingEvaluation(
            can_heal=False,
            reason="no applicable healing rules for this failure",
        )

    return HealingEvaluation(can_heal=True, applicable_fixes=[r.fix_type for r in rules])


def get_next_fix(
    classification: FailureClassification,
    attempted_fixes: list[FixType],
    config: HealingConfig = DEFAULT_HEALING_CONFIG,
) -> FixType | None:
    """First applicable fix not yet attempted, or None when exhausted."""
    evaluation = evaluate_healing(classification, config)
    if not evaluation.can_heal:
        return None

    attempted = [_value(f) for f in attempted_fixes]
    for fix in evaluation.applicable_fixes:
        if fix.value not in attempted:
            return fix
    return None


def get_healing_recommendation(classification: FailureClassification) -> str:
    return HEALING_RECOMMENDATIONS.get(
        classification.category,
        "Review error details manually to determine appropriate fix",
    )


def get_post_healing_recommendation(
    classification: FailureClassification,
    attempt_count: int,
) -> str:
    """Human guidance once the attempt budget is spent."""
    tail = POST_HEALING_TAILS.get(
        classification.category,
        " Consider quarantining the test and filing a bug report.",
    )
    return f"Healing exhausted after {attempt_count} attempts.{tail}"
