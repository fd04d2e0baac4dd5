"""
Unit tests for the healing rule engine.
"""

import pytest

from journey_warden.config import HealingConfig
from journey_warden.models import FailureCategory, FixType, ForbiddenFixType
from journey_warden.heal.rules import (
    DEFAULT_HEALING_RULES,
    evaluate_healing,
    get_applicable_rules,
    get_healing_recommendation,
    get_next_fix,
    get_post_healing_recommendation,
    is_category_healable,
    is_fix_allowed,
    is_fix_forbidden,
)


class TestRuleCatalog:
    """Test cases for the default rule table."""

    def test_priorities_are_unique_and_ordered(self):
        priorities = [r.priority for r in DEFAULT_HEALING_RULES]

        assert priorities == sorted(priorities)
        assert len(set(priorities)) == len(priorities)

    def test_timeout_increase_is_opt_in(self):
        rule = next(r for r in DEFAULT_HEALING_RULES if r.fix_type == FixType.TIMEOUT_INCREASE)

        assert rule.enabled_by_default is False
        assert FixType.TIMEOUT_INCREASE.value not in HealingConfig().allowed_fixes

    def test_unhealable_categories(self):
        for category in (FailureCategory.AUTH, FailureCategory.ENV, FailureCategory.UNKNOWN):
            assert is_category_healable(category) is False
        assert is_category_healable(FailureCategory.DATA) is True


class TestApplicableRules:
    """Test cases for rule selection."""

    def test_timing_candidates_in_priority_order(self, make_classification):
        rules = get_applicable_rules(make_classification(FailureCategory.TIMING))

        assert [r.fix_type for r in rules] == [FixType.MISSING_AWAIT, FixType.WEB_FIRST_ASSERTION]

    def test_selector_candidates(self, make_classification):
        rules = get_applicable_rules(make_classification(FailureCategory.SELECTOR))

        assert [r.fix_type for r in rules] == [
            FixType.MISSING_AWAIT,
            FixType.SELECTOR_REFINE,
            FixType.ADD_EXACT,
        ]

    def test_opting_in_to_timeout_increase(self, make_classification):
        config = HealingConfig(allowed_fixes=[*HealingConfig().allowed_fixes, "timeout-increase"])
        rules = get_applicable_rules(make_classification(FailureCategory.TIMING), config)

        assert rules[-1].fix_type == FixType.TIMEOUT_INCREASE

    @pytest.mark.parametrize("category", list(FailureCategory))
    def test_results_are_sorted_allowed_and_applicable(self, make_classification, category):
        config = HealingConfig()
        rules = get_applicable_rules(make_classification(category), config)

        assert [r.priority for r in rules] == sorted(r.priority for r in rules)
        for rule in rules:
            assert category in rule.applies_to
            assert rule.fix_type.value in config.allowed_fixes
            assert not is_fix_forbidden(rule.fix_type, config)

    def test_config_forbidden_fix_is_never_selected(self, make_classification):
        """A fix listed as forbidden is skipped even when also allowed."""
        config = HealingConfig(forbidden_fixes=["selector-refine"])
        rules = get_applicable_rules(make_classification(FailureCategory.SELECTOR), config)

        assert FixType.SELECTOR_REFINE not in [r.fix_type for r in rules]

    def test_forbidden_list_is_fixed(self):
        """Built-in forbidden fixes stay forbidden whatever the config says."""
        config = HealingConfig(forbidden_fixes=[])

        for fix in ForbiddenFixType:
            assert is_fix_forbidden(fix.value, config) is True
            assert is_fix_allowed(fix.value, HealingConfig(allowed_fixes=[fix.value])) is False


class TestEvaluateHealing:
    """Test cases for evaluate_healing()."""

    def test_healable_selector(self, make_classification):
        evaluation = evaluate_healing(make_classification(FailureCategory.SELECTOR))

        assert evaluation.can_heal is True
        assert evaluation.applicable_fixes[0] == FixType.MISSING_AWAIT
        assert evaluation.reason is None

    def test_navigation_without_allowed_rule(self, make_classification):
        """Navigation failures cannot heal when only selector fixes are allowed."""
        config = HealingConfig(allowed_fixes=["selector-refine"])
        evaluation = evaluate_healing(make_classification(FailureCategory.NAVIGATION), config)

        assert evaluation.can_heal is False
        assert evaluation.applicable_fixes == []
        assert "no applicable healing rules" in evaluation.reason

    def test_unhealable_category(self, make_classification):
        evaluation = evaluate_healing(make_classification(FailureCategory.AUTH))

        assert evaluation.can_heal is False
        assert evaluation.reason == "Category 'auth' cannot be healed automatically"

    def test_disabled(self, make_classification):
        evaluation = evaluate_healing(
            make_classification(FailureCategory.SELECTOR), HealingConfig(enabled=False)
        )

        assert evaluation.can_heal is False
        assert evaluation.reason == "Healing is disabled"


class TestNextFix:
    """Test cases for get_next_fix()."""

    def test_skips_attempted_fixes(self, make_classification):
        classification = make_classification(FailureCategory.SELECTOR)

        assert get_next_fix(classification, []) == FixType.MISSING_AWAIT
        assert get_next_fix(classification, [FixType.MISSING_AWAIT]) == FixType.SELECTOR_REFINE
        assert get_next_fix(classification, ["missing-await", "selector-refine"]) == FixType.ADD_EXACT

    def test_none_when_exhausted(self, make_classification):
        classification = make_classification(FailureCategory.TIMING)
        attempted = [FixType.MISSING_AWAIT, FixType.WEB_FIRST_ASSERTION]

        assert get_next_fix(classification, attempted) is None

    def test_never_returns_attempted_fix(self, make_classification):
        for category in FailureCategory:
            classification = make_classification(category)
            attempted: list[FixType] = []
            while (fix := get_next_fix(classification, attempted)) is not None:
                assert fix not in attempted
                attempted.append(fix)
            assert len(attempted) == len(get_applicable_rules(classification))

    def test_none_when_not_healable(self, make_classification):
        assert get_next_fix(make_classification(FailureCategory.ENV), []) is None


class TestRecommendations:
    """Test cases for human guidance strings."""

    def test_healing_recommendation(self, make_classification):
        assert get_healing_recommendation(make_classification(FailureCategory.NAVIGATION)) == (
            "Add waitForURL or toHaveURL assertion after navigation"
        )
        assert get_healing_recommendation(make_classification(FailureCategory.UNKNOWN)) == (
            "Review error details manually to determine appropriate fix"
        )

    def test_post_healing_recommendation(self, make_classification):
        text = get_post_healing_recommendation(make_classification(FailureCategory.SELECTOR), 3)

        assert text == (
            "Healing exhausted after 3 attempts. Consider adding data-testid to the target "
            "element or quarantining the test."
        )

    def test_post_healing_default_tail(self, make_classification):
        text = get_post_healing_recommendation(make_classification(FailureCategory.DATA), 2)

        assert text.endswith("Consider quarantining the test and filing a bug report.")
