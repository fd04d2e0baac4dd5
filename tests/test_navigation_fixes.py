"""
Unit tests for navigation fixes.
"""

from journey_warden.heal.fixes.navigation import (
    add_navigation_wait_after_click,
    apply_navigation_fix,
    extract_url_from_error,
    fix_missing_goto_await,
    generate_to_have_url,
    generate_wait_for_url,
    has_navigation_wait,
    infer_url_pattern,
)

CHECKOUT = "\n".join([
    "import { test, expect } from '@playwright/test';",
    "",
    "test('checkout', async ({ page }) => {",
    "  await page.goto('/cart');",
    "  await page.getByRole('button', { name: 'Checkout' }).click();",
    "  await expect(page.getByText('Order placed')).toBeVisible();",
    "});",
])


class TestNavigationHelpers:
    """Test cases for URL inference and statement generation."""

    def test_extract_url_from_error(self):
        assert extract_url_from_error("Expected URL to match '/checkout'") == "/checkout"
        assert extract_url_from_error("expected \"/done\" to match") == "/done"
        assert extract_url_from_error("waiting for URL '/orders'") == "/orders"
        assert extract_url_from_error("Timeout 5000ms exceeded") is None

    def test_infer_url_prefers_error(self):
        assert infer_url_pattern(CHECKOUT, "Expected URL to match '/checkout'") == "/checkout"
        assert infer_url_pattern(CHECKOUT, "") == "/cart"
        assert infer_url_pattern("const x = 1;", "") is None

    def test_generate_statements(self):
        assert generate_wait_for_url("/home") == "await page.waitForURL('/home')"
        assert generate_wait_for_url("/home", timeout=5000) == "await page.waitForURL('/home', { timeout: 5000 })"
        assert generate_wait_for_url(".*home.*") == "await page.waitForURL(/.*home.*/)"
        assert generate_to_have_url("/done") == "await expect(page).toHaveURL('/done')"
        assert generate_to_have_url(".*checkout.*") == "await expect(page).toHaveURL(/.*checkout.*/)"

    def test_glob_becomes_regex(self):
        assert generate_wait_for_url("/dashboard*") == r"await page.waitForURL(/\/dashboard[^\/]*/)"
        assert generate_to_have_url("**/dashboard") == r"await expect(page).toHaveURL(/.*\/dashboard/)"
        assert generate_to_have_url("**/orders/*.html") == r"await expect(page).toHaveURL(/.*\/orders\/[^\/]*\.html/)"

    def test_regex_slashes_are_escaped(self):
        assert generate_to_have_url(r"^https://shop\.test/cart$") == r"await expect(page).toHaveURL(/^https:\/\/shop\.test\/cart$/)"
        assert generate_wait_for_url(r".*\/home") == r"await page.waitForURL(/.*\/home/)"

    def test_plain_url_is_quoted(self):
        assert generate_to_have_url("/search?q=o'neil") == r"await expect(page).toHaveURL('/search?q=o\'neil')"

    def test_has_navigation_wait(self):
        assert has_navigation_wait("await page.waitForURL('/x')") is True
        assert has_navigation_wait("await expect(page).toHaveURL('/x')") is True
        assert has_navigation_wait("await page.waitForLoadState()") is True
        assert has_navigation_wait(CHECKOUT) is False


class TestApplyNavigationFix:
    """Test cases for apply_navigation_fix()."""

    def test_inserts_assertion_for_url_from_error(self):
        result = apply_navigation_fix(CHECKOUT, 5, "Expected URL to match '/checkout'")
        lines = result.code.split("\n")

        assert result.applied is True
        assert lines[5] == "  await expect(page).toHaveURL('/checkout')"
        assert len(lines) == len(CHECKOUT.split("\n")) + 1
        assert result.description == "Added toHaveURL assertion for '/checkout'"
        assert result.confidence == 0.7

    def test_falls_back_to_goto_url(self):
        result = apply_navigation_fix(CHECKOUT, 5, "navigation failed")

        assert "  await expect(page).toHaveURL('/cart')" in result.code.split("\n")

    def test_expected_url_overrides_inference(self):
        result = apply_navigation_fix(CHECKOUT, 5, "Expected URL to match '/checkout'", expected_url="/thanks")

        assert "toHaveURL('/thanks')" in result.code

    def test_load_state_fallback(self):
        code = "test('x', async ({ page }) => {\n  await page.getByText('Next').click();\n});"
        result = apply_navigation_fix(code, 2, "navigation failed")

        assert result.applied is True
        assert result.code.split("\n")[2] == "  await page.waitForLoadState('networkidle')"
        assert result.confidence == 0.5
        assert result.description == "Added waitForLoadState as fallback"

    def test_existing_wait_nearby(self):
        """A wait within the surrounding lines blocks a duplicate."""
        lines = CHECKOUT.split("\n")
        lines.insert(5, "  await page.waitForURL('/checkout');")
        code = "\n".join(lines)

        result = apply_navigation_fix(code, 5, "Expected URL to match '/checkout'")

        assert result.applied is False
        assert result.code == code
        assert result.description == "Navigation wait already exists in context"

    def test_existing_wait_far_away_does_not_block(self):
        lines = [
            "test('x', async ({ page }) => {",
            "  await page.waitForURL('/start');",
            *[f"  await page.getByText('Step {i}').click();" for i in range(6)],
            "});",
        ]
        result = apply_navigation_fix("\n".join(lines), 8, "Expected URL to match '/end'")

        assert result.applied is True
        assert result.code.split("\n")[8] == "  await expect(page).toHaveURL('/end')"

    def test_invalid_line_number(self):
        assert apply_navigation_fix(CHECKOUT, 0, "Expected URL to match '/x'").description == "Invalid line number"
        assert apply_navigation_fix(CHECKOUT, 99).description == "Invalid line number"


class TestGotoAndClick:
    """Test cases for goto awaits and waits after clicks."""

    def test_fix_missing_goto_await(self):
        result = fix_missing_goto_await("  page.goto('/x');\n  await page.goto('/y');")

        assert result.applied is True
        assert result.code == "  await page.goto('/x');\n  await page.goto('/y');"
        assert result.fix_count == 1
        assert result.description == "Added missing await to page.goto"

    def test_goto_already_awaited(self):
        result = fix_missing_goto_await("  await page.goto('/x');")

        assert result.applied is False
        assert result.description == "No missing await on goto found"

    def test_wait_after_click_defaults_to_any_url(self):
        result = add_navigation_wait_after_click(CHECKOUT, 5)

        assert result.code.split("\n")[5] == "  await expect(page).toHaveURL(/.*/)"
