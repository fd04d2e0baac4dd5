"""Selector fixes: swap brittle CSS locators for role, label or test-id locators."""

import re
from dataclasses import dataclass

from ...models import AriaInfo, FixResult

# page.locator('.class') / page.locator('#id'), page.locator('[attr]'), page.locator('tag.class')
CSS_SELECTOR_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"""page\.locator\s*\(\s*['"`]([.#][^'"`]+)['"`]\s*\)"""),
    re.compile(r"""page\.locator\s*\(\s*['"`](\[[^\]]+\])['"`]\s*\)"""),
    re.compile(r"""page\.locator\s*\(\s*['"`]([a-z]+[.#][^'"`]+)['"`]\s*\)"""),
)


@dataclass(frozen=True)
class RoleHint:
    role: str
    name_hint: str | None = None


# Checked in order; the first keyword contained in the selector wins.
UI_PATTERN_TO_ROLE: dict[str, RoleHint] = {
    "button": RoleHint("button"),
    "btn": RoleHint("button"),
    "submit": RoleHint("button", name_hint="submit"),
    "input": RoleHint("textbox"),
    "textbox": RoleHint("textbox"),
    "checkbox": RoleHint("checkbox"),
    "radio": RoleHint("radio"),
    "select": RoleHint("combobox"),
    "dropdown": RoleHint("combobox"),
    "link": RoleHint("link"),
    "heading": RoleHint("heading"),
    "h1": RoleHint("heading"),
    "h2": RoleHint("heading"),
    "h3": RoleHint("heading"),
    "dialog": RoleHint("dialog"),
    "modal": RoleHint("dialog"),
    "alert": RoleHint("alert"),
    "tab": RoleHint("tab"),
    "menu": RoleHint("menu"),
    "menuitem": RoleHint("menuitem"),
    "table": RoleHint("table"),
    "row": RoleHint("row"),
    "cell": RoleHint("cell"),
    "grid": RoleHint("grid"),
    "list": RoleHint("list"),
    "listitem": RoleHint("listitem"),
    "img": RoleHint("img"),
    "image": RoleHint("img"),
    "nav": RoleHint("navigation"),
    "navigation": RoleHint("navigation"),
    "search": RoleHint("search"),
    "main": RoleHint("main"),
    "banner": RoleHint("banner"),
    "footer": RoleHint("contentinfo"),
}

_ATTR_NAME = re.compile(r"""\[(?:aria-label|title|alt|name)=['"]([^'"]+)['"]\]""")
_CLASS_NAME = re.compile(r"\.([a-zA-Z][-a-zA-Z0-9_]*)")

_ROLE_WITH_NAME = re.compile(
    r"""(?<![\w$])getByRole\s*\(\s*['"](\w+)['"]\s*,\s*\{\s*name:\s*['"]([^'"]+)['"]\s*\}\s*\)"""
)
_LABEL_ONLY = re.compile(r"""(?<![\w$])getByLabel\s*\(\s*['"]([^'"]+)['"]\s*\)""")
_TEXT_ONLY = re.compile(r"""(?<![\w$])getByText\s*\(\s*['"]([^'"]+)['"]\s*\)""")


def quote_js(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def extract_css_selector(code: str) -> str | None:
    """First brittle CSS selector passed to page.locator()."""
    for pattern in CSS_SELECTOR_PATTERNS:
        if match := pattern.search(code):
            return match.group(1)
    return None


def contains_css_selector(code: str) -> bool:
    return any(p.search(code) for p in CSS_SELECTOR_PATTERNS)


def infer_role_from_selector(selector: str) -> RoleHint | None:
    lowered = selector.lower()
    for keyword, hint in UI_PATTERN_TO_ROLE.items():
        if keyword in lowered:
            return hint
    return None


def extract_name_from_selector(selector: str) -> str | None:
    """Readable name from an accessibility attribute or a descriptive class."""
    if match := _ATTR_NAME.search(selector):
        return match.group(1)

    if match := _CLASS_NAME.search(selector):
        words = [w for w in re.split(r"[-_]", match.group(1)) if w]
        if words and len(words[0]) > 2:
            return " ".join(words)

    return None


def generate_role_locator(
    role: str,
    name: str | None = None,
    exact: bool = False,
    level: int | None = None,
) -> str:
    options = []
    if name:
        options.append(f"name: {quote_js(name)}")
        if exact:
            options.append("exact: true")
    if level is not None and role == "heading":
        options.append(f"level: {level}")

    if options:
        return f"page.getByRole({quote_js(role)}, {{ {', '.join(options)} }})"
    return f"page.getByRole({quote_js(role)})"


def generate_label_locator(label: str, exact: bool = False) -> str:
    if exact:
        return f"page.getByLabel({quote_js(label)}, {{ exact: true }})"
    return f"page.getByLabel({quote_js(label)})"


def generate_text_locator(text: str, exact: bool = False) -> str:
    if exact:
        return f"page.getByText({quote_js(text)}, {{ exact: true }})"
    return f"page.getByText({quote_js(text)})"


def generate_test_id_locator(test_id: str) -> str:
    return f"page.getByTestId({quote_js(test_id)})"


def _replace_css_locators(code: str, new_locator: str) -> str:
    for pattern in CSS_SELECTOR_PATTERNS:
        code = pattern.sub(lambda _m: new_locator, code)
    return code


def _locator_kind(locator: str) -> str:
    return locator.split("(")[0]


def apply_selector_fix(code: str, aria_info: AriaInfo | None = None) -> FixResult:
    """Refine CSS locators, preferring accessibility metadata when supplied."""
    if aria_info is not None:
        return _apply_with_aria(code, aria_info)

    css_selector = extract_css_selector(code)
    if css_selector is None:
        return FixResult(applied=False, code=code, description="No CSS selector found to refine")

    return _apply_from_css(code, css_selector)


def _apply_with_aria(code: str, aria_info: AriaInfo) -> FixResult:
    if aria_info.test_id:
        new_locator, confidence = generate_test_id_locator(aria_info.test_id), 1.0
    elif aria_info.role and aria_info.name:
        new_locator = generate_role_locator(
            aria_info.role, aria_info.name, exact=True, level=aria_info.level
        )
        confidence = 0.9
    elif aria_info.label:
        new_locator, confidence = generate_label_locator(aria_info.label, exact=True), 0.85
    elif aria_info.role:
        new_locator, confidence = generate_role_locator(aria_info.role), 0.6
    else:
        return FixResult(
            applied=False,
            code=code,
            description="Unable to generate locator from ARIA info",
        )

    modified = _replace_css_locators(code, new_locator)
    if modified == code:
        return FixResult(applied=False, code=code, description="No CSS selector found to refine")

    return FixResult(
        applied=True,
        code=modified,
        description=f"Replaced CSS selector with {_locator_kind(new_locator)}",
        confidence=confidence,
        fix_count=1,
        new_locator=new_locator,
    )


def _apply_from_css(code: str, css_selector: str) -> FixResult:
    role_hint = infer_role_from_selector(css_selector)
    name = extract_name_from_selector(css_selector)

    if role_hint and name:
        new_locator, confidence = generate_role_locator(role_hint.role, name), 0.6
    elif role_hint:
        new_locator, confidence = generate_role_locator(role_hint.role), 0.4
    elif name:
        new_locator, confidence = generate_text_locator(name), 0.3
    else:
        return FixResult(
            applied=False,
            code=code,
            description="Unable to infer semantic locator from CSS selector",
        )

    modified = _replace_css_locators(code, new_locator)
    return FixResult(
        applied=True,
        code=modified,
        description=f"Inferred {_locator_kind(new_locator)} from CSS selector pattern",
        confidence=confidence,
        fix_count=1,
        new_locator=new_locator,
    )


def add_exact_to_locator(code: str) -> FixResult:
    """Add `exact: true` to role-with-name, label and text locators."""
    count = 0

    def role(m: re.Match) -> str:
        nonlocal count
        count += 1
        return f"getByRole({quote_js(m.group(1))}, {{ name: {quote_js(m.group(2))}, exact: true }})"

    def label(m: re.Match) -> str:
        nonlocal count
        count += 1
        return f"getByLabel({quote_js(m.group(1))}, {{ exact: true }})"

    def text(m: re.Match) -> str:
        nonlocal count
        count += 1
        return f"getByText({quote_js(m.group(1))}, {{ exact: true }})"

    modified = _ROLE_WITH_NAME.sub(role, code)
    modified = _LABEL_ONLY.sub(label, modified)
    modified = _TEXT_ONLY.sub(text, modified)

    if count == 0:
        return FixResult(applied=False, code=code, description="No locator found to add exact option")

    return FixResult(
        applied=True,
        code=modified,
        description="Added exact: true to locator",
        confidence=0.8,
        fix_count=count,
    )
