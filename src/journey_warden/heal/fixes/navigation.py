"""Navigation fixes: wait for the URL to settle after navigating."""

import re

from ...models import FixResult
from .selector import quote_js
from .timing import preceded_by_await

EXISTING_WAIT_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"await\s+page\.waitForURL"),
    re.compile(r"await\s+expect\s*\(\s*page\s*\)\.toHaveURL"),
    re.compile(r"await\s+page\.waitForNavigation"),
    re.compile(r"await\s+page\.waitForLoadState"),
)

_URL_IN_ERROR: tuple[re.Pattern, ...] = (
    re.compile(r"""Expected\s+URL\s+to\s+match\s+['"]([^'"]+)['"]""", re.IGNORECASE),
    re.compile(r"""expected\s+['"]([^'"]+)['"]\s+to\s+match""", re.IGNORECASE),
    re.compile(r"""waiting\s+for\s+URL\s+['"]([^'"]+)['"]""", re.IGNORECASE),
)
_GOTO_URL = re.compile(r"""page\.goto\s*\(\s*['"`]([^'"`]+)['"`]""")
_GOTO_CALL = re.compile(r"\bpage\.goto\s*\(")
_INDENT = re.compile(r"^(\s*)")
# Marks a URL pattern that is already a regex rather than a path or glob
_REGEX_MARKERS = re.compile(r"\\|\.\*|\.\+|^\^|\$$")
_UNESCAPED_SLASH = re.compile(r"(?<!\\)/")
_REGEX_SPECIAL = set(".+?^${}()|[]\\/")

LOAD_STATE_WAIT = "await page.waitForLoadState('networkidle')"


def has_navigation_wait(code: str) -> bool:
    return any(p.search(code) for p in EXISTING_WAIT_PATTERNS)


def extract_url_from_error(error_message: str) -> str | None:
    for pattern in _URL_IN_ERROR:
        if match := pattern.search(error_message or ""):
            return match.group(1)
    return None


def extract_url_from_goto(code: str) -> str | None:
    if match := _GOTO_URL.search(code):
        return match.group(1)
    return None


def infer_url_pattern(code: str, error_message: str) -> str | None:
    """URL the test expects: from the error first, else the first page.goto."""
    return extract_url_from_error(error_message) or extract_url_from_goto(code)


def _is_regex_pattern(url_pattern: str) -> bool:
    return bool(_REGEX_MARKERS.search(url_pattern))


def _is_glob_pattern(url_pattern: str) -> bool:
    return "*" in url_pattern and not _is_regex_pattern(url_pattern)


def glob_to_regex(glob: str) -> str:
    """Body of a JS regex literal matching a URL glob (`**` any, `*` one segment)."""
    out = []
    i = 0
    while i < len(glob):
        char = glob[i]
        if glob.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if char == "*":
            out.append(r"[^\/]*")
        elif char in _REGEX_SPECIAL:
            out.append("\\" + char)
        else:
            out.append(char)
        i += 1
    return "".join(out)


def url_argument(url_pattern: str) -> str:
    """JS expression for a URL matcher: regex literal for patterns, quoted string otherwise."""
    if _is_regex_pattern(url_pattern):
        escaped = _UNESCAPED_SLASH.sub(r"\\/", url_pattern)
        return f"/{escaped}/"
    if _is_glob_pattern(url_pattern):
        return f"/{glob_to_regex(url_pattern)}/"
    return quote_js(url_pattern)


def generate_wait_for_url(url_pattern: str, timeout: int | None = None) -> str:
    options = f", {{ timeout: {timeout} }}" if timeout else ""
    return f"await page.waitForURL({url_argument(url_pattern)}{options})"


def generate_to_have_url(url_pattern: str) -> str:
    return f"await expect(page).toHaveURL({url_argument(url_pattern)})"


def _wait_in_window(lines: list[str], line_number: int) -> bool:
    window = lines[max(0, line_number - 2):min(len(lines), line_number + 2)]
    return has_navigation_wait("\n".join(window))


def _insert_after(lines: list[str], line_number: int, statement: str) -> str:
    indentation = _INDENT.match(lines[line_number - 1]).group(1)
    lines.insert(line_number, f"{indentation}{statement}")
    return "\n".join(lines)


def insert_navigation_wait(code: str, line_number: int, url_pattern: str) -> FixResult:
    """Insert a toHaveURL assertion after a line, unless a wait is already nearby."""
    lines = code.split("\n")
    if line_number < 1 or line_number > len(lines):
        return FixResult(applied=False, code=code, description="Invalid line number")

    if _wait_in_window(lines, line_number):
        return FixResult(
            applied=False,
            code=code,
            description="Navigation wait already exists in context",
        )

    return FixResult(
        applied=True,
        code=_insert_after(lines, line_number, generate_to_have_url(url_pattern)),
        description=f"Added toHaveURL assertion for '{url_pattern}'",
        confidence=0.7,
        fix_count=1,
    )


def apply_load_state_wait(code: str, line_number: int) -> FixResult:
    """Fallback when no URL can be inferred: wait for the network to go idle."""
    lines = code.split("\n")
    if line_number < 1 or line_number > len(lines):
        return FixResult(applied=False, code=code, description="Invalid line number")

    if _wait_in_window(lines, line_number):
        return FixResult(
            applied=False,
            code=code,
            description="Navigation wait already exists in context",
        )

    return FixResult(
        applied=True,
        code=_insert_after(lines, line_number, LOAD_STATE_WAIT),
        description="Added waitForLoadState as fallback",
        confidence=0.5,
        fix_count=1,
    )


def apply_navigation_fix(
    code: str,
    line_number: int,
    error_message: str = "",
    expected_url: str | None = None,
) -> FixResult:
    url_pattern = expected_url or infer_url_pattern(code, error_message)
    if not url_pattern:
        return apply_load_state_wait(code, line_number)
    return insert_navigation_wait(code, line_number, url_pattern)


def fix_missing_goto_await(code: str) -> FixResult:
    """Add `await` to page.goto calls that lack one."""
    count = 0

    def insert(match: re.Match) -> str:
        nonlocal count
        if preceded_by_await(match):
            return match.group(0)
        count += 1
        return f"await {match.group(0)}"

    modified = _GOTO_CALL.sub(insert, code)
    if count == 0:
        return FixResult(applied=False, code=code, description="No missing await on goto found")

    return FixResult(
        applied=True,
        code=modified,
        description="Added missing await to page.goto",
        confidence=0.9,
        fix_count=count,
    )


def add_navigation_wait_after_click(
    code: str,
    click_line_number: int,
    expected_url: str | None = None,
) -> FixResult:
    return insert_navigation_wait(code, click_line_number, expected_url or ".*")
