"""Timing fixes: missing awaits, web-first assertions and bounded timeouts."""

import math
import re

from ...models import FixResult

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_MAX_TIMEOUT_MS = 30_000

_AWAIT_BEFORE = re.compile(r"\bawait\s+$")
_AWAIT_LOOKBACK = 64

# Each pattern matches the start of a call that needs a leading `await`.
MISSING_AWAIT_PATTERNS: tuple[re.Pattern, ...] = (
    # Playwright page actions
    re.compile(
        r"(?<![\w$.])page\.(?:click|fill|type|check|uncheck|selectOption|hover|focus|press"
        r"|dblclick|dragTo)\s*\("
    ),
    # Assertions on expect(...)
    re.compile(
        r"(?<![\w$.])expect\s*\((?:[^()]|\([^()]*\))+\)\.(?:toBeVisible|toBeHidden|toHaveText"
        r"|toContainText|toHaveValue|toHaveURL|toHaveTitle)\s*\("
    ),
    # Actions on a locator variable
    re.compile(r"(?<![\w$.])[a-zA-Z_$][a-zA-Z0-9_$]*\.(?:click|fill|type|check|hover|press)\s*\("),
)

_READ_THEN_ASSERT = r"^([ \t]*)const\s+(\w+)\s*=\s*await\s+(\w+)\.{method}\s*\(\s*\)[ \t]*;?[ \t]*\n[ \t]*"

WEB_FIRST_REWRITES: tuple[tuple[re.Pattern, str], ...] = (
    (
        re.compile(
            _READ_THEN_ASSERT.format(method="textContent")
            + r"""expect\s*\(\s*\2\s*\)\.toBe\s*\(\s*(['"][^'"]+['"])\s*\)""",
            re.MULTILINE,
        ),
        "toHaveText",
    ),
    (
        re.compile(
            _READ_THEN_ASSERT.format(method="innerText")
            + r"""expect\s*\(\s*\2\s*\)\.toBe\s*\(\s*(['"][^'"]+['"])\s*\)""",
            re.MULTILINE,
        ),
        "toHaveText",
    ),
    (
        re.compile(
            _READ_THEN_ASSERT.format(method="isVisible")
            + r"expect\s*\(\s*\2\s*\)\.toBe\s*\(\s*true\s*\)",
            re.MULTILINE,
        ),
        "toBeVisible",
    ),
    (
        re.compile(
            _READ_THEN_ASSERT.format(method="isHidden")
            + r"expect\s*\(\s*\2\s*\)\.toBe\s*\(\s*true\s*\)",
            re.MULTILINE,
        ),
        "toBeHidden",
    ),
)

_TIMEOUT_IN_LINE = re.compile(r"\btimeout\s*:", re.IGNORECASE)
_TIMEOUT_IN_ERROR = re.compile(r"timeout\s+(\d+)ms", re.IGNORECASE)
_ACTIONS = r"click|fill|press|type|hover|focus|check|uncheck"
_ACTION_NO_ARGS = re.compile(rf"\.({_ACTIONS})\s*\(\s*\)")
_ACTION_STRING_ARG = re.compile(rf"""\.({_ACTIONS})\s*\(\s*(['"][^'"]*['"])\s*\)""")
_ACTION_OPTIONS_ARG = re.compile(rf"\.({_ACTIONS})\s*\(\s*\{{([^}}]*)\}}\s*\)")
_ASSERTION_NO_ARGS = re.compile(
    r"\.(toBeVisible|toBeHidden|toHaveText|toContainText|toHaveValue)\s*\(\s*\)"
)


def preceded_by_await(match: re.Match) -> bool:
    """Whether the text just before a match ends with `await `."""
    start = match.start()
    before = match.string[max(0, start - _AWAIT_LOOKBACK):start]
    return _AWAIT_BEFORE.search(before) is not None


def extract_timeout_from_error(error_message: str) -> int | None:
    if match := _TIMEOUT_IN_ERROR.search(error_message or ""):
        return int(match.group(1))
    return None


def suggest_timeout_increase(current_timeout: int, max_timeout: int = DEFAULT_MAX_TIMEOUT_MS) -> int:
    """1.5x the current timeout, rounded half up, never above the cap."""
    return min(math.floor(current_timeout * 1.5 + 0.5), max_timeout)


def fix_missing_await(code: str) -> FixResult:
    """Insert `await` before action and assertion calls that lack one."""
    count = 0

    def insert(match: re.Match) -> str:
        nonlocal count
        if preceded_by_await(match):
            return match.group(0)
        count += 1
        return f"await {match.group(0)}"

    modified = code
    for pattern in MISSING_AWAIT_PATTERNS:
        modified = pattern.sub(insert, modified)

    if count == 0:
        return FixResult(applied=False, code=code, description="No missing await found")

    return FixResult(
        applied=True,
        code=modified,
        description=f"Added {count} missing await statement(s)",
        confidence=0.9,
        fix_count=count,
    )


def convert_to_web_first_assertion(code: str) -> FixResult:
    """Collapse read-then-assert pairs into one auto-retrying assertion."""
    count = 0
    modified = code

    for pattern, matcher in WEB_FIRST_REWRITES:

        def rewrite(match: re.Match, matcher: str = matcher) -> str:
            nonlocal count
            count += 1
            indent, _, locator = match.group(1), match.group(2), match.group(3)
            expected = match.group(4) if match.re.groups >= 4 else ""
            return f"{indent}await expect({locator}).{matcher}({expected})"

        modified = pattern.sub(rewrite, modified)

    if count == 0:
        return FixResult(applied=False, code=code, description="No conversion needed")

    return FixResult(
        applied=True,
        code=modified,
        description="Converted to web-first assertion",
        confidence=0.85,
        fix_count=count,
    )


def add_timeout(code: str, line_number: int, timeout: int) -> FixResult:
    """Add an explicit `{ timeout }` option to the action on one line."""
    lines = code.split("\n")
    if line_number < 1 or line_number > len(lines):
        return FixResult(applied=False, code=code, description="Invalid line number")

    line = lines[line_number - 1]
    if _TIMEOUT_IN_LINE.search(line):
        return FixResult(applied=False, code=code, description="Timeout already specified")

    def merge_options(match: re.Match) -> str:
        options = match.group(2).strip()
        if "timeout" in options:
            return match.group(0)
        if not options:
            return f".{match.group(1)}({{ timeout: {timeout} }})"
        return f".{match.group(1)}({{ {options}, timeout: {timeout} }})"

    modified = _ACTION_NO_ARGS.sub(lambda m: f".{m.group(1)}({{ timeout: {timeout} }})", line)
    modified = _ACTION_STRING_ARG.sub(
        lambda m: f".{m.group(1)}({m.group(2)}, {{ timeout: {timeout} }})", modified
    )
    modified = _ACTION_OPTIONS_ARG.sub(merge_options, modified)
    modified = _ASSERTION_NO_ARGS.sub(lambda m: f".{m.group(1)}({{ timeout: {timeout} }})", modified)

    if modified == line:
        return FixResult(applied=False, code=code, description="Unable to add timeout")

    lines[line_number - 1] = modified
    return FixResult(
        applied=True,
        code="\n".join(lines),
        description=f"Added timeout: {timeout}ms",
        confidence=0.6,
        fix_count=1,
    )


def apply_timing_fix(
    code: str,
    line_number: int,
    error_message: str = "",
    current_timeout: int | None = None,
    max_timeout: int = DEFAULT_MAX_TIMEOUT_MS,
) -> FixResult:
    """Prefer structural fixes; raise the timeout only as a last resort."""
    await_fix = fix_missing_await(code)
    if await_fix.applied:
        return await_fix

    web_first_fix = convert_to_web_first_assertion(code)
    if web_first_fix.applied:
        return web_first_fix

    timeout = current_timeout or extract_timeout_from_error(error_message) or DEFAULT_TIMEOUT_MS
    return add_timeout(code, line_number, suggest_timeout_increase(timeout, max_timeout))


def _retry_options(timeout: int | None, intervals: list[int] | None) -> str:
    parts = []
    if timeout:
        parts.append(f"timeout: {timeout}")
    if intervals:
        parts.append(f"intervals: [{', '.join(str(i) for i in intervals)}]")
    return f"{{ {', '.join(parts)} }}" if parts else ""


def wrap_with_expect_to_pass(
    code: str,
    line_start: int,
    line_end: int,
    timeout: int | None = None,
    intervals: list[int] | None = None,
) -> FixResult:
    """Wrap a block of lines in `await expect(async () => {...}).toPass()`."""
    lines = code.split("\n")
    if line_start < 1 or line_end > len(lines) or line_start > line_end:
        return FixResult(applied=False, code=code, description="Invalid line range")

    block = lines[line_start - 1:line_end]
    indentation = re.match(r"^(\s*)", block[0]).group(1)
    wrapped = [
        f"{indentation}await expect(async () => {{",
        *(f"  {line}" for line in block),
        f"{indentation}}}).toPass({_retry_options(timeout, intervals)})",
    ]
    lines[line_start - 1:line_end] = wrapped

    return FixResult(
        applied=True,
        code="\n".join(lines),
        description="Wrapped with expect.toPass for retry behavior",
        confidence=0.7,
        fix_count=1,
    )


def wrap_with_expect_poll(
    getter: str,
    expected: str,
    timeout: int | None = None,
    intervals: list[int] | None = None,
) -> str:
    """Build an `expect.poll` statement for a dynamic value."""
    options = _retry_options(timeout, intervals)
    suffix = f", {options}" if options else ""
    return f"await expect.poll(async () => {getter}{suffix}).toBe({expected})"
