"""Data-isolation fixes: namespace hard-coded test data with a per-run id."""

import re
import secrets
import time

from ...models import FixResult

RUN_ID_DECLARATION = "const runId = `${Date.now()}-${Math.random().toString(36).slice(2, 8)}`;"

_TEST_FUNCTION = re.compile(
    r"""test\s*\(\s*['"`][^'"`]+['"`]\s*,\s*async\s*\(\s*\{[^}]*\}\s*\)\s*=>\s*\{"""
)
_DESCRIBE_BLOCK = re.compile(r"""test\.describe\s*\(\s*['"`][^'"`]+['"`]\s*,\s*\(\s*\)\s*=>\s*\{""")
_QUOTED_EMAIL = re.compile(r"""(['"`])([\w.+-]+@[\w.-]+\.\w{2,})(['"`])""")
_FILL_PREFIX = re.compile(r"\.fill\s*\([^,]*$")
_TEST_NAME = re.compile(r"""(['"`])(Test\s*(?:User|Name|Account|Client|Customer))\s*(['"`])""", re.IGNORECASE)
_FILL_TEST_VALUE = re.compile(r"""(\.fill\s*\([^,]+,\s*)(['"`])(test[-_]?\w+)\2(\s*\))""", re.IGNORECASE)
_FILL_VALUE = re.compile(r"""\.fill\s*\([^,]+,\s*['"`]([^'"`]+)['"`]\s*\)""")
_ISOLATION_MARKERS = (
    re.compile(r"\brunId\b", re.IGNORECASE),
    re.compile(r"testInfo\.testId", re.IGNORECASE),
    re.compile(r"Date\.now\(\)|Math\.random\(\)|crypto|uuid", re.IGNORECASE),
)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    digits = ""
    while True:
        value, remainder = divmod(value, 36)
        digits = _BASE36[remainder] + digits
        if value == 0:
            return digits


def generate_run_id() -> str:
    """Millisecond timestamp in base 36 plus 8 random hex characters."""
    return f"{_to_base36(int(time.time() * 1000))}-{secrets.token_hex(4)}"


def has_data_isolation(code: str) -> bool:
    return any(p.search(code) for p in _ISOLATION_MARKERS)


def namespace_email(email: str, run_id: str) -> str:
    local, _, domain = email.partition("@")
    if not domain:
        return f"{email}-{run_id}"
    return f"{local}+{run_id}@{domain}"


def namespace_name(name: str, run_id: str) -> str:
    return f"{name} {run_id}"


def add_run_id_variable(code: str) -> FixResult:
    """Declare `runId` at the top of the first test body."""
    if re.search(r"\bconst\s+runId\b", code):
        return FixResult(applied=False, code=code, description="runId already defined")

    match = _TEST_FUNCTION.search(code)
    if not match:
        return FixResult(applied=False, code=code, description="Unable to find test function")

    insert_at = match.end()
    modified = f"{code[:insert_at]}\n    {RUN_ID_DECLARATION}{code[insert_at:]}"
    return FixResult(
        applied=True,
        code=modified,
        description="Added runId variable for data isolation",
        confidence=0.8,
        fix_count=1,
    )


def replace_hardcoded_email(code: str) -> FixResult:
    """Namespace emails typed into fields with `+${runId}`."""
    if "`" in code and "${runId}" in code:
        return FixResult(applied=False, code=code, description="No hardcoded email to namespace")

    count = 0

    def namespace(match: re.Match) -> str:
        nonlocal count
        before = match.string[max(0, match.start() - 50):match.start()]
        if not _FILL_PREFIX.search(before):
            return match.group(0)
        count += 1
        local, _, domain = match.group(2).partition("@")
        return f"`{local}+${{runId}}@{domain}`"

    modified = _QUOTED_EMAIL.sub(namespace, code)
    if count == 0:
        return FixResult(applied=False, code=code, description="No hardcoded email to namespace")

    return FixResult(
        applied=True,
        code=modified,
        description="Namespaced email with runId",
        confidence=0.7,
        fix_count=count,
    )


def replace_hardcoded_test_data(code: str) -> FixResult:
    """Namespace placeholder names and `test-*` values typed into fields."""
    count = 0

    def name(match: re.Match) -> str:
        nonlocal count
        count += 1
        return f"`{match.group(2)} ${{runId}}`"

    def fill_value(match: re.Match) -> str:
        nonlocal count
        count += 1
        return f"{match.group(1)}`{match.group(3)}-${{runId}}`{match.group(4)}"

    modified = _TEST_NAME.sub(name, code)
    modified = _FILL_TEST_VALUE.sub(fill_value, modified)

    if count == 0:
        return FixResult(applied=False, code=code, description="No hardcoded test data found")

    return FixResult(
        applied=True,
        code=modified,
        description="Namespaced test data with runId",
        confidence=0.6,
        fix_count=count,
    )


def apply_data_fix(code: str) -> FixResult:
    """Add a runId and namespace the test's hard-coded data with it."""
    if has_data_isolation(code):
        return FixResult(applied=False, code=code, description="Data isolation already present")

    result = add_run_id_variable(code)
    if not result.applied:
        return result

    modified = result.code
    fix_count = 1
    for fix in (replace_hardcoded_email, replace_hardcoded_test_data):
        step = fix(modified)
        if step.applied:
            modified = step.code
            fix_count += 1

    return FixResult(
        applied=True,
        code=modified,
        description=f"Applied {fix_count} data isolation fix(es)",
        confidence=0.7,
        fix_count=fix_count,
    )


def add_cleanup_hook(code: str, cleanup_code: str) -> FixResult:
    """Insert a `test.afterEach` hook at the top of the first describe block."""
    if re.search(r"test\.afterEach\s*\(", code):
        return FixResult(applied=False, code=code, description="afterEach hook already exists")

    match = _DESCRIBE_BLOCK.search(code)
    if not match:
        return FixResult(
            applied=False,
            code=code,
            description="Unable to find suitable location for cleanup hook",
        )

    hook = f"\n  test.afterEach(async () => {{\n    {cleanup_code}\n  }});\n"
    return FixResult(
        applied=True,
        code=f"{code[:match.end()]}{hook}{code[match.end():]}",
        description="Added afterEach cleanup hook",
        confidence=0.7,
        fix_count=1,
    )


def extract_test_data_patterns(code: str) -> list[str]:
    """Literal values filled into fields, then literal emails."""
    patterns = [m.group(1) for m in _FILL_VALUE.finditer(code)]
    patterns.extend(m.group(2) for m in _QUOTED_EMAIL.finditer(code))
    return patterns
