"""Healing logger: persist every attempt of a session as a JSON heal log."""

import json
import logging
import os
import tempfile
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path

from ..models import (
    AttemptResult,
    FixType,
    HealingAttempt,
    HealingLog,
    HealingLogStatus,
    HealingSummary,
    utc_now,
)

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".heal-log.json"
LOCK_SUFFIX = ".heal-lock"


def heal_log_path(output_dir: Path | str, journey_id: str) -> Path:
    return Path(output_dir) / f"{journey_id}{LOG_SUFFIX}"


@contextmanager
def session_lock(output_dir: Path | str, journey_id: str):
    """Advisory lock held by one healing session per journey and output dir."""
    path = Path(output_dir) / f"{journey_id}{LOCK_SUFFIX}"
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        raise RuntimeError(
            f"A healing session for {journey_id} is already running (lock file {path})"
        ) from None

    try:
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        yield path
    finally:
        path.unlink(missing_ok=True)


class HealingLogger:
    """Owns the heal log of one session and rewrites it after every change."""

    def __init__(self, journey_id: str, output_dir: Path | str, max_attempts: int = 3):
        self.output_path = heal_log_path(output_dir, journey_id)
        self.log = HealingLog(
            journey_id=journey_id,
            session_start=utc_now(),
            max_attempts=max_attempts,
        )
        self.save()

    @property
    def finalized(self) -> bool:
        return self.log.status != HealingLogStatus.IN_PROGRESS

    def log_attempt(self, attempt: HealingAttempt) -> None:
        """Append an attempt, stamped with the current time, and save."""
        if self.finalized:
            raise RuntimeError(f"Healing log for {self.log.journey_id} is already finalized")
        if self.is_max_attempts_reached():
            raise RuntimeError(
                f"Healing log for {self.log.journey_id} already has "
                f"{self.log.max_attempts} attempts"
            )

        self.log.attempts.append(replace(attempt, timestamp=utc_now()))
        self.save()

    def mark_healed(self) -> None:
        self._finalize(HealingLogStatus.HEALED, None)

    def mark_failed(self, recommendation: str | None = None) -> None:
        self._finalize(HealingLogStatus.FAILED, recommendation)

    def mark_exhausted(self, recommendation: str | None = None) -> None:
        self._finalize(HealingLogStatus.EXHAUSTED, recommendation)

    def _finalize(self, status: HealingLogStatus, recommendation: str | None) -> None:
        if self.finalized:
            raise RuntimeError(
                f"Healing log for {self.log.journey_id} is already {self.log.status.value}"
            )

        self.log.status = status
        self.log.session_end = utc_now()
        self.log.summary = self.calculate_summary()
        if recommendation:
            self.log.summary.recommendation = recommendation
        self.save()
        logger.info("Healing session for %s ended: %s", self.log.journey_id, status.value)

    def calculate_summary(self) -> HealingSummary:
        attempts = self.log.attempts
        fix_types: list[FixType] = []
        for a in attempts:
            if a.fix_type not in fix_types:
                fix_types.append(a.fix_type)

        return HealingSummary(
            total_attempts=len(attempts),
            successful_fixes=sum(1 for a in attempts if a.result == AttemptResult.PASS),
            failed_attempts=sum(
                1 for a in attempts if a.result in (AttemptResult.FAIL, AttemptResult.ERROR)
            ),
            total_duration=sum(a.duration for a in attempts),
            fix_types_attempted=fix_types,
        )

    def get_last_attempt(self) -> HealingAttempt | None:
        return self.log.attempts[-1] if self.log.attempts else None

    def get_attempt_count(self) -> int:
        return len(self.log.attempts)

    def is_max_attempts_reached(self) -> bool:
        return len(self.log.attempts) >= self.log.max_attempts

    def save(self) -> None:
        """Write the whole log atomically."""
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.output_path.parent,
            prefix=f".{self.output_path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.log.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.output_path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise


def load_healing_log(path: Path | str) -> HealingLog | None:
    """Read a heal log. Returns None if missing or malformed."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return HealingLog.from_dict(json.load(f))
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning("Could not load heal log %s: %s", path, e)
        return None


def format_healing_log(log: HealingLog) -> str:
    """Render a heal log as markdown."""
    lines = [
        f"# Healing Log: {log.journey_id}",
        "",
        f"Status: {log.status.value.upper()}",
        f"Started: {log.session_start}",
    ]
    if log.session_end:
        lines.append(f"Ended: {log.session_end}")
    lines.extend(["", "## Attempts", ""])

    for attempt in log.attempts:
        icon = "✅" if attempt.result == AttemptResult.PASS else "❌"
        lines.extend([
            f"### Attempt {attempt.attempt} {icon}",
            "",
            f"- **Fix Type**: {attempt.fix_type.value}",
            f"- **Failure Type**: {attempt.failure_type.value}",
            f"- **File**: {attempt.file}",
            f"- **Duration**: {attempt.duration}ms",
            f"- **Result**: {attempt.result.value}",
        ])
        if attempt.error_message:
            lines.append(f"- **Error**: {attempt.error_message}")
        if attempt.change:
            lines.append(f"- **Change**: {attempt.change}")
        if attempt.evidence:
            lines.append(f"- **Evidence**: {', '.join(attempt.evidence)}")
        lines.append("")

    if log.summary:
        s = log.summary
        lines.extend([
            "## Summary",
            "",
            f"- Total Attempts: {s.total_attempts}",
            f"- Successful Fixes: {s.successful_fixes}",
            f"- Failed Attempts: {s.failed_attempts}",
            f"- Total Duration: {s.total_duration}ms",
            f"- Fix Types Tried: {', '.join(f.value for f in s.fix_types_attempted)}",
        ])
        if s.recommendation:
            lines.extend(["", f"**Recommendation**: {s.recommendation}"])

    return "\n".join(lines)


@dataclass
class HealingReport:
    """Short outcome of one heal log."""

    success: bool
    attempt_count: int
    fix_applied: FixType | None = None
    recommendation: str | None = None


def create_healing_report(log: HealingLog) -> HealingReport:
    passed = next((a for a in log.attempts if a.result == AttemptResult.PASS), None)
    return HealingReport(
        success=log.status == HealingLogStatus.HEALED,
        attempt_count=len(log.attempts),
        fix_applied=passed.fix_type if passed else None,
        recommendation=log.summary.recommendation if log.summary else None,
    )


@dataclass
class HealingAggregate:
    """Statistics across many heal logs."""

    total_journeys: int
    healed: int
    failed: int
    exhausted: int
    total_attempts: int
    most_common_fixes: list[tuple[str, int]] = field(default_factory=list)
    most_common_failures: list[tuple[str, int]] = field(default_factory=list)


def aggregate_healing_logs(logs: list[HealingLog]) -> HealingAggregate:
    """Outcome counts plus fix and failure types ranked by frequency."""
    fixes: Counter[str] = Counter()
    failures: Counter[str] = Counter()
    for log in logs:
        for attempt in log.attempts:
            fixes[attempt.fix_type.value] += 1
            failures[attempt.failure_type.value] += 1

    return HealingAggregate(
        total_journeys=len(logs),
        healed=sum(1 for log in logs if log.status == HealingLogStatus.HEALED),
        failed=sum(1 for log in logs if log.status == HealingLogStatus.FAILED),
        exhausted=sum(1 for log in logs if log.status == HealingLogStatus.EXHAUSTED),
        total_attempts=sum(fixes.values()),
        most_common_fixes=fixes.most_common(),
        most_common_failures=failures.most_common(),
    )
