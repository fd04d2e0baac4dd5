"""
Unit tests for the healing logger and heal-log helpers.
"""

import json

import pytest

from journey_warden.heal.logger import (
    HealingLogger,
    aggregate_healing_logs,
    create_healing_report,
    format_healing_log,
    heal_log_path,
    load_healing_log,
    session_lock,
)
from journey_warden.models import (
    AttemptResult,
    FailureCategory,
    FixType,
    HealingAttempt,
    HealingLogStatus,
)


def _attempt(number, fix_type=FixType.SELECTOR_REFINE, result=AttemptResult.FAIL, duration=100, **kwargs):
    return HealingAttempt(
        attempt=number,
        failure_type=FailureCategory.SELECTOR,
        fix_type=fix_type,
        file="tests/login.spec.ts",
        change="Replaced CSS selector with page.getByRole",
        result=result,
        duration=duration,
        timestamp="1970-01-01T00:00:00+00:00",
        **kwargs,
    )


class TestHealingLogger:
    """Test cases for HealingLogger."""

    def test_log_exists_from_session_start(self, heal_logs_dir):
        logger = HealingLogger("JRN-0001", heal_logs_dir, max_attempts=2)
        data = json.loads(logger.output_path.read_text())

        assert logger.output_path == heal_logs_dir / "JRN-0001.heal-log.json"
        assert data["journeyId"] == "JRN-0001"
        assert data["status"] == "in_progress"
        assert data["maxAttempts"] == 2
        assert data["attempts"] == []
        assert "sessionEnd" not in data

    def test_log_attempt_restamps_and_saves(self, heal_logs_dir):
        logger = HealingLogger("JRN-0001", heal_logs_dir)
        logger.log_attempt(_attempt(1, evidence=["results.json"]))

        data = json.loads(logger.output_path.read_text())
        attempt = data["attempts"][0]
        assert attempt["fixType"] == "selector-refine"
        assert attempt["failureType"] == "selector"
        assert attempt["evidence"] == ["results.json"]
        assert attempt["timestamp"] != "1970-01-01T00:00:00+00:00"
        assert logger.get_attempt_count() == 1
        assert logger.get_last_attempt().attempt == 1

    def test_exhausted_summary(self, heal_logs_dir):
        logger = HealingLogger("JRN-0001", heal_logs_dir, max_attempts=2)
        logger.log_attempt(_attempt(1, FixType.MISSING_AWAIT, duration=120))
        logger.log_attempt(_attempt(2, FixType.SELECTOR_REFINE, result=AttemptResult.ERROR, duration=80))
        logger.mark_exhausted("Healing exhausted after 2 attempts.")

        summary = logger.log.summary
        assert logger.log.status == HealingLogStatus.EXHAUSTED
        assert logger.log.session_end is not None
        assert summary.total_attempts == 2
        assert summary.successful_fixes == 0
        assert summary.failed_attempts == 2
        assert summary.total_duration == 200
        assert summary.fix_types_attempted == [FixType.MISSING_AWAIT, FixType.SELECTOR_REFINE]
        assert summary.recommendation == "Healing exhausted after 2 attempts."

        data = json.loads(logger.output_path.read_text())
        assert data["status"] == "exhausted"
        assert data["summary"]["fixTypesAttempted"] == ["missing-await", "selector-refine"]

    def test_healed(self, heal_logs_dir):
        logger = HealingLogger("JRN-0001", heal_logs_dir)
        logger.log_attempt(_attempt(1, result=AttemptResult.PASS))
        logger.mark_healed()

        assert logger.log.status == HealingLogStatus.HEALED
        assert logger.log.summary.successful_fixes == 1
        assert logger.log.summary.recommendation is None

    def test_finalizing_twice_raises(self, heal_logs_dir):
        logger = HealingLogger("JRN-0001", heal_logs_dir)
        logger.mark_failed("Test file not found")

        with pytest.raises(RuntimeError):
            logger.mark_healed()
        with pytest.raises(RuntimeError):
            logger.log_attempt(_attempt(1))

    def test_attempts_are_bounded(self, heal_logs_dir):
        logger = HealingLogger("JRN-0001", heal_logs_dir, max_attempts=1)
        logger.log_attempt(_attempt(1))

        assert logger.is_max_attempts_reached() is True
        with pytest.raises(RuntimeError):
            logger.log_attempt(_attempt(2))
        assert logger.get_attempt_count() == 1

    def test_save_leaves_no_temp_files(self, heal_logs_dir):
        logger = HealingLogger("JRN-0001", heal_logs_dir)
        logger.log_attempt(_attempt(1))
        logger.mark_failed()

        assert [p.name for p in heal_logs_dir.iterdir()] == ["JRN-0001.heal-log.json"]

    def test_creates_output_dir(self, tmp_path):
        logger = HealingLogger("JRN-0001", tmp_path / "a" / "b")

        assert logger.output_path.exists()


class TestHealLogHelpers:
    """Test cases for loading, formatting and aggregating heal logs."""

    def _finished_log(self, directory, journey_id, healed):
        logger = HealingLogger(journey_id, directory)
        logger.log_attempt(_attempt(1, FixType.MISSING_AWAIT))
        if healed:
            logger.log_attempt(_attempt(2, FixType.SELECTOR_REFINE, result=AttemptResult.PASS))
            logger.mark_healed()
        else:
            logger.mark_exhausted("Healing exhausted after 1 attempts.")
        return logger

    def test_load_round_trip(self, heal_logs_dir):
        logger = self._finished_log(heal_logs_dir, "JRN-0001", healed=True)
        loaded = load_healing_log(logger.output_path)

        assert loaded is not None
        assert loaded.to_dict() == logger.log.to_dict()

    def test_load_missing_or_corrupt(self, heal_logs_dir):
        assert load_healing_log(heal_logs_dir / "nope.heal-log.json") is None

        corrupt = heal_log_path(heal_logs_dir, "JRN-0009")
        corrupt.write_text("{\"journeyId\": ")
        assert load_healing_log(corrupt) is None

    def test_format_healing_log(self, heal_logs_dir):
        logger = self._finished_log(heal_logs_dir, "JRN-0001", healed=False)
        text = format_healing_log(logger.log)

        assert text.startswith("# Healing Log: JRN-0001")
        assert "Status: EXHAUSTED" in text
        assert "### Attempt 1 ❌" in text
        assert "- **Fix Type**: missing-await" in text
        assert "**Recommendation**: Healing exhausted after 1 attempts." in text

    def test_create_healing_report(self, heal_logs_dir):
        report = create_healing_report(self._finished_log(heal_logs_dir, "JRN-0001", healed=True).log)

        assert report.success is True
        assert report.attempt_count == 2
        assert report.fix_applied == FixType.SELECTOR_REFINE

    def test_aggregate(self, heal_logs_dir):
        logs = [
            self._finished_log(heal_logs_dir, "JRN-0001", healed=True).log,
            self._finished_log(heal_logs_dir, "JRN-0002", healed=False).log,
        ]
        stats = aggregate_healing_logs(logs)

        assert stats.total_journeys == 2
        assert stats.healed == 1
        assert stats.exhausted == 1
        assert stats.failed == 0
        assert stats.total_attempts == 3
        assert stats.most_common_fixes[0] == ("missing-await", 2)
        assert stats.most_common_failures == [("selector", 3)]


class TestSessionLock:
    """Test cases for session_lock()."""

    def test_lock_file_held_then_removed(self, heal_logs_dir):
        with session_lock(heal_logs_dir, "JRN-0001") as path:
            assert path.name == "JRN-0001.heal-lock"
            assert path.read_text().isdigit()

        assert not path.exists()

    def test_second_session_refused(self, heal_logs_dir):
        with session_lock(heal_logs_dir, "JRN-0001"):
            with pytest.raises(RuntimeError, match="already running"):
                with session_lock(heal_logs_dir, "JRN-0001"):
                    pass
            with session_lock(heal_logs_dir, "JRN-0002"):
                pass

    def test_released_on_error(self, heal_logs_dir):
        with pytest.raises(ValueError):
            with session_lock(heal_logs_dir, "JRN-0001"):
                raise ValueError("boom")

        with session_lock(heal_logs_dir, "JRN-0001"):
            pass
