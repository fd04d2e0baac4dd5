"""Bounded healing loop, orchestrated as a LangGraph state machine."""

import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TypedDict

from langgraph.graph import END, StateGraph

from ..config import DEFAULT_HEALING_CONFIG, HealingConfig
from ..models import (
    AriaInfo,
    AttemptResult,
    FailureClassification,
    FixResult,
    FixType,
    HealingAttempt,
    HealingLoopResult,
    HealingStatus,
    VerifyStatus,
    VerifySummary,
)
from ..tracing import LEVEL_DEFAULT, LEVEL_WARNING, TracingClient
from ..verify.summary import VerifyFn
from .fixes import FixContext, apply_fix
from .logger import HealingLogger, session_lock
from .rules import evaluate_healing, get_next_fix, get_post_healing_recommendation

logger = logging.getLogger(__name__)


class LoopPhase(str, Enum):
    BASELINE = "baseline"
    SELECT = "select"
    APPLY = "apply"
    VERIFY = "verify"
    DONE = "done"


# Phases reachable from each phase.
TRANSITIONS: dict[LoopPhase, tuple[LoopPhase, ...]] = {
    LoopPhase.BASELINE: (LoopPhase.SELECT, LoopPhase.DONE),
    LoopPhase.SELECT: (LoopPhase.APPLY, LoopPhase.DONE),
    LoopPhase.APPLY: (LoopPhase.VERIFY, LoopPhase.SELECT, LoopPhase.DONE),
    LoopPhase.VERIFY: (LoopPhase.SELECT, LoopPhase.DONE),
    LoopPhase.DONE: (),
}


class HealingLoopState(TypedDict):
    """State carried between loop phases."""

    phase: LoopPhase  # phase that just completed
    code: str
    classification: FailureClassification | None
    line_number: int
    error_message: str
    attempted_fixes: list[FixType]
    current_fix: FixType | None
    fix_result: FixResult | None
    attempts: int
    max_attempts: int
    attempt_started: float

    # Set once the session reaches a terminal outcome
    terminal: HealingStatus | None
    recommendation: str | None
    result: HealingLoopResult | None


def next_phase(state: HealingLoopState) -> LoopPhase:
    """Pure transition function for the loop state machine."""
    phase = state["phase"]

    if state["terminal"] is not None or phase == LoopPhase.DONE:
        target = LoopPhase.DONE
    elif phase == LoopPhase.BASELINE:
        target = LoopPhase.SELECT
    elif phase == LoopPhase.SELECT:
        target = LoopPhase.APPLY
    elif phase == LoopPhase.APPLY:
        fix_result = state["fix_result"]
        target = LoopPhase.VERIFY if fix_result and fix_result.applied else LoopPhase.SELECT
    else:
        target = LoopPhase.SELECT

    if phase != LoopPhase.DONE and target not in TRANSITIONS[phase]:
        raise ValueError(f"Illegal loop transition {phase.value} -> {target.value}")
    return target


def extract_classification(summary: VerifySummary) -> FailureClassification | None:
    """Classification of the first failing test, if any."""
    for classification in summary.failures.classifications.values():
        return classification
    return None


def extract_line_number(summary: VerifySummary) -> int:
    """Line where the first failing test broke, defaulting to 1."""
    if not summary.failures.tests:
        return 1

    first = summary.failures.tests[0]
    if line := summary.failures.lines.get(first):
        return line
    if match := re.search(r":(\d+)(?::\d+)?(?:\)|$)", first):
        return int(match.group(1))
    if match := re.search(r"at line (\d+)", first, re.IGNORECASE):
        return int(match.group(1))
    return 1


def extract_error_message(summary: VerifySummary) -> str:
    if not summary.failures.tests:
        return ""
    return summary.failures.errors.get(summary.failures.tests[0], "")


class HealingLoop:
    """One healing session for one journey's test file."""

    def __init__(
        self,
        journey_id: str,
        test_file: Path | str,
        output_dir: Path | str,
        verify_fn: VerifyFn,
        config: HealingConfig | None = None,
        aria_info: AriaInfo | None = None,
        tracing: TracingClient | None = None,
    ):
        self.journey_id = journey_id
        self.test_file = Path(test_file)
        self.verify_fn = verify_fn
        self.config = config or DEFAULT_HEALING_CONFIG
        self.aria_info = aria_info
        self.tracing = tracing
        self.output_dir = Path(output_dir)
        self.healing_logger: HealingLogger | None = None
        self._trace_id: str | None = None
        self.app = self._build_graph()

    def _build_graph(self):
        graph = StateGraph(HealingLoopState)

        graph.add_node("baseline", self.baseline)
        graph.add_node("select", self.select)
        graph.add_node("apply", self.apply)
        graph.add_node("verify", self.verify)
        graph.add_node("finalize", self.finalize)

        routes = {
            LoopPhase.SELECT.value: "select",
            LoopPhase.APPLY.value: "apply",
            LoopPhase.VERIFY.value: "verify",
            LoopPhase.DONE.value: "finalize",
        }

        graph.set_entry_point("baseline")
        for node in ("baseline", "select", "apply", "verify"):
            graph.add_conditional_edges(node, self._route, routes)
        graph.add_edge("finalize", END)

        return graph.compile()

    @staticmethod
    def _route(state: HealingLoopState) -> str:
        return next_phase(state).value

    def initial_state(self) -> HealingLoopState:
        return {
            "phase": LoopPhase.BASELINE,
            "code": "",
            "classification": None,
            "line_number": 1,
            "error_message": "",
            "attempted_fixes": [],
            "current_fix": None,
            "fix_result": None,
            "attempts": 0,
            "max_attempts": self.config.max_attempts,
            "attempt_started": 0.0,
            "terminal": None,
            "recommendation": None,
            "result": None,
        }

    async def run(self) -> HealingLoopResult:
        """Drive the session to a terminal outcome.

        Holds the journey's session lock for the whole run; a second session
        on the same journey and output dir raises RuntimeError.
        """
        with session_lock(self.output_dir, self.journey_id):
            self.healing_logger = HealingLogger(
                self.journey_id, self.output_dir, self.config.max_attempts
            )
            return await self._run_graph()

    async def _run_graph(self) -> HealingLoopResult:
        # Each attempt walks select -> apply -> verify
        recursion_limit = 5 * self.config.max_attempts + 10
        tracing = self.tracing

        if tracing is None or not tracing.enabled:
            final = await self.app.ainvoke(
                self.initial_state(), config={"recursion_limit": recursion_limit}
            )
            return final["result"]

        with tracing.trace(
            "healing-session",
            metadata={"journey_id": self.journey_id, "test_file": str(self.test_file)},
        ) as trace:
            self._trace_id = trace.id if trace else None
            final = await self.app.ainvoke(
                self.initial_state(), config={"recursion_limit": recursion_limit}
            )
            result: HealingLoopResult = final["result"]
            tracing.update(
                trace,
                output={"status": result.status.value, "attempts": result.attempts},
                metadata={"recommendation": result.recommendation},
            )
            return result

    async def baseline(self, state: HealingLoopState) -> HealingLoopState:
        """Verify once before touching anything and decide if healing may start."""
        if not self.test_file.exists():
            return self._terminal(state, LoopPhase.BASELINE, HealingStatus.FAILED, "Test file not found")

        try:
            code = self.test_file.read_text(encoding="utf-8")
        except OSError as e:
            return self._terminal(
                state, LoopPhase.BASELINE, HealingStatus.FAILED, f"Test file could not be read: {e}"
            )

        try:
            summary = await self.verify_fn()
        except Exception as e:
            logger.exception("Initial verification of %s failed", self.journey_id)
            return self._terminal(
                state, LoopPhase.BASELINE, HealingStatus.FAILED, f"Initial verification failed: {e}"
            )

        if summary.status == VerifyStatus.PASSED:
            logger.info("%s already passes, nothing to heal", self.journey_id)
            return {**self._terminal(state, LoopPhase.BASELINE, HealingStatus.HEALED, None), "code": code}

        classification = extract_classification(summary)
        if classification is None:
            return self._terminal(
                state,
                LoopPhase.BASELINE,
                HealingStatus.FAILED,
                "Unable to classify failure for healing",
            )

        evaluation = evaluate_healing(classification, self.config)
        if not evaluation.can_heal:
            logger.info("%s is not healable: %s", self.journey_id, evaluation.reason)
            return self._terminal(
                state, LoopPhase.BASELINE, HealingStatus.NOT_HEALABLE, evaluation.reason
            )

        logger.info(
            "Healing %s: %s failure, candidates %s",
            self.journey_id,
            classification.category.value,
            ", ".join(f.value for f in evaluation.applicable_fixes),
        )
        return {
            **state,
            "phase": LoopPhase.BASELINE,
            "code": code,
            "classification": classification,
            "line_number": extract_line_number(summary),
            "error_message": extract_error_message(summary),
        }

    async def select(self, state: HealingLoopState) -> HealingLoopState:
        """Pick the next untried fix, or stop when the budget or candidates run out."""
        classification = state["classification"]

        if state["attempts"] >= state["max_attempts"]:
            return self._exhausted(state, classification)

        fix = get_next_fix(classification, state["attempted_fixes"], self.config)
        if fix is None:
            return self._exhausted(state, classification)

        logger.info("Attempt %d: trying %s", state["attempts"] + 1, fix.value)
        return {
            **state,
            "phase": LoopPhase.SELECT,
            "current_fix": fix,
            "attempted_fixes": [*state["attempted_fixes"], fix],
            "fix_result": None,
            "attempt_started": time.monotonic(),
        }

    async def apply(self, state: HealingLoopState) -> HealingLoopState:
        """Rewrite the test source with the selected fix."""
        fix = state["current_fix"]
        result = apply_fix(
            state["code"],
            fix,
            FixContext(
                line_number=state["line_number"],
                error_message=state["error_message"],
                classification=state["classification"],
                aria_info=self.aria_info,
                max_timeout_increase=self.config.max_timeout_increase,
            ),
        )

        if not result.applied:
            logger.info("%s did not apply: %s", fix.value, result.description)
            self._record_attempt(
                state,
                AttemptResult.FAIL,
                change="Fix not applied",
                error_message=result.description,
            )
            return {
                **state,
                "phase": LoopPhase.APPLY,
                "fix_result": result,
                "attempts": state["attempts"] + 1,
            }

        self.test_file.write_text(result.code, encoding="utf-8")
        return {**state, "phase": LoopPhase.APPLY, "fix_result": result, "code": result.code}

    async def verify(self, state: HealingLoopState) -> HealingLoopState:
        """Re-run the test against the rewritten file and record the attempt."""
        fix = state["current_fix"]
        change = state["fix_result"].description
        attempts = state["attempts"] + 1

        try:
            summary = await self.verify_fn()
        except Exception as e:
            logger.warning("Verification after %s raised: %s", fix.value, e)
            self._record_attempt(state, AttemptResult.ERROR, change=change, error_message=str(e))
            return {**state, "phase": LoopPhase.VERIFY, "attempts": attempts}

        evidence = [summary.report_path] if summary.report_path else []

        if summary.status == VerifyStatus.PASSED:
            self._record_attempt(state, AttemptResult.PASS, change=change, evidence=evidence)
            logger.info("%s healed by %s", self.journey_id, fix.value)
            return {
                **state,
                "phase": LoopPhase.VERIFY,
                "attempts": attempts,
                "terminal": HealingStatus.HEALED,
                "recommendation": None,
            }

        self._record_attempt(
            state,
            AttemptResult.FAIL,
            change=change,
            evidence=evidence,
            error_message=extract_error_message(summary) or None,
        )

        updated: HealingLoopState = {**state, "phase": LoopPhase.VERIFY, "attempts": attempts}
        classification = extract_classification(summary)
        if classification is not None:
            if classification.category != state["classification"].category:
                logger.info(
                    "Failure changed from %s to %s",
                    state["classification"].category.value,
                    classification.category.value,
                )
                updated["classification"] = classification
            updated["line_number"] = extract_line_number(summary)
            updated["error_message"] = extract_error_message(summary)
        return updated

    async def finalize(self, state: HealingLoopState) -> HealingLoopState:
        """Close the heal log and build the session result."""
        status = state["terminal"] or HealingStatus.FAILED
        recommendation = state["recommendation"]

        if status == HealingStatus.HEALED:
            self.healing_logger.mark_healed()
        elif status == HealingStatus.EXHAUSTED:
            self.healing_logger.mark_exhausted(recommendation)
        else:
            self.healing_logger.mark_failed(recommendation)

        healed = status == HealingStatus.HEALED
        changed = healed and state["attempts"] > 0
        result = HealingLoopResult(
            success=healed,
            status=status,
            attempts=state["attempts"],
            log_path=str(self.healing_logger.output_path),
            applied_fix=state["current_fix"] if changed else None,
            recommendation=recommendation,
            modified_code=state["code"] if changed else None,
        )
        return {**state, "phase": LoopPhase.DONE, "result": result}

    def _terminal(
        self,
        state: HealingLoopState,
        phase: LoopPhase,
        status: HealingStatus,
        recommendation: str | None,
    ) -> HealingLoopState:
        return {**state, "phase": phase, "terminal": status, "recommendation": recommendation}

    def _exhausted(
        self,
        state: HealingLoopState,
        classification: FailureClassification,
    ) -> HealingLoopState:
        recommendation = get_post_healing_recommendation(classification, state["attempts"])
        logger.info("%s: %s", self.journey_id, recommendation)
        return self._terminal(state, LoopPhase.SELECT, HealingStatus.EXHAUSTED, recommendation)

    def _record_attempt(
        self,
        state: HealingLoopState,
        result: AttemptResult,
        change: str,
        evidence: list[str] | None = None,
        error_message: str | None = None,
    ) -> None:
        attempt = HealingAttempt(
            attempt=self.healing_logger.get_attempt_count() + 1,
            failure_type=state["classification"].category,
            fix_type=state["current_fix"],
            file=str(self.test_file),
            change=change,
            result=result,
            duration=int((time.monotonic() - state["attempt_started"]) * 1000),
            evidence=evidence or [],
            error_message=error_message,
        )
        self.healing_logger.log_attempt(attempt)

        if self.tracing is not None:
            self.tracing.span(
                trace_id=self._trace_id,
                name=f"attempt-{attempt.attempt}",
                input_data={"fix_type": attempt.fix_type.value, "line": state["line_number"]},
                output_data={"result": result.value, "change": change},
                metadata={"failure_type": attempt.failure_type.value},
                level=LEVEL_DEFAULT if result == AttemptResult.PASS else LEVEL_WARNING,
            )


async def run_healing_loop(
    journey_id: str,
    test_file: Path | str,
    output_dir: Path | str,
    verify_fn: VerifyFn,
    config: HealingConfig | None = None,
    aria_info: AriaInfo | None = None,
    tracing: TracingClient | None = None,
) -> HealingLoopResult:
    """Heal one journey's test file within the configured attempt budget."""
    loop = HealingLoop(
        journey_id,
        test_file,
        output_dir,
        verify_fn,
        config=config,
        aria_info=aria_info,
        tracing=tracing,
    )
    return await loop.run()


@dataclass
class FixPreview:
    """What one candidate fix would do, without writing anything."""

    fix_type: FixType
    result: FixResult


def preview_healing_fixes(
    code: str,
    classification: FailureClassification,
    config: HealingConfig | None = None,
    context: FixContext | None = None,
) -> list[FixPreview]:
    """Dry-run every applicable fix, in priority order."""
    config = config or DEFAULT_HEALING_CONFIG
    evaluation = evaluate_healing(classification, config)
    if not evaluation.can_heal:
        return []

    context = context or FixContext(
        classification=classification,
        max_timeout_increase=config.max_timeout_increase,
    )
    return [FixPreview(fix, apply_fix(code, fix, context)) for fix in evaluation.applicable_fixes]


def would_fix_apply(
    code: str,
    fix_type: FixType,
    classification: FailureClassification,
    context: FixContext | None = None,
) -> bool:
    context = context or FixContext(classification=classification)
    return apply_fix(code, fix_type, context).applied
