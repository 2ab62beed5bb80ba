"""
Refine-until-converged control loop.

One `run()` drives a session through analyze -> generate -> validate
repeatedly. Iterations are strictly sequential: each generation sees the
previous document and the previous report's feedback.

Stop conditions, checked in this order after every validation:

1. quality_score >= convergence_threshold            -> "converged"
2. iteration > 1 and improvement < improvement_threshold -> "stalled"
3. iteration >= max_iterations, or the generator
   budget is spent                                     -> "max_iterations"
4. elapsed >= timeout                                  -> "timeout"

The timeout is also checked before each iteration starts; it can never
interrupt a backend call in flight (the router enforces its own
per-request timeout for that).

Generator calls across the whole run, retries included, never exceed
max_iterations + 1.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from docforge.errors import (
    ConfigurationError,
    IterationTimeout,
    NotFound,
    ValidationFailure,
)
from docforge.logging_config import logger
from docforge.models import (
    AnalysisResult,
    Priority,
    ProviderConfig,
    UserRequest,
    ValidationConfig,
    ValidationReport,
    WorkflowStage,
)
from docforge.orchestrator.collaborators import Analyzer, Generator, LLMCall, LLMDocumentGenerator, StaticAnalyzer
from docforge.orchestrator.state_store import RequestLike, SessionStateStore, as_request
from docforge.routing.router import ProviderRouter
from docforge.settings import settings
from docforge.validation.engine import ValidationEngine

ANALYSIS_METADATA_KEY = "analysis"

# Share of the progress bar covered by the generate/validate iterations.
_LOOP_PROGRESS_SPAN = 80

_FEEDBACK_TYPES = (
    ("addition", ("add", "include", "need")),
    ("removal", ("remove", "delete", "exclude")),
    ("clarification", ("clarify", "explain", "unclear")),
)
_URGENT_MARKERS = ("important", "critical", "must")


@dataclass(frozen=True)
class IterationLimits:
    max_iterations: int = field(default_factory=lambda: settings.iteration_max_iterations)
    convergence_threshold: float = field(default_factory=lambda: settings.iteration_convergence_threshold)
    improvement_threshold: float = field(default_factory=lambda: settings.iteration_improvement_threshold)
    timeout_ms: int = field(default_factory=lambda: settings.iteration_timeout_ms)
    max_step_retries: int = field(default_factory=lambda: settings.iteration_max_step_retries)

    def check(self) -> None:
        problems: Dict[str, Any] = {}
        if self.max_iterations < 1:
            problems["max_iterations"] = self.max_iterations
        if not 0.0 <= self.convergence_threshold <= 1.0:
            problems["convergence_threshold"] = self.convergence_threshold
        if self.improvement_threshold < 0:
            problems["improvement_threshold"] = self.improvement_threshold
        if self.timeout_ms <= 0:
            problems["timeout_ms"] = self.timeout_ms
        if self.max_step_retries < 0:
            problems["max_step_retries"] = self.max_step_retries
        if problems:
            raise ConfigurationError("Invalid iteration limits", details=problems)

    @property
    def generator_call_budget(self) -> int:
        return self.max_iterations + 1


@dataclass(frozen=True)
class IterationRecord:
    iteration: int
    quality_score: float
    valid: bool
    improvement: Optional[float]
    elapsed_ms: int
    provider_id: Optional[str] = None
    improvements: Tuple[str, ...] = ()
    feedback_type: Optional[str] = None
    priority: Optional[Priority] = None


@dataclass(frozen=True)
class IterationOutcome:
    document: Any
    report: ValidationReport
    iterations_used: int
    session_id: str
    stop_reason: str
    partial: bool = False
    records: Tuple[IterationRecord, ...] = ()


@dataclass(frozen=True)
class IterationMetrics:
    total_iterations: int
    average_quality: float
    improvement_rate: float
    convergence_rate: float
    time_spent_seconds: float
    user_interventions: int


@dataclass
class _RunState:
    session_id: str
    request: UserRequest
    analysis: AnalysisResult
    llm: LLMCall
    limits: IterationLimits
    deadline: float
    started: float
    calls_used: int = 0
    best: Optional[Tuple[Any, ValidationReport]] = None


def classify_feedback(feedback: str) -> Tuple[str, Priority]:
    lowered = feedback.lower()
    kind = "modification"
    for name, markers in _FEEDBACK_TYPES:
        if any(marker in lowered for marker in markers):
            kind = name
            break
    priority = Priority.MUST if any(m in lowered for m in _URGENT_MARKERS) else Priority.SHOULD
    return kind, priority


def feedback_from_report(report: ValidationReport) -> List[str]:
    items = list(report.recommendations)
    for issue in report.overall.errors:
        line = f"{issue.field}: {issue.message}"
        if line not in items:
            items.append(line)
    return items


def describe_improvements(previous: Any, current: Any) -> List[str]:
    if not isinstance(current, dict):
        return []
    if not isinstance(previous, dict):
        return ["Initial document generated"]
    notes: List[str] = []
    old_reqs = previous.get("functional_requirements") or []
    new_reqs = current.get("functional_requirements") or []
    if len(new_reqs) > len(old_reqs):
        notes.append(f"Added {len(new_reqs) - len(old_reqs)} new functional requirements")
    for section, note in (
        ("metadata", "Added product metadata"),
        ("technical_specifications", "Added technical specifications"),
        ("testing_strategy", "Added testing strategy"),
    ):
        if current.get(section) and not previous.get(section):
            notes.append(note)
    return notes


def _variance(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


class IterationController:
    def __init__(
        self,
        *,
        state_store: SessionStateStore,
        router: ProviderRouter,
        validator: Optional[ValidationEngine] = None,
        analyzer: Optional[Analyzer] = None,
        generator: Optional[Generator] = None,
        limits: Optional[IterationLimits] = None,
        validation_config: Optional[ValidationConfig] = None,
        clock=time.monotonic,
    ) -> None:
        self.state_store = state_store
        self.router = router
        self.validator = validator or ValidationEngine()
        self.analyzer: Analyzer = analyzer or StaticAnalyzer()
        self.generator: Generator = generator or LLMDocumentGenerator()
        self.limits = limits or IterationLimits()
        self.limits.check()
        self.validation_config = validation_config
        self._clock = clock

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(
        self,
        request: RequestLike,
        candidates: Sequence[ProviderConfig],
        limits: Optional[IterationLimits] = None,
        *,
        strategy: Any = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        analysis: Optional[AnalysisResult] = None,
    ) -> IterationOutcome:
        lim = limits or self.limits
        lim.check()

        req = as_request(request)
        sid = session_id or req.session_id or uuid.uuid4().hex
        req = as_request(req, sid)

        session = await self.state_store.get_session(sid)
        if session is None:
            session = await self.state_store.initialize_session(sid, req, user_id)
        previous_document = session.current_document
        await self.state_store.add_request_to_context(sid, req)
        await self.state_store.add_conversation_message(sid, "user", req.raw_input)

        started = self._clock()
        state = _RunState(
            session_id=sid,
            request=req,
            analysis=await self._resolve_analysis(sid, req, analysis),
            llm=LLMCall(self.router, candidates, strategy),
            limits=lim,
            deadline=started + lim.timeout_ms / 1000.0,
            started=started,
        )
        logger.info(
            "iteration: session %s started (max_iterations=%d, candidates=%d)",
            sid,
            lim.max_iterations,
            len(candidates),
        )

        records: List[IterationRecord] = []
        feedback: List[str] = []
        previous_quality: Optional[float] = None
        iteration = 0

        while True:
            if self._clock() >= state.deadline:
                return await self._finish_on_timeout(state, records)

            iteration += 1
            await self.state_store.update_workflow_stage(
                sid,
                WorkflowStage.GENERATING,
                progress=(iteration - 1) / lim.max_iterations * _LOOP_PROGRESS_SPAN,
                metadata={"iteration": iteration, "max_iterations": lim.max_iterations},
            )
            document, report = await self._run_step(state, previous_document, feedback)

            quality = report.quality_score
            improvement = None if previous_quality is None else quality - previous_quality
            record = IterationRecord(
                iteration=iteration,
                quality_score=quality,
                valid=report.overall.valid,
                improvement=improvement,
                elapsed_ms=int((self._clock() - started) * 1000),
                provider_id=state.llm.last_response.provider_id if state.llm.last_response else None,
                improvements=tuple(describe_improvements(previous_document, document)),
            )
            records.append(record)
            await self._record_iteration(sid, iteration, lim, document, report)
            if state.best is None or quality >= state.best[1].quality_score:
                state.best = (document, report)

            stop_reason = self._stop_reason(lim, iteration, quality, improvement, state)
            logger.info(
                "iteration: session %s iteration %d quality=%.3f valid=%s stop=%s",
                sid,
                iteration,
                quality,
                report.overall.valid,
                stop_reason,
            )
            if stop_reason is None:
                previous_quality = quality
                previous_document = document
                feedback = feedback_from_report(report)
                continue

            if stop_reason == "timeout":
                return await self._finish_on_timeout(state, records)
            if stop_reason == "max_iterations" and not report.overall.valid:
                failure = ValidationFailure(
                    f"Document still invalid after {iteration} iterations",
                    report=report,
                    document=document,
                )
                await self._mark_failed(sid, failure)
                raise failure
            return await self._finish(state, document, report, records, stop_reason)

    def _stop_reason(
        self,
        limits: IterationLimits,
        iteration: int,
        quality: float,
        improvement: Optional[float],
        state: _RunState,
    ) -> Optional[str]:
        if quality >= limits.convergence_threshold:
            return "converged"
        if iteration > 1 and improvement is not None and improvement < limits.improvement_threshold:
            return "stalled"
        # Retries can spend the generator budget before max_iterations is reached.
        if iteration >= limits.max_iterations or state.calls_used >= limits.generator_call_budget:
            return "max_iterations"
        if self._clock() >= state.deadline:
            return "timeout"
        return None

    async def _run_step(
        self, state: _RunState, previous: Any, feedback: Sequence[str]
    ) -> Tuple[Any, ValidationReport]:
        """
        Generate and validate once, retrying the pair on failure while both
        the per-step retry count and the run-wide generator budget allow.
        """
        retries_left = state.limits.max_step_retries
        state.llm.use_cache = True
        while True:
            state.calls_used += 1
            try:
                document = await self.generator.generate(
                    state.request,
                    state.analysis,
                    previous=previous,
                    feedback=list(feedback),
                    llm=state.llm,
                )
                report = self.validator.validate(document, self.validation_config)
                return document, report
            except (NotFound, ConfigurationError) as exc:
                await self._mark_failed(state.session_id, exc)
                raise
            except Exception as exc:
                exhausted = (
                    retries_left <= 0
                    or state.calls_used >= state.limits.generator_call_budget
                    or self._clock() >= state.deadline
                )
                if exhausted:
                    logger.error(
                        "iteration: session %s step failed after %d generator calls: %s",
                        state.session_id,
                        state.calls_used,
                        exc,
                    )
                    await self._mark_failed(state.session_id, exc)
                    raise
                retries_left -= 1
                # Retries bypass the response cache.
                state.llm.use_cache = False
                logger.warning(
                    "iteration: session %s step failed (%s), retrying (%d retries left)",
                    state.session_id,
                    exc,
                    retries_left,
                )

    async def _resolve_analysis(
        self, session_id: str, request: UserRequest, supplied: Optional[AnalysisResult]
    ) -> AnalysisResult:
        if supplied is not None:
            analysis = supplied
        else:
            session = await self.state_store.get_session(session_id)
            cached = session.workflow_state.metadata.get(ANALYSIS_METADATA_KEY) if session else None
            if cached is not None:
                return AnalysisResult.model_validate(cached)
            try:
                analysis = await self.analyzer.analyze(request)
            except Exception as exc:
                await self._mark_failed(session_id, exc)
                raise
        await self.state_store.update_workflow_stage(
            session_id,
            WorkflowStage.ANALYZING,
            metadata={ANALYSIS_METADATA_KEY: analysis.model_dump(mode="json")},
        )
        return analysis

    async def _record_iteration(
        self,
        session_id: str,
        iteration: int,
        limits: IterationLimits,
        document: Any,
        report: ValidationReport,
    ) -> None:
        await self.state_store.update_workflow_stage(
            session_id,
            WorkflowStage.VALIDATING,
            progress=iteration / limits.max_iterations * _LOOP_PROGRESS_SPAN,
            metadata={
                "iteration": iteration,
                "quality_score": report.quality_score,
                "valid": report.overall.valid,
            },
        )
        await self.state_store.set_document(session_id, document)
        await self.state_store.add_conversation_message(
            session_id,
            "assistant",
            f"Iteration {iteration}: quality {report.quality_score:.2f}, "
            f"{len(report.overall.errors)} errors, {len(report.overall.warnings)} warnings",
        )

    async def _finish(
        self,
        state: _RunState,
        document: Any,
        report: ValidationReport,
        records: List[IterationRecord],
        stop_reason: str,
    ) -> IterationOutcome:
        await self.state_store.update_workflow_stage(
            state.session_id,
            WorkflowStage.COMPLETED,
            progress=100,
            metadata={"stop_reason": stop_reason, "partial": False, "iterations": len(records)},
        )
        return IterationOutcome(
            document=document,
            report=report,
            iterations_used=len(records),
            session_id=state.session_id,
            stop_reason=stop_reason,
            partial=False,
            records=tuple(records),
        )

    async def _finish_on_timeout(self, state: _RunState, records: List[IterationRecord]) -> IterationOutcome:
        if state.best is None:
            error = IterationTimeout(
                f"Iteration budget of {state.limits.timeout_ms}ms exhausted before any document was produced",
                details={"session_id": state.session_id},
            )
            await self._mark_failed(state.session_id, error)
            raise error

        document, report = state.best
        logger.warning(
            "iteration: session %s timed out after %d iterations, returning best partial document",
            state.session_id,
            len(records),
        )
        await self.state_store.set_document(state.session_id, document)
        await self.state_store.update_workflow_stage(
            state.session_id,
            WorkflowStage.VALIDATING,
            metadata={"stop_reason": "timeout", "partial": True, "iterations": len(records)},
        )
        return IterationOutcome(
            document=document,
            report=report,
            iterations_used=len(records),
            session_id=state.session_id,
            stop_reason="timeout",
            partial=True,
            records=tuple(records),
        )

    async def _mark_failed(self, session_id: str, error: BaseException) -> None:
        await self.state_store.add_error(session_id, error)
        await self.state_store.update_workflow_stage(
            session_id,
            WorkflowStage.FAILED,
            metadata={"error": str(error), "error_type": getattr(error, "error_type", type(error).__name__)},
        )

    # ------------------------------------------------------------------
    # Feedback and metrics
    # ------------------------------------------------------------------

    async def process_feedback(
        self,
        session_id: str,
        feedback: str,
        candidates: Sequence[ProviderConfig],
        strategy: Any = None,
    ) -> IterationRecord:
        """
        Run one refinement iteration driven by user feedback on the
        session's current document.
        """
        session = await self.state_store.get_session(session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found", details={"session_id": session_id})
        if session.current_document is None:
            raise NotFound(
                f"Session {session_id} has no document to refine", details={"session_id": session_id}
            )

        feedback_type, priority = classify_feedback(feedback)
        request = UserRequest(
            id=f"feedback-{uuid.uuid4().hex[:12]}",
            raw_input=feedback,
            session_id=session_id,
            context={"feedback_type": feedback_type, "priority": priority.value},
        )
        await self.state_store.add_request_to_context(session_id, request)
        await self.state_store.add_conversation_message(session_id, "user", feedback)

        lim = self.limits
        started = self._clock()
        state = _RunState(
            session_id=session_id,
            request=request,
            analysis=await self._resolve_analysis(session_id, request, None),
            llm=LLMCall(self.router, candidates, strategy),
            limits=lim,
            deadline=started + lim.timeout_ms / 1000.0,
            started=started,
        )
        previous_quality = self._last_quality(session)
        iteration = len(self._quality_history(session)) + 1

        await self.state_store.update_workflow_stage(
            session_id,
            WorkflowStage.GENERATING,
            metadata={"iteration": iteration, "feedback_type": feedback_type},
        )
        document, report = await self._run_step(state, session.current_document, [feedback])
        await self._record_iteration(session_id, iteration, lim, document, report)

        return IterationRecord(
            iteration=iteration,
            quality_score=report.quality_score,
            valid=report.overall.valid,
            improvement=None if previous_quality is None else report.quality_score - previous_quality,
            elapsed_ms=int((self._clock() - started) * 1000),
            provider_id=state.llm.last_response.provider_id if state.llm.last_response else None,
            improvements=tuple(describe_improvements(session.current_document, document)),
            feedback_type=feedback_type,
            priority=priority,
        )

    @staticmethod
    def _quality_history(session) -> List[float]:
        qualities: List[float] = []
        for snapshot in session.history:
            if snapshot.stage != WorkflowStage.VALIDATING or not isinstance(snapshot.data, dict):
                continue
            score = (snapshot.data.get("metadata") or {}).get("quality_score")
            if isinstance(score, (int, float)):
                qualities.append(float(score))
        return qualities

    def _last_quality(self, session) -> Optional[float]:
        qualities = self._quality_history(session)
        return qualities[-1] if qualities else None

    async def get_iteration_metrics(self, session_id: str) -> IterationMetrics:
        session = await self.state_store.get_session(session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found", details={"session_id": session_id})

        qualities = self._quality_history(session)
        total = len(qualities)
        if total >= 2:
            improved = sum(1 for prev, cur in zip(qualities, qualities[1:]) if cur > prev)
            improvement_rate = improved / (total - 1)
            half = total // 2
            first, second = _variance(qualities[:half]), _variance(qualities[half:])
            convergence_rate = max(0.0, (first - second) / first) if first > 0 else 0.0
        else:
            improvement_rate = 0.0
            convergence_rate = 0.0

        return IterationMetrics(
            total_iterations=total,
            average_quality=sum(qualities) / total if total else 0.0,
            improvement_rate=improvement_rate,
            convergence_rate=convergence_rate,
            time_spent_seconds=max(0.0, session.updated_at - session.created_at),
            user_interventions=len(session.context.previous_requests),
        )


__all__ = [
    "ANALYSIS_METADATA_KEY",
    "IterationController",
    "IterationLimits",
    "IterationMetrics",
    "IterationOutcome",
    "IterationRecord",
    "classify_feedback",
    "describe_improvements",
    "feedback_from_report",
]
