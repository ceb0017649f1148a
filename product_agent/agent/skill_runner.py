"""
PRD skill runner: executes one plan node per invocation.

Analyzer and section results accumulate in a per-run RunState until the
assembly step turns them into the PRD artifact.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from product_agent.agent.state import RunState, RunStateStore
from product_agent.models.artifact import Artifact, ArtifactMetadata
from product_agent.models.base import utcnow
from product_agent.models.plan import (
    AnalyzeContextTask,
    AssemblePrdTask,
    ClarificationCheckTask,
    SkillRequest,
    WriteSectionTask,
)
from product_agent.models.run import RunInput, RunStatus
from product_agent.models.skill import ConfidenceAssessment, ConfidenceLevel, SkillResult
from product_agent.prd.analyzers import ClarificationAnalyzer, ContextAnalyzer, CONTEXT_ANALYSIS_RESULT
from product_agent.prd.confidence import CONFIDENCE_SCORES, combine_confidence_assessments
from product_agent.prd.writers import CANONICAL_SECTIONS, BaseSectionWriter, create_section_writers

logger = logging.getLogger(__name__)

HALT_CLARIFICATION = "clarification-required"
PRD_LABEL = "Product Requirements Document"
# Artifact version with and without an overall confidence.
PRD_VERSION = "2.0"
PRD_BASE_VERSION = "1.0"


class SkillExecutionError(Exception):
    """Raised when a plan node cannot be executed."""
    pass


def default_confidence() -> ConfidenceAssessment:
    return ConfidenceAssessment(
        level=ConfidenceLevel.MEDIUM,
        reasons=["Default confidence - no section-specific assessment available"],
    )


def confidence_score(assessment: Optional[ConfidenceAssessment]) -> Optional[float]:
    if assessment is None:
        return None
    return CONFIDENCE_SCORES.get(ConfidenceLevel(assessment.level))


def existing_sections(run_input: RunInput) -> Dict[str, Any]:
    """Sections of the caller-supplied PRD, nested under ``sections`` or at the top level."""
    existing = run_input.context.existing_prd if run_input.context else None
    if not existing:
        return {}
    if isinstance(existing.get("sections"), dict):
        return dict(existing["sections"])
    return {name: existing[name] for name in CANONICAL_SECTIONS if name in existing}


class PrdSkillRunner:
    """Dispatches plan tasks to the PRD analyzers, section writers and assembly."""

    def __init__(
        self,
        generator,
        clarification_analyzer: Optional[ClarificationAnalyzer] = None,
        context_analyzer: Optional[ContextAnalyzer] = None,
        section_writers: Optional[Dict[str, BaseSectionWriter]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.clarification_analyzer = clarification_analyzer or ClarificationAnalyzer(generator)
        self.context_analyzer = context_analyzer or ContextAnalyzer(generator)
        self.section_writers = section_writers or create_section_writers(generator)
        self.clock = clock
        self.states = RunStateStore(clock)

    async def invoke(self, request: SkillRequest) -> SkillResult:
        run_input = request.input or request.context.request.input
        if run_input is None:
            raise SkillExecutionError("PRD run input is required to execute skills")

        task = request.plan_node.task
        state = await self.states.ensure(request.context.run_id)

        if isinstance(task, ClarificationCheckTask):
            return await self._run_clarification(run_input, request, state)
        if isinstance(task, AnalyzeContextTask):
            return await self._run_context_analysis(run_input, request, state)
        if isinstance(task, WriteSectionTask):
            return await self._run_section_writer(run_input, request, state, task.section)
        if isinstance(task, AssemblePrdTask):
            return await self._run_assembly(run_input, request, state)
        raise SkillExecutionError(f"Unsupported PRD task kind: {getattr(task, 'kind', task)!r}")

    async def discard(self, run_id: str) -> None:
        """Drop the RunState of an abandoned run."""
        await self.states.discard(run_id)

    async def _run_clarification(self, run_input: RunInput, request: SkillRequest, state: RunState) -> SkillResult:
        result = await self.clarification_analyzer.analyze(run_input, request.context.settings)
        state.analysis_results[result.name] = result
        state.clarification = result.data

        metadata: Dict[str, Any] = {**result.metadata, "clarification": result.data}
        if result.data.get("needs_clarification"):
            state.halt_reason = HALT_CLARIFICATION
            metadata["run_status"] = RunStatus.AWAITING_INPUT.value
            metadata["halt_reason"] = state.halt_reason
            logger.info(f"Run {request.context.run_id} requires clarification")

        return SkillResult(output=result.data, confidence=result.confidence, metadata=metadata)

    async def _run_context_analysis(self, run_input: RunInput, request: SkillRequest, state: RunState) -> SkillResult:
        result = await self.context_analyzer.analyze(run_input, request.context.settings)
        state.analysis_results[result.name] = result
        return SkillResult(output=result.data, confidence=result.confidence, metadata=result.metadata)

    async def _run_section_writer(self, run_input: RunInput, request: SkillRequest, state: RunState,
                                  section: str) -> SkillResult:
        writer = self.section_writers.get(section)
        if writer is None:
            raise SkillExecutionError(f"Unknown section '{section}'")

        analysis = state.analysis_results.get(CONTEXT_ANALYSIS_RESULT)
        result = await writer.write(
            run_input,
            analysis.data if analysis is not None else None,
            existing_sections(run_input).get(section),
            request.context.settings,
        )

        if not result.should_regenerate:
            state.kept_sections[section] = result.content
        else:
            state.sections[section] = result.content
            if result.confidence is not None:
                state.confidence_assessments[section] = result.confidence
            if result.validation_issues:
                state.validation_issues[section] = result.validation_issues

        return SkillResult(
            output=result.content,
            confidence=result.confidence,
            metadata={**result.metadata, "section": section, "should_regenerate": result.should_regenerate},
        )

    async def _run_assembly(self, run_input: RunInput, request: SkillRequest, state: RunState) -> SkillResult:
        context = request.context
        sections_generated: List[str] = [s for s in CANONICAL_SECTIONS if s in state.sections]
        sections_generated += [s for s in state.sections if s not in sections_generated]
        elapsed_ms = int((self.clock() - state.started_at) * 1000)

        confidence_assessments = {
            section: state.confidence_assessments.get(section) or default_confidence()
            for section in sections_generated
        }
        overall = combine_confidence_assessments(confidence_assessments) if confidence_assessments else None

        issues = [issue for section_issues in state.validation_issues.values() for issue in section_issues]
        sections = {**existing_sections(run_input), **state.kept_sections, **state.sections}
        validation = {"is_valid": not issues, "issues": issues, "warnings": []}
        assessments_json = {k: v.model_dump(mode="json") for k, v in confidence_assessments.items()}

        data = {
            "sections": sections,
            "metadata": {
                "sections_generated": sections_generated,
                "confidence_assessments": assessments_json,
                "overall_confidence": overall.model_dump(mode="json") if overall is not None else None,
                "processing_time_ms": elapsed_ms,
                "should_regenerate_prd": True,
            },
            "validation": validation,
        }

        artifact = Artifact(
            id=f"artifact-{context.run_id}",
            kind=context.request.artifact_kind,
            version=PRD_VERSION if overall is not None else PRD_BASE_VERSION,
            label=PRD_LABEL,
            data=data,
            metadata=ArtifactMetadata(
                created_at=utcnow(),
                created_by=context.request.created_by,
                tags=sections_generated,
                confidence=confidence_score(overall),
                extras={
                    "validation": validation,
                    "confidence_assessments": assessments_json,
                    "should_regenerate": True,
                    "processing_time_ms": elapsed_ms,
                },
            ),
        )

        await self.states.discard(context.run_id)
        logger.info(f"Assembled PRD for run {context.run_id} with sections {sections_generated}")
        return SkillResult(output=data, confidence=overall, metadata={"artifact": artifact})
