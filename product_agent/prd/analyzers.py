"""
Analyzers that run before any section is written.

The clarification analyzer decides whether the request is specific enough to
write a PRD; the context analyzer extracts the themes, requirements and
constraints shared by every section writer.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from product_agent.models.base import WireModel
from product_agent.models.skill import ConfidenceAssessment, ConfidenceLevel
from product_agent.models.run import RunInput, RunSettings
from product_agent.prd import prompts
from product_agent.prd.confidence import assess_confidence, assess_context_richness, assess_input_completeness

logger = logging.getLogger(__name__)

CLARIFICATION_RESULT = "clarification"
CONTEXT_ANALYSIS_RESULT = "contextAnalysis"
SECTION_DETECTION_RESULT = "sectionDetection"

# Model confidence (0-100) under which proceeding without clarification is logged.
LOW_AI_CONFIDENCE_WARNING = 70
MAX_MISSING_FOR_HIGH = 0
MAX_MISSING_FOR_MEDIUM = 2


class ClarificationResponse(WireModel):
    needs_clarification: bool = False
    confidence: float = 100
    missing_critical: List[str] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list)

    @field_validator("missing_critical", "questions", mode="before")
    def none_to_list(cls, v):
        return v or []


class Epic(WireModel):
    title: str
    description: str = ""


class Requirements(WireModel):
    functional: List[str] = Field(default_factory=list)
    technical: List[str] = Field(default_factory=list)
    user_experience: List[str] = Field(default_factory=list)
    epics: List[Epic] = Field(default_factory=list)
    mvp_features: List[str] = Field(default_factory=list)


class ContextAnalysisResponse(WireModel):
    themes: List[str] = Field(default_factory=list)
    requirements: Requirements = Field(default_factory=Requirements)
    constraints: List[str] = Field(default_factory=list)


class AnalyzerResult(BaseModel):
    """Output of an analyzer together with its confidence."""
    name: str
    data: Dict[str, Any]
    confidence: ConfidenceAssessment
    metadata: Dict[str, Any] = Field(default_factory=dict)


def _context_payload(run_input: RunInput) -> Optional[Dict[str, Any]]:
    return run_input.context.context_payload if run_input.context else None


class ClarificationAnalyzer:
    """Decides whether the pipeline must halt for user input."""

    name = CLARIFICATION_RESULT

    def __init__(self, generator):
        self.generator = generator

    async def analyze(self, run_input: RunInput, settings: RunSettings) -> AnalyzerResult:
        response: ClarificationResponse = await self.generator.generate_structured(
            model=settings.model,
            schema=ClarificationResponse,
            prompt=prompts.clarification_prompt(run_input.message),
            temperature=0.1,
            max_tokens=min(settings.max_output_tokens, 2000),
            fallback_model=settings.fallback_model,
        )

        missing = len(response.missing_critical)
        if missing <= MAX_MISSING_FOR_HIGH:
            specificity = ConfidenceLevel.HIGH
        elif missing <= MAX_MISSING_FOR_MEDIUM:
            specificity = ConfidenceLevel.MEDIUM
        else:
            specificity = ConfidenceLevel.LOW
        payload = _context_payload(run_input)
        confidence = assess_confidence(
            input_completeness=assess_input_completeness(run_input.message, payload),
            context_richness=assess_context_richness(payload),
            validation_success=not response.needs_clarification,
            has_errors=missing > 0,
            content_specificity=specificity,
        )

        if not response.needs_clarification and response.confidence < LOW_AI_CONFIDENCE_WARNING:
            logger.warning(
                f"Proceeding with low model confidence ({response.confidence}%) for message: {run_input.message!r}"
            )

        return AnalyzerResult(
            name=self.name,
            data={
                "needs_clarification": response.needs_clarification,
                "questions": response.questions,
                "missing_critical": response.missing_critical,
                "confidence": confidence.model_dump(mode="json"),
            },
            confidence=confidence,
            metadata={
                "missing_critical_count": missing,
                "missing_helpful_count": len(response.questions),
                "original_ai_confidence": response.confidence,
            },
        )


class ContextAnalyzer:
    """Extracts themes, requirements and constraints shared by all section writers."""

    name = CONTEXT_ANALYSIS_RESULT

    def __init__(self, generator):
        self.generator = generator

    async def analyze(self, run_input: RunInput, settings: RunSettings) -> AnalyzerResult:
        context = run_input.context
        response: ContextAnalysisResponse = await self.generator.generate_structured(
            model=settings.model,
            schema=ContextAnalysisResponse,
            prompt=prompts.context_analysis_prompt(
                run_input.message,
                existing_prd=context.existing_prd if context else None,
                context_payload=_context_payload(run_input),
            ),
            temperature=settings.temperature,
            max_tokens=settings.max_output_tokens,
            fallback_model=settings.fallback_model,
        )
        data = response.model_dump()

        requirements = data["requirements"]
        item_count = len(data["themes"]) + sum(
            len(requirements[key]) for key in ("functional", "technical", "user_experience", "mvp_features")
        )
        confidence = assess_confidence(
            input_completeness=assess_input_completeness(run_input.message, _context_payload(run_input)),
            validation_success=bool(data["themes"]) and bool(requirements["functional"]),
            content_length=item_count * 20,
        )
        return AnalyzerResult(name=self.name, data=data, confidence=confidence)


# Edit-request keywords that point at a section.
SECTION_KEYWORDS = {
    "targetUsers": {"user", "users", "persona", "personas", "audience", "customer", "customers", "who"},
    "solution": {"solution", "approach", "how", "what", "build"},
    "keyFeatures": {"feature", "features", "function", "functionality", "capability", "capabilities", "requirement"},
    "successMetrics": {"metric", "metrics", "kpi", "kpis", "success", "measure", "goal", "goals"},
    "constraints": {"constraint", "constraints", "limitation", "limitations", "assumption", "assumptions", "dependency"},
}


def detect_sections_by_keywords(message: str) -> List[str]:
    """Sections whose keywords appear as words in the message, in canonical order."""
    words = set(re.findall(r"[a-z]+", (message or "").lower()))
    return [section for section, keywords in SECTION_KEYWORDS.items() if words & keywords]


class SectionDetectionResponse(WireModel):
    affected_sections: List[str] = Field(default_factory=list)
    reasoning: Dict[str, str] = Field(default_factory=dict)
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM

    @field_validator("affected_sections", mode="before")
    def known_sections_only(cls, v):
        return [s for s in (v or []) if s in prompts.SECTION_DESCRIPTIONS]


class SectionDetectionAnalyzer:
    """Picks the PRD sections an edit request touches."""

    name = SECTION_DETECTION_RESULT

    def __init__(self, generator):
        self.generator = generator

    async def analyze(self, run_input: RunInput, existing_sections: Dict[str, Any],
                      settings: RunSettings) -> AnalyzerResult:
        response: SectionDetectionResponse = await self.generator.generate_structured(
            model=settings.model,
            schema=SectionDetectionResponse,
            prompt=prompts.section_detection_prompt(run_input.message, existing_sections),
            temperature=0.1,
            max_tokens=min(settings.max_output_tokens, 2000),
            fallback_model=settings.fallback_model,
        )

        payload = _context_payload(run_input)
        if not response.affected_sections:
            logger.warning("No sections detected for edit request, using keyword fallback")
            fallback = [s for s in detect_sections_by_keywords(run_input.message) if s == "keyFeatures"]
            confidence = ConfidenceAssessment(
                level=ConfidenceLevel.LOW,
                reasons=["Fallback logic used due to unclear input"],
            )
            return AnalyzerResult(
                name=self.name,
                data={"affected_sections": fallback, "reasoning": {}, "confidence": ConfidenceLevel.LOW.value},
                confidence=confidence,
                metadata={"sections_count": len(fallback), "used_fallback": True},
            )

        confidence = assess_confidence(
            input_completeness=assess_input_completeness(run_input.message, payload),
            context_richness=assess_context_richness(payload),
            validation_success=True,
            has_errors=False,
            content_specificity=response.confidence,
        )
        return AnalyzerResult(
            name=self.name,
            data=response.model_dump(mode="json"),
            confidence=confidence,
            metadata={
                "sections_count": len(response.affected_sections),
                "ai_confidence": response.confidence.value,
                "used_fallback": False,
            },
        )
