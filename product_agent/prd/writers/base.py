"""
Base class for PRD section writers.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, Field, field_validator

from product_agent.models.base import WireModel
from product_agent.models.run import RunInput, RunSettings
from product_agent.models.skill import ConfidenceAssessment
from product_agent.prd.confidence import (
    assess_confidence,
    assess_content_specificity,
    assess_context_richness,
    assess_input_completeness,
)
from product_agent.prd.merge import EditOperation, EditPlan
from product_agent.services.json_repair import parse_json_field

logger = logging.getLogger(__name__)


class SectionWriterResult(BaseModel):
    """Content produced (or kept) by a section writer."""
    name: str
    content: Any = None
    confidence: Optional[ConfidenceAssessment] = None
    validation_issues: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    should_regenerate: bool = True


class PlanOperation(WireModel):
    """Generic operation shape emitted by the model for string lists."""
    action: str = "add"
    reference: Optional[str] = None
    value: Optional[str] = None
    rationale: Optional[str] = None


class LLMPlan(WireModel):
    """Common fields of every edit-plan a section writer asks the model for."""
    mode: str = "smart_merge"
    summary: Optional[str] = None

    @field_validator("summary", mode="before")
    def coerce_summary(cls, v):
        if isinstance(v, (int, float)):
            return str(v)
        return v


def json_list(v):
    """Before-validator for list fields that may arrive JSON-encoded or null."""
    v = parse_json_field(v)
    return [] if v is None else v


def to_edit_plan(mode: str, operations: List[Tuple[str, Optional[str], Any, Optional[str]]],
                 proposed: List[Any], summary: Optional[str] = None) -> EditPlan:
    return EditPlan(
        mode=mode,
        operations=[
            EditOperation(action=action, reference=reference, value=value, rationale=rationale)
            for action, reference, value, rationale in operations
        ],
        proposed=proposed,
        summary=summary,
    )


def existing_list(existing_section: Any, field: str) -> List[Any]:
    """Read a list field from existing section content (bare list or ``{field: [...]}``)."""
    if not existing_section:
        return []
    if isinstance(existing_section, list):
        return existing_section
    if isinstance(existing_section, dict) and isinstance(existing_section.get(field), list):
        return existing_section[field]
    return []


class BaseSectionWriter(ABC):
    """Writes one PRD section: prompt, structured edit-plan, merge, validate, assess."""

    section_name: str = ""
    temperature: Optional[float] = None

    def __init__(self, generator):
        self.generator = generator

    def should_regenerate(self, run_input: RunInput, existing_section: Any) -> bool:
        """Existing content is kept when the request explicitly targets another section."""
        if not existing_section:
            return True
        if run_input.target_sections and self.section_name in run_input.target_sections:
            return True
        target = run_input.context.target_section if run_input.context else None
        return target is None or target == self.section_name

    async def _generate(self, schema: Type[BaseModel], prompt: str, settings: RunSettings) -> Any:
        return await self.generator.generate_structured(
            model=settings.model,
            schema=schema,
            prompt=prompt,
            temperature=self.temperature if self.temperature is not None else settings.temperature,
            max_tokens=settings.max_output_tokens,
            fallback_model=settings.fallback_model,
        )

    @abstractmethod
    async def generate(self, run_input: RunInput, analysis: Dict[str, Any], existing_section: Any,
                       settings: RunSettings) -> Tuple[Any, Dict[str, Any]]:
        """Produce the new section content and writer-specific metadata."""
        pass

    @abstractmethod
    def validate(self, content: Any) -> List[str]:
        """Return validation issues for the section content."""
        pass

    async def write(self, run_input: RunInput, analysis: Optional[Dict[str, Any]], existing_section: Any,
                    settings: RunSettings) -> SectionWriterResult:
        if not self.should_regenerate(run_input, existing_section):
            logger.info(f"Keeping existing {self.section_name} section")
            return SectionWriterResult(name=self.section_name, content=existing_section, should_regenerate=False)

        content, metadata = await self.generate(run_input, analysis or {}, existing_section, settings)
        issues = self.validate(content)
        payload = run_input.context.context_payload if run_input.context else None
        confidence = assess_confidence(
            input_completeness=assess_input_completeness(run_input.message, payload),
            context_richness=assess_context_richness(payload),
            content_specificity=assess_content_specificity(content),
            validation_success=not issues,
            has_errors=False,
            content_length=len(json.dumps(content, default=str)),
        )
        metadata = {**metadata, "validation_issues": issues, "source_analyzers": ["contextAnalysis"]}
        return SectionWriterResult(
            name=self.section_name,
            content=content,
            confidence=confidence,
            validation_issues=issues,
            metadata=metadata,
        )
