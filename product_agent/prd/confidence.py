"""
Confidence scoring for generated PRD sections.

Each section writer derives a categorical level from concrete signals (input
completeness, context richness, validation outcome, content specificity and
size); assembly combines the per-section levels into an overall rating.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Mapping, Optional

from product_agent.models.skill import ConfidenceAssessment, ConfidenceLevel

_LEVEL_SCORES = {
    ConfidenceLevel.HIGH: 3,
    ConfidenceLevel.MEDIUM: 2,
    ConfidenceLevel.LOW: 1,
}

_LEVEL_REASONS = {
    "input_completeness": {
        ConfidenceLevel.HIGH: "Input provides comprehensive information",
        ConfidenceLevel.MEDIUM: "Input provides adequate information",
        ConfidenceLevel.LOW: "Input provides limited information",
    },
    "context_richness": {
        ConfidenceLevel.HIGH: "Rich contextual information available",
        ConfidenceLevel.MEDIUM: "Some contextual information available",
        ConfidenceLevel.LOW: "Limited contextual information",
    },
    "content_specificity": {
        ConfidenceLevel.HIGH: "Generated content is highly specific and detailed",
        ConfidenceLevel.MEDIUM: "Generated content has moderate specificity",
        ConfidenceLevel.LOW: "Generated content lacks specificity",
    },
}

_SPECIFIC_TERMS = ("specific", "example", "particular", "detailed", "precise", "exactly")
_VAGUE_TERMS = ("general", "basic", "simple", "various", "multiple", "different")

CONFIDENCE_SCORES = {
    ConfidenceLevel.HIGH: 0.9,
    ConfidenceLevel.MEDIUM: 0.6,
    ConfidenceLevel.LOW: 0.3,
}


def _as_level(value: Any) -> Optional[ConfidenceLevel]:
    if value is None:
        return None
    return ConfidenceLevel(value)


def assess_confidence(
    input_completeness: Optional[ConfidenceLevel] = None,
    context_richness: Optional[ConfidenceLevel] = None,
    validation_success: Optional[bool] = None,
    content_specificity: Optional[ConfidenceLevel] = None,
    has_errors: Optional[bool] = None,
    content_length: Optional[int] = None,
) -> ConfidenceAssessment:
    """Score every supplied factor (high=3, medium=2, low=1) and map the average to a level.

    An average of 2.7 or more is high, 2.0 or more is medium, anything lower is
    low. With no factors at all the assessment defaults to medium.
    """
    reasons = []
    total = 0
    count = 0

    for name, raw in (
        ("input_completeness", input_completeness),
        ("context_richness", context_richness),
        ("content_specificity", content_specificity),
    ):
        level = _as_level(raw)
        if level is None:
            continue
        count += 1
        total += _LEVEL_SCORES[level]
        reasons.append(_LEVEL_REASONS[name][level])

    if validation_success is not None:
        count += 1
        if validation_success:
            total += 3
            reasons.append("Content passes validation checks")
        else:
            total += 1
            reasons.append("Content has validation issues")

    if has_errors is not None:
        count += 1
        if not has_errors:
            total += 3
            reasons.append("No processing errors occurred")
        else:
            total += 1
            reasons.append("Errors occurred during processing")

    if content_length is not None:
        count += 1
        if content_length > 200:
            total += 3
            reasons.append("Generated substantial content")
        elif content_length > 50:
            total += 2
            reasons.append("Generated adequate content")
        else:
            total += 1
            reasons.append("Generated minimal content")

    if count == 0:
        level = ConfidenceLevel.MEDIUM
        reasons.append("Using default confidence level - insufficient assessment data")
    else:
        average = total / count
        if average >= 2.7:
            level = ConfidenceLevel.HIGH
        elif average >= 2.0:
            level = ConfidenceLevel.MEDIUM
        else:
            level = ConfidenceLevel.LOW

    factors = {
        "input_completeness": _as_level(input_completeness),
        "context_richness": _as_level(context_richness),
        "validation_success": validation_success,
        "content_specificity": _as_level(content_specificity),
    }
    return ConfidenceAssessment(
        level=level,
        reasons=reasons,
        factors={k: (v.value if isinstance(v, ConfidenceLevel) else v) for k, v in factors.items()},
    )


def _count(payload: Optional[Mapping[str, Any]], key: str) -> int:
    if not payload:
        return 0
    value = payload.get(key)
    return len(value) if isinstance(value, (list, tuple)) else 0


def assess_input_completeness(message: str, context_payload: Optional[Mapping[str, Any]] = None) -> ConfidenceLevel:
    """Long messages backed by context are complete; either one alone is adequate."""
    length = len((message or "").strip())
    has_context = _count(context_payload, "categorizedContext") > 0 or _count(context_payload, "selectedMessages") > 0
    if length > 100 and has_context:
        return ConfidenceLevel.HIGH
    if length > 50 or has_context:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def assess_context_richness(context_payload: Optional[Mapping[str, Any]] = None) -> ConfidenceLevel:
    if not context_payload:
        return ConfidenceLevel.LOW
    total = _count(context_payload, "categorizedContext") + _count(context_payload, "selectedMessages")
    if context_payload.get("currentPRD"):
        total += 2
    if total >= 5:
        return ConfidenceLevel.HIGH
    if total >= 2:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def assess_content_specificity(content: Any) -> ConfidenceLevel:
    """Heuristic specificity of generated content (numbers, proper nouns, length vs vague wording)."""
    if not content:
        return ConfidenceLevel.LOW

    raw = content if isinstance(content, str) else json.dumps(content, default=str)
    lowered = raw.lower()
    score = 0
    if any(term in lowered for term in _SPECIFIC_TERMS):
        score += 1
    if re.search(r"\d+", lowered):
        score += 1
    if re.search(r"[A-Z][a-z]+", raw):
        score += 1
    if any(term in lowered for term in _VAGUE_TERMS):
        score -= 1
    if len(lowered) > 500:
        score += 1
    if len(lowered) < 100:
        score -= 1

    if score >= 2:
        return ConfidenceLevel.HIGH
    if score >= 0:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def combine_confidence_assessments(assessments: Mapping[str, ConfidenceAssessment]) -> ConfidenceAssessment:
    """Combine section confidences: a high half wins, then a low half, otherwise medium."""
    names = list(assessments.keys())
    counts: Dict[ConfidenceLevel, int] = {level: 0 for level in ConfidenceLevel}
    for name in names:
        counts[ConfidenceLevel(assessments[name].level)] += 1

    half = len(names) / 2
    if not names:
        level = ConfidenceLevel.MEDIUM
    elif counts[ConfidenceLevel.HIGH] >= half:
        level = ConfidenceLevel.HIGH
    elif counts[ConfidenceLevel.LOW] >= half:
        level = ConfidenceLevel.LOW
    else:
        level = ConfidenceLevel.MEDIUM

    section_reasons = [f"{name}: {reason}" for name in names for reason in assessments[name].reasons]
    return ConfidenceAssessment(
        level=level,
        reasons=[
            f"Overall assessment based on {len(names)} sections",
            f"{counts[ConfidenceLevel.HIGH]} high confidence, {counts[ConfidenceLevel.MEDIUM]} medium confidence, "
            f"{counts[ConfidenceLevel.LOW]} low confidence",
            *section_reasons[:5],
        ],
    )
