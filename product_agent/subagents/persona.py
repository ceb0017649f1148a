"""
Persona builder subagent: deterministic extraction of persona profiles from
the sections of a PRD artifact. No model calls.
"""

from __future__ import annotations

import inspect
import re
import uuid
from typing import Any, Dict, List, Optional, Set

from product_agent.models.artifact import Artifact, ArtifactMetadata
from product_agent.models.base import utcnow
from product_agent.models.subagent import SubagentManifest, SubagentMetadata, SubagentResult
from product_agent.prd.merge import dedupe
from product_agent.subagents.base import SubagentError, SubagentLifecycle, SubagentRequest

MAX_PERSONAS = 4
DEFAULT_CONFIDENCE = 0.58

persona_manifest = SubagentManifest(
    id="persona.builder",
    package="product_agent.subagents.persona",
    version="0.1.0",
    label="Persona Builder",
    creates="persona",
    consumes=["prd"],
    capabilities=["analyze", "synthesize"],
    description="Transforms PRD sections into structured persona summaries.",
    entry="product_agent.subagents.persona",
    export_name="create_persona_builder",
    tags=["persona", "analysis", "synthesis"],
)

_GOAL_PATTERNS = (
    re.compile(r"(needs to|needs|wants to|aims to|tries to|hopes to|in order to|so they can)\s+([^.;]+)", re.I),
    re.compile(r"(seeks to|focused on|goal is to)\s+([^.;]+)", re.I),
)
_FRUSTRATION_PATTERNS = (
    re.compile(r"(struggles with|frustrated by|blocked by|pain points? include)\s+([^.;]+)", re.I),
    re.compile(r"(but|however)\s+([^.;]+)", re.I),
)


def _normalize_key(key: str) -> str:
    return re.sub(r"[\s_-]", "", key.lower())


def _find_section(sections: Dict[str, Any], candidates: List[str]) -> Any:
    wanted = {_normalize_key(c) for c in candidates}
    for key, value in sections.items():
        if _normalize_key(key) in wanted:
            return value
    return None


def _strings(value: Any, nested_key: Optional[str] = None) -> List[str]:
    """Trimmed, de-duplicated strings from a list or from ``{nested_key: [...]}``."""
    if isinstance(value, dict) and nested_key:
        value = value.get(nested_key)
    if not isinstance(value, list):
        return []
    return dedupe([v.strip() for v in value if isinstance(v, str) and v.strip()])


def _sentence_case(text: str) -> str:
    text = text.strip()
    return text[:1].upper() + text[1:]


def infer_persona_name(summary: str, index: int) -> str:
    cleaned = re.sub(r"^[-*•–]+", "", summary).strip()
    if not cleaned:
        return f"Persona {index + 1}"

    colon, dash, period = cleaned.find(":"), cleaned.find(" - "), cleaned.find(".")
    if 0 < colon < 80:
        candidate = cleaned[:colon]
    elif 0 < dash < 80:
        candidate = cleaned[:dash]
    elif 0 < period < 80:
        candidate = cleaned[:period]
    else:
        candidate = re.split(r"[,;]", cleaned)[0]

    candidate = re.sub(r"\(.*?\)", "", candidate).strip()
    if not candidate:
        return f"Persona {index + 1}"
    return " ".join(word[:1].upper() + word[1:] for word in candidate.split()[:5])


def _match_phrases(summary: str, patterns) -> List[str]:
    phrases = []
    for pattern in patterns:
        for match in pattern.finditer(summary):
            phrase = match.group(2).strip()
            if phrase:
                phrases.append(_sentence_case(phrase))
    return phrases


def derive_tags(name: str, summary: str) -> List[str]:
    tokens = [t for t in re.sub(r"[^\w\s]", " ", f"{name} {summary}").split() if 3 <= len(t) <= 20]
    capitalized = [t for t in tokens if t[:1].isupper()]
    pool = capitalized or tokens
    return dedupe([t.lower() for t in pool])[:4]


def _serialize_metric(metric: Any) -> Optional[str]:
    if not isinstance(metric, dict):
        return None
    name = str(metric.get("metric") or "").strip()
    if not name:
        return None
    target = str(metric.get("target") or "").strip()
    timeline = str(metric.get("timeline") or "").strip()
    parts = [name]
    if target:
        parts.append(f"Target: {target}")
    if timeline:
        parts.append(f"Timeline: {timeline}")
    return " | ".join(parts)


def extract_inputs(sections: Dict[str, Any], used: Set[str]) -> Dict[str, Any]:
    """Pull the persona-relevant facts out of PRD sections, recording which sections contributed."""
    target_users = _strings(_find_section(sections, ["targetusers", "personas", "audience"]), "targetUsers")[:MAX_PERSONAS]
    key_features = _strings(_find_section(sections, ["keyfeatures", "features", "capabilities"]), "keyFeatures")[:6]

    constraint_section = _find_section(sections, ["constraints", "limitations", "assumptions"])
    constraints = _strings(constraint_section)
    if isinstance(constraint_section, dict):
        constraints = dedupe(
            constraints + _strings(constraint_section, "constraints") + _strings(constraint_section, "assumptions")
        )
    constraints = constraints[:6]

    metric_section = _find_section(sections, ["successmetrics", "metrics", "outcomes"])
    if isinstance(metric_section, dict):
        metric_section = metric_section.get("successMetrics")
    metrics = [m for m in (_serialize_metric(e) for e in (metric_section or [])) if m][:6]

    solution_section = _find_section(sections, ["solution", "overview"])
    solution = None
    if isinstance(solution_section, dict):
        solution = (solution_section.get("solutionOverview") or solution_section.get("approach") or "").strip() or None

    for name, present in (
        ("targetUsers", target_users),
        ("keyFeatures", key_features),
        ("constraints", constraints),
        ("successMetrics", metrics),
        ("solution", solution),
    ):
        if present:
            used.add(name)

    return {
        "target_users": target_users,
        "key_features": key_features,
        "constraints": constraints,
        "metrics": metrics,
        "solution": solution,
    }


def build_personas(target_users: List[str], key_features: List[str], constraints: List[str],
                   metrics: List[str], solution: Optional[str]) -> List[Dict[str, Any]]:
    inputs = target_users or [solution or "Primary target user inferred from PRD context."]
    personas = []
    for index, summary in enumerate(inputs[:MAX_PERSONAS]):
        summary = summary.strip() or "Primary target user persona derived from PRD context."
        name = infer_persona_name(summary, index)
        goals = _match_phrases(summary, _GOAL_PATTERNS) or key_features[:2] or metrics[:1]
        frustrations = _match_phrases(summary, _FRUSTRATION_PATTERNS) or constraints[:2]
        personas.append({
            "id": f"persona-{index + 1}",
            "name": name,
            "summary": summary,
            "goals": dedupe(goals)[:3],
            "frustrations": dedupe(frustrations)[:3],
            "opportunities": key_features[:3],
            "success_indicators": metrics[:3],
            "quote": summary if summary.endswith(".") else f"{summary}.",
            "tags": derive_tags(name, summary),
        })
    return personas


class PersonaBuilderSubagent(SubagentLifecycle):

    def __init__(self, id_factory=None):
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.metadata = SubagentMetadata(
            id=persona_manifest.id,
            label=persona_manifest.label,
            version=persona_manifest.version,
            artifact_kind=persona_manifest.creates,
            source_kinds=persona_manifest.consumes,
            description=persona_manifest.description,
            tags=persona_manifest.tags,
        )

    async def execute(self, request: SubagentRequest) -> SubagentResult:
        source = request.source_artifact
        if source is None or not isinstance(source.data, dict) or "sections" not in source.data:
            raise SubagentError("Persona builder expected PRD sections in the source artifact")

        used: Set[str] = set()
        facts = extract_inputs(source.data.get("sections") or {}, used)
        personas = build_personas(
            facts["target_users"], facts["key_features"], facts["constraints"], facts["metrics"], facts["solution"]
        )
        if request.emit:
            emitted = request.emit({"type": "personas.built", "count": len(personas)})
            if inspect.isawaitable(emitted):
                await emitted

        generated_at = utcnow()
        notes = None
        if not facts["target_users"]:
            notes = "Personas inferred from broader PRD context due to missing target users section."
        sections_used = sorted(used)

        artifact = Artifact(
            id=f"artifact-{self.id_factory()}",
            kind="persona",
            version="1.0.0",
            label="Persona Bundle",
            data={
                "personas": personas,
                "source": {
                    "artifact_id": source.id,
                    "artifact_kind": source.kind,
                    "run_id": request.run.run_id,
                    "sections_used": sections_used,
                },
                "generated_at": generated_at.isoformat(),
                "notes": notes,
            },
            metadata=ArtifactMetadata(
                created_at=generated_at,
                created_by=request.run.request.created_by,
                tags=["persona", "derived"],
                confidence=source.metadata.confidence if source.metadata.confidence is not None else DEFAULT_CONFIDENCE,
                extras={
                    "source_artifact_id": source.id,
                    "persona_count": len(personas),
                    "sections_used": sections_used,
                    "source_artifact_kind": source.kind,
                },
            ),
        )
        return SubagentResult(
            artifact=artifact,
            metadata={"persona_count": len(personas), "sections_used": sections_used, "source_artifact_id": source.id},
        )


def create_persona_builder() -> PersonaBuilderSubagent:
    return PersonaBuilderSubagent()
