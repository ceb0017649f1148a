"""
Story map builder subagent: turns the PRD, personas and research of a run
into epics of user stories with release notes, through one structured
model call.
"""

from __future__ import annotations

import inspect
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from product_agent.models.artifact import Artifact, ArtifactMetadata
from product_agent.models.base import WireModel, utcnow
from product_agent.models.subagent import SubagentManifest, SubagentMetadata, SubagentResult
from product_agent.prd.merge import dedupe
from product_agent.subagents.base import SubagentError, SubagentLifecycle, SubagentRequest

logger = logging.getLogger(__name__)

MAX_PERSONAS = 6
MAX_FINDINGS = 8
HISTORY_TURNS = 6
STORY_MAP_VERSION = "1.0.0"
EFFORT_SIZES = ("xs", "s", "m", "l", "xl")

storymap_manifest = SubagentManifest(
    id="storymap.builder",
    package="product_agent.subagents.storymap",
    version="0.1.0",
    label="Story Map Builder",
    creates="story-map",
    consumes=["prd", "persona", "research"],
    capabilities=["synthesize", "plan"],
    description="Generates user story maps from PRD, personas, and research.",
    entry="product_agent.subagents.storymap",
    export_name="create_storymap_builder",
    tags=["storymap", "planning", "user-stories"],
)


class PersonaLink(WireModel):
    persona_id: str
    goal: str
    pain_points: List[str] = Field(default_factory=list)


class Story(WireModel):
    id: Optional[str] = None
    title: str
    as_a: str
    i_want: str
    so_that: str
    acceptance_criteria: List[str] = Field(default_factory=list)
    effort: Optional[str] = None
    confidence: Optional[float] = None
    personas: List[PersonaLink] = Field(default_factory=list)

    @field_validator("effort", mode="before")
    def known_effort_only(cls, v):
        v = (v or "").strip().lower() if isinstance(v, str) else None
        return v if v in EFFORT_SIZES else None


class Epic(WireModel):
    id: Optional[str] = None
    name: str
    outcome: str = ""
    stories: List[Story] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    metrics: List[str] = Field(default_factory=list)


class ReleaseRing(WireModel):
    label: str
    target_date: Optional[str] = None
    epic_ids: List[str] = Field(default_factory=list)


class RoadmapNotes(WireModel):
    release_rings: List[ReleaseRing] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)


class StoryMapResponse(WireModel):
    label: str = "Story Map"
    personas_referenced: List[str] = Field(default_factory=list)
    epics: List[Epic] = Field(default_factory=list)
    roadmap_notes: Optional[RoadmapNotes] = None


def _latest(artifacts: Dict[str, List[Artifact]], kind: str) -> Optional[Artifact]:
    items = artifacts.get(kind) or []
    return items[-1] if items else None


def _strings(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def resolve_context(source_artifacts: Dict[str, List[Artifact]], source_artifact: Optional[Artifact]) -> Dict[str, Any]:
    """Latest PRD, persona, research and story map data of the run, with the kinds that contributed."""
    artifacts = dict(source_artifacts or {})
    if source_artifact is not None and not artifacts.get(source_artifact.kind):
        artifacts[source_artifact.kind] = [source_artifact]

    context: Dict[str, Any] = {"sources_used": []}

    prd = _latest(artifacts, "prd")
    if prd is not None and isinstance(prd.data, dict):
        sections = prd.data.get("sections") or prd.data
        context["prd_sections"] = sections
        solution = sections.get("solution") if isinstance(sections, dict) else None
        if isinstance(solution, dict) and solution.get("solutionOverview"):
            context["prd_summary"] = solution["solutionOverview"]
        context["sources_used"].append("prd")

    personas = _latest(artifacts, "persona")
    if personas is not None and isinstance(personas.data, dict):
        mapped = [
            {
                "id": entry.get("id") if isinstance(entry.get("id"), str) else "persona",
                "name": entry.get("name") if isinstance(entry.get("name"), str) else None,
                "goals": _strings(entry.get("goals"))[:5],
                "frustrations": _strings(entry.get("frustrations"))[:5],
            }
            for entry in (personas.data.get("personas") or [])[:MAX_PERSONAS]
            if isinstance(entry, dict)
        ]
        if mapped:
            context["personas"] = mapped
            context["sources_used"].append("persona")

    research = _latest(artifacts, "research")
    if research is not None and isinstance(research.data, dict):
        findings = [
            (f.get("summary") or f.get("insight")) if isinstance(f, dict) else f
            for f in research.data.get("findings") or []
        ]
        recommendations = [
            r.get("action") if isinstance(r, dict) else r for r in research.data.get("recommendations") or []
        ]
        context["research"] = {
            "findings": _strings(findings)[:MAX_FINDINGS],
            "recommendations": _strings(recommendations)[:MAX_FINDINGS],
        }
        context["sources_used"].append("research")

    existing = _latest(artifacts, "story-map")
    if existing is not None:
        context["existing_story_map"] = existing.data
        context["sources_used"].append("story-map")

    return context


def _format(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n".join(f"- {v if isinstance(v, str) else json.dumps(v, default=str)}" for v in value)
    return json.dumps(value, indent=2, default=str)


def conversation_summary(run_input: Any) -> Optional[str]:
    history = (run_input or {}).get("context", {}) or {}
    entries = [
        e for e in history.get("conversationHistory") or [] if isinstance(e, dict) and isinstance(e.get("content"), str)
    ]
    if not entries:
        return None
    return " | ".join(f"{e.get('role') or 'user'}: {e['content'].strip()}" for e in entries[-HISTORY_TURNS:])


def story_map_prompt(context: Dict[str, Any], message: Optional[str] = None,
                     conversation: Optional[str] = None) -> str:
    lines = [
        "You are a product strategist creating a user story map from product artifacts.",
        "",
        "Task: Generate epics and user stories based on the provided PRD, personas, and research.",
    ]
    if message:
        lines += ["", "User request:", message]

    lines += ["", "=== CONTEXT ==="]
    if context.get("prd_summary"):
        lines += ["", "PRD Summary:", context["prd_summary"]]
    sections = context.get("prd_sections") or {}
    for key, title in (("targetUsers", "Target Users"), ("keyFeatures", "Key Features"), ("solution", "Solution")):
        if sections.get(key):
            lines += ["", f"{title}:", _format(sections[key])]

    if context.get("personas"):
        lines += ["", "Personas:"]
        for persona in context["personas"]:
            lines.append(f"- {persona['id']}{' (' + persona['name'] + ')' if persona.get('name') else ''}")
            if persona["goals"]:
                lines.append(f"  Goals: {'; '.join(persona['goals'])}")
            if persona["frustrations"]:
                lines.append(f"  Frustrations: {'; '.join(persona['frustrations'])}")

    research = context.get("research") or {}
    if research.get("findings"):
        lines += ["", "Research Findings:"] + [f"- {f}" for f in research["findings"]]
    if research.get("recommendations"):
        lines += ["", "Recommendations:"] + [f"- {r}" for r in research["recommendations"]]

    if conversation:
        lines += ["", "Conversation context:", conversation]
    if context.get("existing_story_map"):
        lines += ["", "Note: An existing story map is present. Prefer incremental improvements over duplication."]

    lines += [
        "",
        "=== INSTRUCTIONS ===",
        "- Create one epic per major feature or user goal from the PRD",
        "- Add stories to cover each persona's needs within the epic",
        "- Keep stories focused and split large ones",
        "- Write acceptance criteria that are specific and testable",
        '- Use persona IDs in the "asA" field when applicable',
        "- Estimate effort: xs (hours), s (1-2 days), m (3-5 days), l (1-2 weeks), xl (2+ weeks)",
        "- Do not invent PII or fake data",
        "",
        "Output JSON with: label, personasReferenced (persona ids), "
        "epics [{ id, name, outcome, stories [{ id, title, asA, iWant, soThat, acceptanceCriteria, effort, "
        "personas [{ personaId, goal }] }], dependencies, metrics }], "
        "roadmapNotes { releaseRings [{ label, targetDate, epicIds }], risks, assumptions }",
        "Return ONLY valid JSON. No markdown, no commentary.",
    ]
    return "\n".join(lines)


def normalize_story_map(response: StoryMapResponse) -> Dict[str, Any]:
    """Fill missing epic and story ids and collect every referenced persona."""
    referenced = list(response.personas_referenced)
    epics = []
    story_number = 0
    for epic_index, epic in enumerate(response.epics):
        stories = []
        for story in epic.stories:
            story_number += 1
            referenced.extend(link.persona_id for link in story.personas)
            stories.append(story.model_copy(update={"id": story.id or f"story-{story_number}"}))
        epics.append(epic.model_copy(update={"id": epic.id or f"epic-{epic_index + 1}", "stories": stories}))

    data = response.model_copy(update={"epics": epics, "personas_referenced": dedupe(referenced)})
    payload = data.model_dump(mode="json", by_alias=True)
    payload["version"] = STORY_MAP_VERSION
    return payload


class StoryMapBuilderSubagent(SubagentLifecycle):

    def __init__(self, generator, id_factory=None):
        self.generator = generator
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.metadata = SubagentMetadata(
            id=storymap_manifest.id,
            label=storymap_manifest.label,
            version=storymap_manifest.version,
            artifact_kind=storymap_manifest.creates,
            source_kinds=storymap_manifest.consumes,
            description=storymap_manifest.description,
            tags=storymap_manifest.capabilities,
        )

    async def execute(self, request: SubagentRequest) -> SubagentResult:
        context = resolve_context(request.source_artifacts, request.source_artifact)
        if "prd" not in context["sources_used"] and "persona" not in context["sources_used"]:
            raise SubagentError("Story map builder expected a PRD or persona artifact")

        run_input = request.params.get("input") or {}
        prompt = story_map_prompt(context, run_input.get("message"), conversation_summary(run_input))
        settings = request.run.settings
        temperature = settings.temperature
        max_tokens = settings.max_output_tokens

        logger.info(f"Building story map for run {request.run.run_id} from {context['sources_used']}")
        try:
            response: StoryMapResponse = await self.generator.generate_structured(
                model=settings.model,
                schema=StoryMapResponse,
                prompt=prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                fallback_model=settings.fallback_model,
            )
        except Exception as e:
            raise SubagentError(f"Story map generation failed: {e}") from e
        if not response.epics:
            raise SubagentError("Story map generation returned no epics")

        data = normalize_story_map(response)
        story_count = sum(len(epic["stories"]) for epic in data["epics"])
        if request.emit:
            emitted = request.emit({"type": "storymap.built", "epics": len(data["epics"]), "stories": story_count})
            if inspect.isawaitable(emitted):
                await emitted

        source = request.source_artifact
        artifact = Artifact(
            id=f"artifact-{request.run.run_id}-{self.id_factory()}",
            kind=storymap_manifest.creates,
            version=STORY_MAP_VERSION,
            label=data["label"] or "Story Map",
            data=data,
            metadata=ArtifactMetadata(
                created_at=utcnow(),
                created_by=request.run.request.created_by,
                tags=["story-map"],
                extras={
                    "sources_used": context["sources_used"],
                    "subagent_id": storymap_manifest.id,
                    "parent_run_id": request.run.run_id,
                    "source_artifact_id": source.id if source else None,
                },
            ),
        )
        return SubagentResult(
            artifact=artifact,
            metadata={
                "model": settings.model,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "prompt_length": len(prompt),
                "sources_used": context["sources_used"],
                "epic_count": len(data["epics"]),
                "story_count": story_count,
            },
        )


def create_storymap_builder() -> StoryMapBuilderSubagent:
    from product_agent.services.generation import GenerationService

    return StoryMapBuilderSubagent(GenerationService())
