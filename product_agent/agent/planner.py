"""
PRD planner: turns a run context into a plan graph of typed tasks.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Tuple

from product_agent.agent.skill_runner import existing_sections
from product_agent.models.plan import (
    AnalyzeContextTask,
    AssemblePrdTask,
    ClarificationCheckTask,
    PlanDraft,
    PlanGraph,
    PlanNode,
    SubagentTask,
    WriteSectionTask,
)
from product_agent.models.run import RunContext
from product_agent.prd.analyzers import SectionDetectionAnalyzer, detect_sections_by_keywords
from product_agent.prd.writers import CANONICAL_SECTIONS

logger = logging.getLogger(__name__)

PLAN_VERSION = "2.1.0"
PLANNER_SOURCE = "prd-planner"

CLARIFICATION_STEP = "clarification-check"
ANALYZE_STEP = "analyze-context"
ASSEMBLE_STEP = "assemble-prd"

SECTION_LABELS = {
    "targetUsers": "Target Users",
    "solution": "Solution",
    "keyFeatures": "Key Features",
    "successMetrics": "Success Metrics",
    "constraints": "Constraints",
}


class PlanValidationError(ValueError):
    """Raised when a plan graph references unknown steps or contains a cycle."""
    pass


def section_step_id(section: str) -> str:
    return f"write-{section}"


def subagent_step_id(subagent_id: str) -> str:
    return f"subagent-{subagent_id}"


def resolve_sections(target_sections: Optional[Iterable[str]]) -> List[str]:
    """Keep the requested canonical sections in canonical order; none requested means all."""
    requested = [s for s in (target_sections or []) if s in CANONICAL_SECTIONS]
    if not requested:
        return list(CANONICAL_SECTIONS)
    return [s for s in CANONICAL_SECTIONS if s in requested]


def validate_plan(plan: PlanGraph) -> List[str]:
    """Check dependencies and acyclicity; return the node ids in topological order."""
    if plan.entry_id not in plan.nodes:
        raise PlanValidationError(f"plan entry '{plan.entry_id}' is not a known step")
    if plan.nodes[plan.entry_id].depends_on:
        raise PlanValidationError("plan entry step cannot have dependencies")

    graph: Dict[str, List[str]] = {step_id: [] for step_id in plan.nodes}
    indegree: Dict[str, int] = {step_id: 0 for step_id in plan.nodes}

    for step_id, node in plan.nodes.items():
        if node.id != step_id:
            raise PlanValidationError(f"plan step '{step_id}' is registered under a different id '{node.id}'")
        for dependency in node.depends_on:
            if dependency not in plan.nodes:
                raise PlanValidationError(f"plan dependency '{dependency}' is not a known step")
            if dependency == step_id:
                raise PlanValidationError(f"plan step '{step_id}' cannot depend on itself")
            graph[dependency].append(step_id)
            indegree[step_id] += 1

    queue = deque([step_id for step_id, degree in indegree.items() if degree == 0])
    order: List[str] = []

    while queue:
        current = queue.popleft()
        order.append(current)
        for next_step in graph[current]:
            indegree[next_step] -= 1
            if indegree[next_step] == 0:
                queue.append(next_step)

    if len(order) != len(plan.nodes):
        raise PlanValidationError("plan graph contains a cycle")
    return order


def upstream_subagents(manifest, planned) -> List:
    """Planned subagents whose artifacts ``manifest`` consumes, skipping mutual consumers."""
    return [
        other for other in planned
        if other.id != manifest.id and other.creates in manifest.consumes and manifest.creates not in other.consumes
    ]


class PrdPlanner:
    """Builds the clarification -> analysis -> sections -> assembly plan."""

    def __init__(self, registry=None, section_detector: Optional[SectionDetectionAnalyzer] = None):
        self.registry = registry
        self.section_detector = section_detector

    async def detect_sections(self, context: RunContext) -> Tuple[List[str], Dict[str, Any]]:
        """Sections an edit of an existing PRD touches.

        Model detection and keyword matches are combined; when both come up
        empty every section is rewritten.
        """
        run_input = context.request.input
        heuristic = detect_sections_by_keywords(run_input.message)
        detected: List[str] = []
        info: Dict[str, Any] = {"heuristic": heuristic}

        if self.section_detector is not None:
            try:
                result = await self.section_detector.analyze(run_input, existing_sections(run_input), context.settings)
                detected = result.data["affected_sections"]
                info.update({"detected": detected, "confidence": result.confidence.level.value,
                             "used_fallback": result.metadata.get("used_fallback", False)})
            except Exception as e:
                logger.warning(f"Section detection failed for run {context.run_id}, using keywords: {e}")
                info["error"] = str(e)

        combined = set(detected) | set(heuristic)
        sections = [s for s in CANONICAL_SECTIONS if s in combined] or list(CANONICAL_SECTIONS)
        logger.info(f"Edit of run {context.run_id} touches sections {sections}")
        return sections, info

    async def create_plan(self, context: RunContext) -> PlanDraft:
        run_input = context.request.input
        detection: Optional[Dict[str, Any]] = None
        if run_input and not run_input.target_sections and existing_sections(run_input):
            sections, detection = await self.detect_sections(context)
        else:
            sections = resolve_sections(run_input.target_sections if run_input else None)

        nodes: Dict[str, PlanNode] = {}
        nodes[CLARIFICATION_STEP] = PlanNode(
            id=CLARIFICATION_STEP,
            label="Check whether clarification is needed",
            task=ClarificationCheckTask(),
            metadata={"skill_id": "prd.check-clarification"},
        )
        nodes[ANALYZE_STEP] = PlanNode(
            id=ANALYZE_STEP,
            label="Analyze product context",
            task=AnalyzeContextTask(),
            depends_on=[CLARIFICATION_STEP],
            metadata={"skill_id": "prd.analyze-context"},
        )

        section_steps = []
        for section in sections:
            step_id = section_step_id(section)
            nodes[step_id] = PlanNode(
                id=step_id,
                label=f"Write {SECTION_LABELS.get(section, section)} section",
                task=WriteSectionTask(section=section),
                depends_on=[ANALYZE_STEP],
                metadata={"skill_id": f"prd.write-{section}", "section": section},
            )
            section_steps.append(step_id)

        nodes[ASSEMBLE_STEP] = PlanNode(
            id=ASSEMBLE_STEP,
            label="Assemble PRD",
            task=AssemblePrdTask(),
            depends_on=section_steps or [ANALYZE_STEP],
            metadata={"skill_id": "prd.assemble-prd"},
        )

        subagents = self._requested_subagents(context)
        for manifest in subagents:
            step_id = subagent_step_id(manifest.id)
            nodes[step_id] = PlanNode(
                id=step_id,
                label=f"Run {manifest.label}",
                task=SubagentTask(subagent_id=manifest.id, source_kind="prd", source_step=ASSEMBLE_STEP),
                depends_on=[ASSEMBLE_STEP] + [subagent_step_id(m.id) for m in upstream_subagents(manifest, subagents)],
                metadata={"subagent_id": manifest.id, "artifact_kind": manifest.creates},
            )

        plan = PlanGraph(
            id=f"plan-{context.run_id}",
            artifact_kind=context.request.artifact_kind,
            entry_id=CLARIFICATION_STEP,
            nodes=nodes,
            version=PLAN_VERSION,
            metadata={"source": PLANNER_SOURCE, "requested_sections": sections},
        )
        if detection is not None:
            plan.metadata["section_detection"] = detection
        validate_plan(plan)
        logger.info(f"Created plan {plan.id} with {len(nodes)} steps")
        return PlanDraft(plan=plan, context=context)

    async def refine_plan(self, plan: PlanGraph, context: RunContext) -> PlanDraft:
        return PlanDraft(plan=plan, context=context)

    def _requested_subagents(self, context: RunContext):
        intent = context.request.intent_plan
        if not intent or self.registry is None:
            return []
        manifests = []
        for kind in intent.requested_artifacts:
            if kind == context.request.artifact_kind:
                continue
            for manifest in self.registry.filter_by_artifact(kind):
                if "prd" in manifest.consumes and manifest not in manifests:
                    manifests.append(manifest)
        return manifests
