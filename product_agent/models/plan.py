"""
Plan graph models: the DAG of typed tasks a controller executes for one run.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import Field

from product_agent.models.base import WireModel, utcnow
from product_agent.models.run import RunContext, RunInput


class ClarificationCheckTask(WireModel):
    kind: Literal["clarification-check"] = "clarification-check"


class AnalyzeContextTask(WireModel):
    kind: Literal["analyze-context"] = "analyze-context"


class WriteSectionTask(WireModel):
    kind: Literal["write-section"] = "write-section"
    section: str


class AssemblePrdTask(WireModel):
    kind: Literal["assemble-prd"] = "assemble-prd"


class SubagentTask(WireModel):
    """Delegates the step to a registered subagent lifecycle."""
    kind: Literal["subagent"] = "subagent"
    subagent_id: str
    source_kind: Optional[str] = None
    source_step: Optional[str] = None


PlanTask = Annotated[
    Union[ClarificationCheckTask, AnalyzeContextTask, WriteSectionTask, AssemblePrdTask, SubagentTask],
    Field(discriminator="kind"),
]


class PlanNodeStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETE = "complete"
    BLOCKED = "blocked"
    FAILED = "failed"


class PlanNode(WireModel):
    """One step of a plan. ``status`` is advisory bookkeeping kept by the controller."""
    id: str
    label: str
    task: PlanTask
    status: PlanNodeStatus = PlanNodeStatus.PENDING
    depends_on: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PlanGraph(WireModel):
    id: str
    artifact_kind: str
    entry_id: str
    nodes: Dict[str, PlanNode]
    created_at: datetime = Field(default_factory=utcnow)
    version: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PlanDraft(WireModel):
    plan: PlanGraph
    context: RunContext


class SkillRequest(WireModel):
    """Invocation of one plan node through the skill runner."""
    skill_id: str
    plan_node: PlanNode
    input: Optional[RunInput] = None
    context: RunContext
