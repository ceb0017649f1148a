"""
Run request, context and summary models.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import Field, field_validator

from product_agent.models.artifact import Artifact
from product_agent.models.base import WireModel, utcnow
from product_agent.models.events import WorkspaceHandle
from product_agent.models.skill import StepResult
from product_agent.models.subagent import SubagentRunSummary
from product_agent.models.verification import VerificationResult


class RunStatus(str, Enum):
    """Lifecycle status of a controller run."""
    PENDING = "pending"
    RUNNING = "running"
    AWAITING_INPUT = "awaiting-input"
    BLOCKED = "blocked"
    FAILED = "failed"
    COMPLETED = "completed"


class RunSettingsOverride(WireModel):
    """Per-run overrides of the application generation defaults."""
    model: Optional[str] = Field(default=None, min_length=1)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_output_tokens: Optional[int] = Field(default=None, ge=128, le=200000)


class RunInputContext(WireModel):
    context_payload: Optional[Dict[str, Any]] = None
    existing_prd: Optional[Dict[str, Any]] = Field(default=None, alias="existingPRD")
    target_section: Optional[str] = None
    conversation_history: List[Dict[str, Any]] = Field(default_factory=list)


class RunInput(WireModel):
    """Section-routing input of a PRD run."""
    message: str
    context: Optional[RunInputContext] = None
    target_sections: Optional[List[str]] = None
    settings: Optional[RunSettingsOverride] = None


class IntentPlan(WireModel):
    """Artifacts a caller wants produced alongside the primary one."""
    target_artifact: Optional[str] = None
    requested_artifacts: List[str] = Field(default_factory=list)


class RunRequest(WireModel):
    """Immutable description of what a run should produce."""
    artifact_kind: str = "prd"
    input: Optional[RunInput] = None
    created_by: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    intent_plan: Optional[IntentPlan] = None

    class Config:
        frozen = True

    @field_validator("artifact_kind")
    def validate_artifact_kind(cls, v):
        """Artifact kinds are lowercase identifiers."""
        v = (v or "").strip().lower()
        if not v:
            raise ValueError("artifact_kind must not be empty")
        return v


class RunSettings(WireModel):
    """Resolved generation settings for one run."""
    model: str
    temperature: float
    max_output_tokens: int
    fallback_model: Optional[str] = None


class RunContext(WireModel):
    """Per-run context handed by reference to planner, skill runner and verifier.

    Only ``metadata`` changes after creation. ``cancel_event`` is runtime only.
    """
    run_id: str
    request: RunRequest
    settings: RunSettings
    workspace: WorkspaceHandle
    started_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    cancel_event: asyncio.Event = Field(default_factory=asyncio.Event, exclude=True)

    class Config:
        frozen = True
        arbitrary_types_allowed = True

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class ControllerRunSummary(WireModel):
    """Outcome of one controller run attempt."""
    run_id: str
    status: RunStatus
    artifact: Optional[Artifact] = None
    skill_results: List[StepResult] = Field(default_factory=list)
    verification: Optional[VerificationResult] = None
    workspace: Optional[WorkspaceHandle] = None
    completed_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    subagents: List[SubagentRunSummary] = Field(default_factory=list)
