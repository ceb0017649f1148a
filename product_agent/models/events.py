"""
Progress and workspace event models.
"""

import os
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import Field

from product_agent.models.base import WireModel, utcnow


class ProgressEventType(str, Enum):
    """Progress notifications emitted by the graph controller."""
    RUN_STATUS = "run.status"
    PLAN_CREATED = "plan.created"
    PLAN_UPDATED = "plan.updated"
    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    VERIFICATION_STARTED = "verification.started"
    VERIFICATION_COMPLETED = "verification.completed"
    VERIFICATION_ISSUE = "verification.issue"
    ARTIFACT_DELIVERED = "artifact.delivered"
    SUBAGENT_STARTED = "subagent.started"
    SUBAGENT_PROGRESS = "subagent.progress"
    SUBAGENT_COMPLETED = "subagent.completed"
    SUBAGENT_FAILED = "subagent.failed"


class ProgressEvent(WireModel):
    """Append-only notification delivered to an optional subscriber."""
    type: ProgressEventType
    timestamp: datetime = Field(default_factory=utcnow)
    run_id: str
    step_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    status: Optional[str] = None


class WorkspaceEventType(str, Enum):
    PLAN = "plan"
    SKILL = "skill"
    VERIFICATION = "verification"
    ARTIFACT = "artifact"
    SUBAGENT = "subagent"
    SYSTEM = "system"


class WorkspaceEvent(WireModel):
    """Durable audit record appended to a run's workspace."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    type: WorkspaceEventType
    created_at: datetime = Field(default_factory=utcnow)
    payload: Dict[str, Any] = Field(default_factory=dict)


class WorkspaceDescriptor(WireModel):
    """Where a run's workspace lives and how it was configured."""
    run_id: str
    root: str
    created_at: datetime = Field(default_factory=utcnow)
    kind: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorkspaceHandle(WireModel):
    """Handle returned by ``ensure_workspace``."""
    descriptor: WorkspaceDescriptor

    def resolve(self, *segments: str) -> str:
        """Join path segments onto the workspace root."""
        return os.path.join(self.descriptor.root, *segments)
