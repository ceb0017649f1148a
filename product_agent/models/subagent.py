"""
Subagent manifest and result models.
"""

from typing import Any, Dict, List, Optional
from pydantic import Field, field_validator

from product_agent.models.artifact import Artifact
from product_agent.models.base import WireModel


class SubagentManifest(WireModel):
    """Static description of a subagent registered with the engine."""
    id: str
    package: str
    version: str
    label: str
    creates: str
    consumes: List[str] = Field(default_factory=list)
    capabilities: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    entry: str
    export_name: str = "create_subagent"
    tags: List[str] = Field(default_factory=list)

    @field_validator("id")
    def validate_id(cls, v):
        """Manifest ids must be non-empty once trimmed."""
        v = (v or "").strip()
        if not v:
            raise ValueError("Subagent manifest requires a non-empty id")
        return v


class SubagentMetadata(WireModel):
    """Runtime description a subagent lifecycle reports about itself."""
    id: str
    label: str
    version: str
    artifact_kind: str
    source_kinds: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class SubagentResult(WireModel):
    """Artifact produced by a subagent; absent only when its run awaits input."""
    artifact: Optional[Artifact] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SubagentRunSummary(WireModel):
    """Subagent outcome merged into the parent run summary."""
    subagent_id: str
    step_id: Optional[str] = None
    artifact: Artifact
    metadata: Dict[str, Any] = Field(default_factory=dict)
