"""
Artifact data models.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import Field

from product_agent.models.base import WireModel, utcnow


class ArtifactMetadata(WireModel):
    """Provenance and quality information attached to an artifact."""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    confidence: Optional[float] = None
    extras: Dict[str, Any] = Field(default_factory=dict)


class Artifact(WireModel):
    """Versioned output document produced by a run (PRD, persona set, ...).

    Artifacts are frozen: producing a new version means building a new
    instance, e.g. with ``model_copy(update=...)``.
    """
    id: str
    kind: str
    version: str
    label: Optional[str] = None
    data: Any = None
    metadata: ArtifactMetadata = Field(default_factory=ArtifactMetadata)

    class Config:
        frozen = True


class ArtifactSummary(WireModel):
    """Index entry describing an artifact persisted in a workspace."""
    id: str
    kind: str
    label: Optional[str] = None
    version: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
