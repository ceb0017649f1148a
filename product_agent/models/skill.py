"""
Skill result and confidence models.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import Field

from product_agent.models.base import WireModel


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ConfidenceAssessment(WireModel):
    """Categorical confidence with the reasons that produced it."""
    level: ConfidenceLevel
    reasons: List[str] = Field(default_factory=list)
    factors: Optional[Dict[str, Any]] = None


class SkillResult(WireModel):
    """Outcome of invoking one plan node through the skill runner."""
    output: Any = None
    confidence: Optional[ConfidenceAssessment] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    usage: Optional[Dict[str, Any]] = None


class StepResult(WireModel):
    """A skill result recorded against the plan step that produced it."""
    step_id: str
    skill_id: Optional[str] = None
    result: SkillResult

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.result.metadata
