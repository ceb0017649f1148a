"""
Verification result models.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import Field

from product_agent.models.artifact import Artifact
from product_agent.models.base import WireModel


class VerificationStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    NEEDS_REVIEW = "needs-review"


class IssueSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class VerificationIssue(WireModel):
    id: str
    message: str
    severity: IssueSeverity = IssueSeverity.WARNING
    suggested_action: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VerificationResult(WireModel):
    """Verifier verdict over a delivered artifact."""
    status: VerificationStatus
    artifact: Artifact
    issues: List[VerificationIssue] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
