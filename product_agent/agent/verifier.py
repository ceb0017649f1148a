"""
Non-fatal completeness checks run on an artifact before delivery.
"""

from typing import Callable, Dict, List, Optional

from product_agent.models.artifact import Artifact
from product_agent.models.base import utcnow
from product_agent.models.run import RunContext
from product_agent.models.verification import (
    IssueSeverity,
    VerificationIssue,
    VerificationResult,
    VerificationStatus,
)
from product_agent.prd.writers import CANONICAL_SECTIONS

VerificationCheck = Callable[[Artifact], List[VerificationIssue]]

REVIEWER = "prd-verifier"


def check_prd(artifact: Artifact) -> List[VerificationIssue]:
    data = artifact.data if isinstance(artifact.data, dict) else {}
    sections = data.get("sections") or {}
    issues: List[VerificationIssue] = []

    missing = [section for section in CANONICAL_SECTIONS if not sections.get(section)]
    if missing:
        issues.append(VerificationIssue(
            id="prd.missing_sections",
            message=f"Missing sections: {', '.join(missing)}",
            severity=IssueSeverity.WARNING,
            suggested_action="Regenerate the missing sections",
            metadata={"missing_sections": missing},
        ))

    validation = data.get("validation")
    if validation and validation.get("is_valid") is False:
        issues.append(VerificationIssue(
            id="prd.validation_failed",
            message="PRD validation reported issues",
            severity=IssueSeverity.WARNING,
            suggested_action="Review validation warnings before delivery",
            metadata={"issues": validation.get("issues", []), "warnings": validation.get("warnings", [])},
        ))

    return issues


def verification_status(issues: List[VerificationIssue]) -> VerificationStatus:
    if any(issue.severity == IssueSeverity.ERROR for issue in issues):
        return VerificationStatus.FAIL
    if issues:
        return VerificationStatus.NEEDS_REVIEW
    return VerificationStatus.PASS


class ArtifactVerifier:
    """Runs the checks registered for an artifact's kind; unknown kinds pass."""

    def __init__(self, checks: Optional[Dict[str, List[VerificationCheck]]] = None):
        self.checks: Dict[str, List[VerificationCheck]] = checks if checks is not None else {"prd": [check_prd]}

    def register(self, kind: str, check: VerificationCheck) -> None:
        self.checks.setdefault(kind, []).append(check)

    async def verify(self, artifact: Artifact, context: Optional[RunContext] = None) -> VerificationResult:
        verified_at = utcnow()
        stamped = artifact.model_copy(
            update={"metadata": artifact.metadata.model_copy(update={"updated_at": verified_at})}
        )
        issues: List[VerificationIssue] = []
        for check in self.checks.get(artifact.kind, []):
            issues.extend(check(stamped))

        return VerificationResult(
            status=verification_status(issues),
            artifact=stamped,
            issues=issues,
            metadata={"verified_at": verified_at.isoformat(), "reviewer": REVIEWER},
        )
