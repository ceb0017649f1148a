"""Models package."""

from .artifact import Artifact, ArtifactMetadata, ArtifactSummary
from .events import (
    ProgressEvent,
    ProgressEventType,
    WorkspaceDescriptor,
    WorkspaceEvent,
    WorkspaceEventType,
    WorkspaceHandle,
)
from .plan import (
    AnalyzeContextTask,
    AssemblePrdTask,
    ClarificationCheckTask,
    PlanDraft,
    PlanGraph,
    PlanNode,
    PlanNodeStatus,
    SkillRequest,
    SubagentTask,
    WriteSectionTask,
)
from .run import (
    ControllerRunSummary,
    IntentPlan,
    RunContext,
    RunInput,
    RunInputContext,
    RunRequest,
    RunSettings,
    RunSettingsOverride,
    RunStatus,
)
from .skill import ConfidenceAssessment, ConfidenceLevel, SkillResult, StepResult
from .subagent import SubagentManifest, SubagentMetadata, SubagentResult, SubagentRunSummary
from .verification import IssueSeverity, VerificationIssue, VerificationResult, VerificationStatus

__all__ = [
    "Artifact", "ArtifactMetadata", "ArtifactSummary",
    "ProgressEvent", "ProgressEventType", "WorkspaceDescriptor", "WorkspaceEvent",
    "WorkspaceEventType", "WorkspaceHandle",
    "AnalyzeContextTask", "AssemblePrdTask", "ClarificationCheckTask", "PlanDraft",
    "PlanGraph", "PlanNode", "PlanNodeStatus", "SkillRequest", "SubagentTask", "WriteSectionTask",
    "ControllerRunSummary", "IntentPlan", "RunContext", "RunInput", "RunInputContext",
    "RunRequest", "RunSettings", "RunSettingsOverride", "RunStatus",
    "ConfidenceAssessment", "ConfidenceLevel", "SkillResult", "StepResult",
    "SubagentManifest", "SubagentMetadata", "SubagentResult", "SubagentRunSummary",
    "IssueSeverity", "VerificationIssue", "VerificationResult", "VerificationStatus",
]
