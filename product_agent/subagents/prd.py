"""
PRD subagent: runs a nested PRD controller run and hands back its artifact.
"""

from __future__ import annotations

import logging
import uuid

from product_agent.models.run import RunInput, RunRequest, RunStatus
from product_agent.models.subagent import SubagentManifest, SubagentMetadata, SubagentResult
from product_agent.subagents.base import SubagentError, SubagentLifecycle, SubagentRequest

logger = logging.getLogger(__name__)

prd_manifest = SubagentManifest(
    id="prd.core.agent",
    package="product_agent.subagents.prd",
    version="1.0.0",
    label="PRD Generator",
    creates="prd",
    consumes=["prompt", "brief", "persona"],
    capabilities=["plan", "generate", "verify"],
    description="Runs the PRD orchestration flow as a nested run.",
    entry="product_agent.subagents.prd",
    export_name="create_prd_subagent",
    tags=["prd", "product"],
)


class PrdSubagent(SubagentLifecycle):

    def __init__(self, controller_factory, id_factory=None):
        self.controller_factory = controller_factory
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.metadata = SubagentMetadata(
            id=prd_manifest.id,
            label=prd_manifest.label,
            version=prd_manifest.version,
            artifact_kind=prd_manifest.creates,
            source_kinds=prd_manifest.consumes,
            description=prd_manifest.description,
            tags=prd_manifest.tags,
        )

    async def execute(self, request: SubagentRequest) -> SubagentResult:
        raw_input = request.params.get("input")
        if not raw_input:
            raise SubagentError("PRD subagent requires params.input")
        run_input = raw_input if isinstance(raw_input, RunInput) else RunInput.model_validate(raw_input)

        parent = request.run
        child_run_id = f"prd-subagent-{self.id_factory()}"
        child_request = RunRequest(
            artifact_kind=prd_manifest.creates,
            input=run_input,
            created_by=parent.request.created_by,
            attributes={"parent_run_id": parent.run_id, "subagent_id": prd_manifest.id},
        )

        from product_agent.agent.controller import ControllerStartOptions

        controller = self.controller_factory()
        logger.info(f"Starting nested PRD run {child_run_id} for parent run {parent.run_id}")
        summary = await controller.start(
            child_request,
            ControllerStartOptions(run_id=child_run_id, on_event=request.emit, raise_on_error=True),
        )

        if summary.status == RunStatus.AWAITING_INPUT:
            return SubagentResult(metadata={
                "run_status": summary.status.value,
                "child_run_id": child_run_id,
                "clarification": summary.metadata.get("clarification"),
            })
        if summary.status != RunStatus.COMPLETED or summary.artifact is None:
            raise SubagentError(f"Nested PRD run {child_run_id} ended with status {summary.status.value}")

        source = request.source_artifact
        extras = {
            **summary.artifact.metadata.extras,
            "source": {
                "parent_run_id": parent.run_id,
                "parent_artifact_kind": source.kind if source else None,
                "source_artifact_id": source.id if source else None,
                "subagent_id": prd_manifest.id,
            },
        }
        artifact = summary.artifact.model_copy(update={
            "metadata": summary.artifact.metadata.model_copy(update={"extras": extras}),
        })
        return SubagentResult(
            artifact=artifact,
            metadata={
                "child_run_id": child_run_id,
                "verification_status": summary.verification.status.value if summary.verification else None,
            },
        )


def create_prd_subagent() -> PrdSubagent:
    from product_agent.agent.composition import create_prd_controller

    return PrdSubagent(controller_factory=create_prd_controller)
