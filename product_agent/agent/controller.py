"""
Graph controller: plans a run, executes its steps in dependency order,
persists artifacts, verifies the result and returns a run summary.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from product_agent.agent.graph import compile_plan_graph, recursion_limit
from product_agent.agent.planner import validate_plan
from product_agent.core.config import settings as app_settings
from product_agent.models.artifact import Artifact, ArtifactMetadata
from product_agent.models.base import utcnow
from product_agent.models.events import ProgressEvent, ProgressEventType, WorkspaceEvent, WorkspaceEventType
from product_agent.models.plan import PlanGraph, PlanNode, PlanNodeStatus, SkillRequest, SubagentTask
from product_agent.models.run import (
    ControllerRunSummary,
    RunContext,
    RunInput,
    RunInputContext,
    RunRequest,
    RunSettings,
    RunSettingsOverride,
    RunStatus,
)
from product_agent.models.skill import StepResult
from product_agent.models.subagent import SubagentRunSummary
from product_agent.subagents.base import SubagentError, SubagentRequest

logger = logging.getLogger(__name__)

EventSink = Callable[[ProgressEvent], Any]


class RunInputError(Exception):
    """Raised when a run request is missing required input."""
    pass


class RunNotFoundError(Exception):
    """Raised when a run id has no recorded state."""
    pass


class RunCancelledError(Exception):
    """Raised when a cancelled run ends and errors are not suppressed."""
    pass


class ControllerStartOptions(BaseModel):
    """Per-call controller options."""
    on_event: Optional[Callable[[ProgressEvent], Any]] = None
    raise_on_error: bool = True
    run_id: Optional[str] = None
    # Set by resume.
    attempt: int = 1
    # Only used by resume: new input for a run awaiting clarification.
    input: Optional[Union[RunInput, str]] = None

    class Config:
        arbitrary_types_allowed = True


def resolve_run_settings(override: Optional[RunSettingsOverride]) -> RunSettings:
    """Application generation defaults overlaid with per-run overrides."""
    override = override or RunSettingsOverride()
    return RunSettings(
        model=override.model or app_settings.DEFAULT_MODEL,
        temperature=app_settings.AI_TEMPERATURE if override.temperature is None else override.temperature,
        max_output_tokens=override.max_output_tokens or app_settings.AI_MAX_TOKENS,
        fallback_model=app_settings.GENERATION_FALLBACK_MODEL,
    )


def merge_resume_input(original: RunInput, new_input: Union[RunInput, str],
                       clarification: Optional[Dict[str, Any]]) -> RunInput:
    """Fold a clarification answer into the original run input."""
    history: List[Dict[str, Any]] = list(original.context.conversation_history) if original.context else []
    for question in (clarification or {}).get("questions", []):
        history.append({"role": "assistant", "content": question})

    if isinstance(new_input, str):
        history.append({"role": "user", "content": new_input})
        merged = original.model_copy(update={"message": f"{original.message}\n\n{new_input}"})
    else:
        history.append({"role": "user", "content": new_input.message})
        merged = new_input
        if merged.context is None and original.context is not None:
            merged = merged.model_copy(update={"context": original.context})
        if merged.target_sections is None:
            merged = merged.model_copy(update={"target_sections": original.target_sections})
        if merged.settings is None:
            merged = merged.model_copy(update={"settings": original.settings})

    context = merged.context.model_copy(update={"conversation_history": history}) if merged.context else None
    if context is None:
        context = RunInputContext(conversation_history=history)
    return merged.model_copy(update={"context": context})


class RunExecution:
    """Mutable bookkeeping of one in-flight run attempt."""

    def __init__(self, context: RunContext, options: ControllerStartOptions):
        self.context = context
        self.options = options
        self.plan: Optional[PlanGraph] = None
        self.status = RunStatus.PENDING
        self.step_results: List[StepResult] = []
        self.artifacts_by_step: Dict[str, Artifact] = {}
        self.artifacts_by_kind: Dict[str, List[Artifact]] = {}
        self.artifact: Optional[Artifact] = None
        self.subagents: List[SubagentRunSummary] = []
        self.halt_reason: Optional[str] = None
        self.clarification: Optional[Dict[str, Any]] = None
        self.error: Optional[BaseException] = None
        self.failed_step: Optional[str] = None

    @property
    def run_id(self) -> str:
        return self.context.run_id

    @property
    def halted(self) -> bool:
        return self.halt_reason is not None

    def track_artifact(self, step_id: str, artifact: Artifact) -> None:
        self.artifacts_by_step[step_id] = artifact
        self.artifacts_by_kind.setdefault(artifact.kind, []).append(artifact)
        if artifact.kind == self.context.request.artifact_kind:
            self.artifact = artifact


class GraphController:
    """Runs plans produced by the planner through the skill runner and subagents."""

    def __init__(self, planner, skill_runner, verifier, workspace, registry=None,
                 id_factory: Optional[Callable[[], str]] = None, history_limit: Optional[int] = None):
        self.planner = planner
        self.skill_runner = skill_runner
        self.verifier = verifier
        self.workspace = workspace
        self.registry = registry
        self.id_factory = id_factory or (lambda: f"run-{uuid.uuid4()}")
        self._summaries: Dict[str, ControllerRunSummary] = {}
        self._requests: Dict[str, RunRequest] = {}
        self._executions: Dict[str, RunExecution] = {}
        # Finished runs kept for lookup and resume, oldest dropped first.
        self.history_limit = history_limit if history_limit is not None else app_settings.RUN_HISTORY_LIMIT

    # Public API

    async def start(self, request: RunRequest, options: Optional[ControllerStartOptions] = None) -> ControllerRunSummary:
        options = options or ControllerStartOptions()
        if request.input is None or not (request.input.message or "").strip():
            raise RunInputError("Run input with a non-empty message is required")

        run_id = options.run_id or self.id_factory()
        if run_id in self._executions:
            raise RunInputError(f"Run {run_id} is already in progress")

        handle = await self.workspace.ensure_workspace(run_id, request.artifact_kind)
        context = RunContext(
            run_id=run_id,
            request=request,
            settings=resolve_run_settings(request.input.settings),
            workspace=handle,
        )
        execution = RunExecution(context, options)
        self._executions[run_id] = execution
        self._requests[run_id] = request

        try:
            summary = await self._run(execution)
        finally:
            self._executions.pop(run_id, None)

        self._remember(run_id, summary)
        if execution.error is not None and options.raise_on_error:
            raise execution.error
        return summary

    async def resume(self, run_id: str, options: Optional[ControllerStartOptions] = None) -> ControllerRunSummary:
        options = options or ControllerStartOptions()
        if run_id in self._executions:
            return self._snapshot(self._executions[run_id])

        summary = self._summaries.get(run_id)
        request = self._requests.get(run_id)
        if summary is None or request is None:
            raise RunNotFoundError(f"Run {run_id} cannot be resumed because no prior state was recorded")

        if summary.status != RunStatus.AWAITING_INPUT or options.input is None:
            return summary

        merged = merge_resume_input(request.input, options.input, summary.metadata.get("clarification"))
        attempt = int(summary.metadata.get("attempt", 1)) + 1
        logger.info(f"Resuming run {run_id} (attempt {attempt})")
        return await self.start(
            request.model_copy(update={"input": merged}),
            options.model_copy(update={"run_id": run_id, "input": None, "attempt": attempt}),
        )

    def get_summary(self, run_id: str) -> ControllerRunSummary:
        if run_id in self._executions:
            return self._snapshot(self._executions[run_id])
        summary = self._summaries.get(run_id)
        if summary is None:
            raise RunNotFoundError(f"Run {run_id} not found")
        return summary

    def cancel(self, run_id: str) -> bool:
        """Signal cancellation; returns False when the run already finished."""
        execution = self._executions.get(run_id)
        if execution is None:
            if run_id in self._summaries:
                return False
            raise RunNotFoundError(f"Run {run_id} not found")
        execution.context.cancel_event.set()
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    def list_runs(self) -> List[str]:
        return list(dict.fromkeys([*self._summaries.keys(), *self._executions.keys()]))

    def _remember(self, run_id: str, summary: ControllerRunSummary) -> None:
        self._summaries.pop(run_id, None)
        self._summaries[run_id] = summary
        while len(self._summaries) > self.history_limit:
            expired = next(iter(self._summaries))
            del self._summaries[expired]
            if expired not in self._executions:
                self._requests.pop(expired, None)
            logger.debug(f"Dropped summary of run {expired}")

    # Execution

    async def _run(self, execution: RunExecution) -> ControllerRunSummary:
        try:
            return await self._execute(execution)
        except Exception as e:
            logger.error(f"Run {execution.run_id} aborted: {e}", exc_info=True)
            if execution.error is None:
                execution.error = e
            return await self._finish(execution, RunStatus.FAILED, f"Run aborted: {e}")

    async def _execute(self, execution: RunExecution) -> ControllerRunSummary:
        run_id = execution.run_id
        context = execution.context
        await self._set_status(execution, RunStatus.RUNNING, "Run started")

        try:
            draft = await self.planner.create_plan(context)
            draft = await self.planner.refine_plan(draft.plan, context)
            plan = draft.plan
            validate_plan(plan)
            execution.plan = plan
            self._mark_ready(execution)
        except Exception as e:
            logger.error(f"Planning failed for run {run_id}: {e}", exc_info=True)
            execution.error = e
            return await self._finish(execution, RunStatus.FAILED, f"Planning failed: {e}")

        await self._emit(execution, ProgressEventType.PLAN_CREATED, payload={"plan": plan.model_dump(mode="json", by_alias=True)})
        await self._record(execution, WorkspaceEventType.PLAN, {"action": "created", "plan_id": plan.id, "steps": list(plan.nodes)})

        graph = compile_plan_graph(plan, lambda node: self._run_step(execution, node))
        await graph.ainvoke({"finished_steps": []}, config={"recursion_limit": recursion_limit(plan)})

        await self._emit(
            execution,
            ProgressEventType.PLAN_UPDATED,
            payload={"statuses": {node_id: node.status.value for node_id, node in plan.nodes.items()}},
        )

        if context.cancelled:
            execution.error = RunCancelledError(f"Run {run_id} was cancelled")
            return await self._finish(execution, RunStatus.FAILED, "Run cancelled")
        if execution.error is not None:
            return await self._finish(execution, RunStatus.FAILED, f"Step {execution.failed_step} failed: {execution.error}")
        if execution.halted:
            return await self._finish(execution, RunStatus.AWAITING_INPUT, "Run awaiting input")
        if execution.artifact is None:
            execution.error = RuntimeError("Plan completed without producing an artifact")
            return await self._finish(execution, RunStatus.FAILED, str(execution.error))

        verification = await self._verify(execution)
        await self._emit(
            execution,
            ProgressEventType.ARTIFACT_DELIVERED,
            payload={"artifact_id": verification.artifact.id, "artifact_kind": verification.artifact.kind},
        )
        return await self._finish(execution, RunStatus.COMPLETED, "Run completed", verification=verification)

    def _mark_ready(self, execution: RunExecution) -> None:
        """Pending nodes whose dependencies are all complete become ready."""
        nodes = execution.plan.nodes
        for node in nodes.values():
            if node.status == PlanNodeStatus.PENDING and all(
                nodes[dependency].status == PlanNodeStatus.COMPLETE for dependency in node.depends_on
            ):
                node.status = PlanNodeStatus.READY

    def _blocked_reason(self, execution: RunExecution, node: PlanNode) -> Optional[str]:
        if execution.context.cancelled:
            return "cancelled"
        if execution.halted:
            return execution.halt_reason
        for dependency in node.depends_on:
            if execution.plan.nodes[dependency].status != PlanNodeStatus.COMPLETE:
                return f"dependency {dependency} did not complete"
        return None

    async def _run_step(self, execution: RunExecution, node: PlanNode) -> None:
        reason = self._blocked_reason(execution, node)
        if reason is not None:
            node.status = PlanNodeStatus.BLOCKED
            node.metadata["blocked_reason"] = reason
            return

        node.status = PlanNodeStatus.RUNNING
        await self._emit(execution, ProgressEventType.STEP_STARTED, step_id=node.id, message=node.label)
        try:
            await self._record(execution, WorkspaceEventType.SKILL, {"action": "start", "step_id": node.id})
            if isinstance(node.task, SubagentTask):
                await self._execute_subagent_step(execution, node)
            else:
                await self._execute_skill_step(execution, node)
            await self._record(execution, WorkspaceEventType.SKILL, {"action": "complete", "step_id": node.id})
        except Exception as e:
            node.status = PlanNodeStatus.FAILED
            if execution.error is None:
                execution.error = e
                execution.failed_step = node.id
            logger.error(f"Step {node.id} of run {execution.run_id} failed: {e}", exc_info=True)
            await self._emit(execution, ProgressEventType.STEP_FAILED, step_id=node.id, message=str(e),
                             payload={"error": str(e), "error_type": type(e).__name__})
            await self._record(execution, WorkspaceEventType.SKILL, {"action": "failed", "step_id": node.id, "error": str(e)})
            return

        node.status = PlanNodeStatus.COMPLETE
        self._mark_ready(execution)

    async def _execute_skill_step(self, execution: RunExecution, node: PlanNode) -> None:
        context = execution.context
        request = SkillRequest(
            skill_id=node.metadata.get("skill_id", node.id),
            plan_node=node,
            input=context.request.input,
            context=context,
        )
        result = await self.skill_runner.invoke(request)
        execution.step_results.append(StepResult(step_id=node.id, skill_id=request.skill_id, result=result))

        artifact = result.metadata.get("artifact")
        if isinstance(artifact, Artifact):
            await self._persist_artifact(execution, node.id, artifact)

        if result.metadata.get("run_status") == RunStatus.AWAITING_INPUT.value:
            execution.halt_reason = result.metadata.get("halt_reason", "awaiting-input")
            execution.clarification = result.metadata.get("clarification")

        payload = {k: v for k, v in result.metadata.items() if k != "artifact"}
        if result.confidence is not None:
            payload["confidence"] = result.confidence.model_dump(mode="json")
        await self._emit(execution, ProgressEventType.STEP_COMPLETED, step_id=node.id, message=node.label, payload=payload)

    async def _persist_artifact(self, execution: RunExecution, step_id: str, artifact: Artifact) -> None:
        await self.workspace.write_artifact(execution.run_id, artifact)
        execution.track_artifact(step_id, artifact)
        await self._record(
            execution,
            WorkspaceEventType.ARTIFACT,
            {"artifact_id": artifact.id, "artifact_kind": artifact.kind, "step_id": step_id},
        )

    def _resolve_source_artifact(self, lifecycle, task: SubagentTask, execution: RunExecution) -> Optional[Artifact]:
        if task.source_step and task.source_step in execution.artifacts_by_step:
            return execution.artifacts_by_step[task.source_step]
        if task.source_kind and execution.artifacts_by_kind.get(task.source_kind):
            return execution.artifacts_by_kind[task.source_kind][-1]
        if execution.artifact is not None:
            return execution.artifact
        if "prompt" in lifecycle.metadata.source_kinds:
            return self._prompt_artifact(execution)
        return None

    def _prompt_artifact(self, execution: RunExecution) -> Optional[Artifact]:
        run_input = execution.context.request.input
        if run_input is None:
            return None
        return Artifact(
            id=f"artifact-prompt-{execution.run_id}",
            kind="prompt",
            version="1.0.0",
            label="Prompt Context",
            data={
                "message": run_input.message,
                "context": run_input.context.model_dump(mode="json") if run_input.context else None,
            },
            metadata=ArtifactMetadata(created_by=execution.context.request.created_by, tags=["prompt", "synthetic"]),
        )

    async def _execute_subagent_step(self, execution: RunExecution, node: PlanNode) -> None:
        task: SubagentTask = node.task
        if self.registry is None:
            raise SubagentError(f"Subagent {task.subagent_id} is not registered with the controller")
        lifecycle = self.registry.create_lifecycle(task.subagent_id)
        meta = lifecycle.metadata

        await self._emit(
            execution,
            ProgressEventType.SUBAGENT_STARTED,
            step_id=node.id,
            message=f"{meta.label} started",
            payload={"subagent_id": meta.id, "artifact_kind": meta.artifact_kind},
        )
        await self._record(execution, WorkspaceEventType.SUBAGENT, {"action": "start", "subagent_id": meta.id})

        async def forward(event: Any) -> None:
            if isinstance(event, BaseModel):
                event = event.model_dump(mode="json", by_alias=True)
            await self._emit(
                execution,
                ProgressEventType.SUBAGENT_PROGRESS,
                step_id=node.id,
                payload={"subagent_id": meta.id, "event": event},
            )

        run_input = execution.context.request.input
        payload = (run_input.context.context_payload if run_input and run_input.context else None) or {}
        try:
            result = await lifecycle.execute(SubagentRequest(
                params={**payload, "input": run_input.model_dump(by_alias=True) if run_input else None},
                run=execution.context,
                source_artifact=self._resolve_source_artifact(lifecycle, task, execution),
                source_artifacts={kind: list(items) for kind, items in execution.artifacts_by_kind.items()},
                emit=forward,
            ))
            if result.artifact is None:
                if result.metadata.get("run_status") == RunStatus.AWAITING_INPUT.value:
                    execution.halt_reason = f"subagent-{meta.id}-awaiting-input"
                    execution.clarification = result.metadata.get("clarification")
                    return
                raise SubagentError(f"Subagent {meta.id} returned no artifact")
        except Exception as e:
            await self._emit(
                execution,
                ProgressEventType.SUBAGENT_FAILED,
                step_id=node.id,
                message=str(e),
                payload={"subagent_id": meta.id, "error": str(e)},
            )
            await self._record(execution, WorkspaceEventType.SUBAGENT, {"action": "failed", "subagent_id": meta.id, "error": str(e)})
            raise

        await self._persist_artifact(execution, node.id, result.artifact)
        execution.subagents.append(SubagentRunSummary(
            subagent_id=meta.id,
            step_id=node.id,
            artifact=result.artifact,
            metadata=result.metadata,
        ))
        await self._record(
            execution,
            WorkspaceEventType.SUBAGENT,
            {"action": "complete", "subagent_id": meta.id, "artifact_id": result.artifact.id},
        )
        await self._emit(
            execution,
            ProgressEventType.SUBAGENT_COMPLETED,
            step_id=node.id,
            message=f"{meta.label} completed",
            payload={"subagent_id": meta.id, "artifact_id": result.artifact.id, "artifact_kind": result.artifact.kind},
        )

    async def _verify(self, execution: RunExecution):
        await self._emit(execution, ProgressEventType.VERIFICATION_STARTED, payload={"artifact_id": execution.artifact.id})
        verification = await self.verifier.verify(execution.artifact, execution.context)
        for issue in verification.issues:
            await self._emit(
                execution,
                ProgressEventType.VERIFICATION_ISSUE,
                message=issue.message,
                payload=issue.model_dump(mode="json", by_alias=True),
            )
        await self._record(
            execution,
            WorkspaceEventType.VERIFICATION,
            {"status": verification.status.value, "issues": [i.id for i in verification.issues]},
        )
        await self._emit(
            execution,
            ProgressEventType.VERIFICATION_COMPLETED,
            status=verification.status.value,
            payload={"status": verification.status.value, "issue_count": len(verification.issues)},
        )
        return verification

    async def _finish(self, execution: RunExecution, status: RunStatus, message: str,
                      verification=None) -> ControllerRunSummary:
        if status != RunStatus.COMPLETED:
            await self.skill_runner.discard(execution.run_id)
        if status == RunStatus.FAILED:
            logger.error(f"Run {execution.run_id} failed: {message}")
        try:
            await self._set_status(execution, status, message)
        except Exception as e:
            logger.error(f"Could not record final status of run {execution.run_id}: {e}")
        return self._snapshot(execution, verification=verification)

    def _snapshot(self, execution: RunExecution, verification=None) -> ControllerRunSummary:
        metadata: Dict[str, Any] = {"attempt": execution.options.attempt}
        if execution.plan is not None:
            metadata["plan_id"] = execution.plan.id
            metadata["step_statuses"] = {k: n.status.value for k, n in execution.plan.nodes.items()}
        if execution.halt_reason:
            metadata["halt_reason"] = execution.halt_reason
        if execution.clarification is not None:
            metadata["clarification"] = execution.clarification
        if execution.context.cancelled:
            metadata["cancelled"] = True
        if execution.error is not None:
            metadata["error"] = str(execution.error)
            if execution.failed_step:
                metadata["failed_step"] = execution.failed_step

        completed = execution.status == RunStatus.COMPLETED
        artifact = verification.artifact if verification is not None else execution.artifact
        return ControllerRunSummary(
            run_id=execution.run_id,
            status=execution.status,
            artifact=artifact if completed else None,
            skill_results=list(execution.step_results),
            verification=verification,
            workspace=execution.context.workspace,
            completed_at=utcnow(),
            metadata=metadata,
            subagents=list(execution.subagents) if completed else [],
        )

    # Events

    async def _set_status(self, execution: RunExecution, status: RunStatus, message: str) -> None:
        execution.status = status
        logger.info(f"Run {execution.run_id}: {status.value} ({message})")
        await self._emit(execution, ProgressEventType.RUN_STATUS, status=status.value, message=message)
        await self._record(execution, WorkspaceEventType.SYSTEM, {"status": status.value, "message": message})

    async def _emit(self, execution: RunExecution, event_type: ProgressEventType, step_id: Optional[str] = None,
                    payload: Optional[Dict[str, Any]] = None, message: Optional[str] = None,
                    status: Optional[str] = None) -> None:
        sink = execution.options.on_event
        if sink is None:
            return
        event = ProgressEvent(
            type=event_type,
            run_id=execution.run_id,
            step_id=step_id,
            payload=payload,
            message=message,
            status=status,
        )
        try:
            result = sink(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Progress sink failed for run {execution.run_id}: {e}")

    async def _record(self, execution: RunExecution, event_type: WorkspaceEventType, payload: Dict[str, Any]) -> None:
        await self.workspace.append_event(
            execution.run_id,
            WorkspaceEvent(run_id=execution.run_id, type=event_type, payload=payload),
        )
