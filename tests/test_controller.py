import pytest

from product_agent.agent.controller import (
    ControllerStartOptions,
    RunCancelledError,
    RunInputError,
    RunNotFoundError,
    merge_resume_input,
)
from product_agent.models.events import ProgressEventType, WorkspaceEventType
from product_agent.models.run import IntentPlan, RunInput, RunInputContext, RunRequest, RunStatus
from product_agent.models.verification import VerificationStatus
from product_agent.prd.analyzers import ClarificationResponse, ContextAnalysisResponse
from product_agent.prd.writers.solution import SolutionResponse
from product_agent.repositories import InMemoryWorkspaceRepository
from product_agent.repositories.base import WorkspaceError
from product_agent.services.generation import GenerationError

from conftest import MESSAGE, FakeGenerator, default_responses, make_controller, make_request


def collect():
    events = []
    return events, ControllerStartOptions(on_event=events.append, raise_on_error=False)


def index_of(events, event_type, step_id=None):
    for i, event in enumerate(events):
        if event.type == event_type and (step_id is None or event.step_id == step_id):
            return i
    raise AssertionError(f"{event_type} for {step_id} not emitted")


@pytest.mark.asyncio
async def test_full_run_completes_with_every_section(workspace):
    controller = make_controller(workspace=workspace)
    events, options = collect()

    summary = await controller.start(make_request("Create a PRD for a mobile note-taking app for students"), options)

    assert summary.status == RunStatus.COMPLETED
    assert set(summary.artifact.data["sections"]) == {
        "targetUsers", "solution", "keyFeatures", "successMetrics", "constraints",
    }
    assert len(summary.artifact.data["metadata"]["sections_generated"]) == 5
    assert summary.verification.status == VerificationStatus.PASS
    assert summary.artifact.metadata.updated_at is not None
    assert [r.step_id for r in summary.skill_results][:2] == ["clarification-check", "analyze-context"]
    assert summary.skill_results[-1].step_id == "assemble-prd"
    assert events[0].type == ProgressEventType.RUN_STATUS and events[0].status == "running"
    assert events[-1].type == ProgressEventType.RUN_STATUS and events[-1].status == "completed"

    stored = await workspace.read_artifact(summary.run_id, summary.artifact.id)
    assert stored.data["sections"] == summary.artifact.data["sections"]


@pytest.mark.asyncio
async def test_steps_start_only_after_their_dependencies_complete():
    controller = make_controller()
    events, options = collect()

    await controller.start(make_request(), options)

    analyze_done = index_of(events, ProgressEventType.STEP_COMPLETED, "analyze-context")
    assert index_of(events, ProgressEventType.STEP_STARTED, "analyze-context") > index_of(
        events, ProgressEventType.STEP_COMPLETED, "clarification-check"
    )
    writers = ["write-targetUsers", "write-solution", "write-keyFeatures", "write-successMetrics", "write-constraints"]
    for step in writers:
        assert index_of(events, ProgressEventType.STEP_STARTED, step) > analyze_done
    assemble_started = index_of(events, ProgressEventType.STEP_STARTED, "assemble-prd")
    assert all(index_of(events, ProgressEventType.STEP_COMPLETED, step) < assemble_started for step in writers)
    assert index_of(events, ProgressEventType.VERIFICATION_COMPLETED) < index_of(events, ProgressEventType.ARTIFACT_DELIVERED)


@pytest.mark.asyncio
async def test_clarification_halts_the_run():
    generator = FakeGenerator({
        ClarificationResponse: ClarificationResponse(
            needs_clarification=True, questions=["Who is the primary target user?"],
        ),
    })
    controller = make_controller(generator)
    events, options = collect()

    summary = await controller.start(make_request("An app"), options)

    assert summary.status == RunStatus.AWAITING_INPUT
    assert summary.artifact is None
    assert summary.skill_results[0].metadata["clarification"]["questions"] == ["Who is the primary target user?"]
    assert len(summary.skill_results) == 1
    assert generator.schemas_called() == [ClarificationResponse]
    assert summary.metadata["step_statuses"]["assemble-prd"] == "blocked"
    assert summary.metadata["halt_reason"] == "clarification-required"
    assert not any(e.type == ProgressEventType.ARTIFACT_DELIVERED for e in events)
    assert summary.run_id not in controller.skill_runner.states


@pytest.mark.asyncio
async def test_failed_step_keeps_partial_results_and_blocks_dependents():
    generator = FakeGenerator({SolutionResponse: GenerationError("All AI providers failed")})
    controller = make_controller(generator)
    events, options = collect()

    summary = await controller.start(make_request(), options)

    assert summary.status == RunStatus.FAILED
    assert summary.artifact is None
    assert summary.metadata["failed_step"] == "write-solution"
    assert "All AI providers failed" in summary.metadata["error"]
    steps = {r.step_id for r in summary.skill_results}
    assert {"clarification-check", "analyze-context", "write-targetUsers", "write-keyFeatures"} <= steps
    assert "assemble-prd" not in steps
    assert summary.metadata["step_statuses"]["write-solution"] == "failed"
    assert summary.metadata["step_statuses"]["assemble-prd"] == "blocked"
    failed = events[index_of(events, ProgressEventType.STEP_FAILED, "write-solution")]
    assert failed.payload["error_type"] == "GenerationError"


@pytest.mark.asyncio
async def test_failed_step_is_raised_by_default():
    controller = make_controller(FakeGenerator({SolutionResponse: GenerationError("boom")}))

    with pytest.raises(GenerationError, match="boom"):
        await controller.start(make_request())

    [run_id] = controller.list_runs()
    assert controller.get_summary(run_id).status == RunStatus.FAILED


@pytest.mark.asyncio
async def test_cancellation_stops_remaining_steps():
    generator = FakeGenerator()
    controller = make_controller(generator)
    analysis = default_responses()[ContextAnalysisResponse]

    def cancel_during_analysis(prompt):
        controller.cancel("run-cancel")
        return analysis

    generator.responses[ContextAnalysisResponse] = cancel_during_analysis

    summary = await controller.start(
        make_request(), ControllerStartOptions(run_id="run-cancel", raise_on_error=False),
    )

    assert summary.status == RunStatus.FAILED
    assert summary.metadata["cancelled"] is True
    assert summary.metadata["step_statuses"]["write-solution"] == "blocked"
    assert generator.schemas_called() == [ClarificationResponse, ContextAnalysisResponse]
    assert controller.cancel("run-cancel") is False


@pytest.mark.asyncio
async def test_cancelled_run_raises_when_errors_are_not_suppressed():
    generator = FakeGenerator()
    controller = make_controller(generator)
    analysis = default_responses()[ContextAnalysisResponse]

    def cancel_during_analysis(prompt):
        controller.cancel("run-x")
        return analysis

    generator.responses[ContextAnalysisResponse] = cancel_during_analysis

    with pytest.raises(RunCancelledError):
        await controller.start(make_request(), ControllerStartOptions(run_id="run-x"))


@pytest.mark.asyncio
async def test_resume_with_answer_completes_the_run():
    answers = []

    def clarification(prompt):
        answers.append(prompt)
        if len(answers) == 1:
            return ClarificationResponse(needs_clarification=True, questions=["Who is the primary target user?"])
        return ClarificationResponse(needs_clarification=False, confidence=90)

    controller = make_controller(FakeGenerator({ClarificationResponse: clarification}))
    first = await controller.start(make_request("An app for teams"), ControllerStartOptions(raise_on_error=False))
    assert first.status == RunStatus.AWAITING_INPUT

    resumed = await controller.resume(
        first.run_id, ControllerStartOptions(input="Warehouse shift supervisors", raise_on_error=False),
    )

    assert resumed.status == RunStatus.COMPLETED
    assert resumed.run_id == first.run_id
    assert resumed.metadata["attempt"] == 2
    assert "Warehouse shift supervisors" in answers[1]
    assert controller.get_summary(first.run_id).status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_resume_of_finished_or_unknown_runs():
    controller = make_controller()
    summary = await controller.start(make_request())

    assert await controller.resume(summary.run_id, ControllerStartOptions(input="more")) is summary
    with pytest.raises(RunNotFoundError, match="no prior state"):
        await controller.resume("run-missing")


def test_merge_resume_input_records_questions_and_answer():
    original = RunInput(message="An app", context=RunInputContext(target_section="solution"))

    merged = merge_resume_input(original, "For nurses", {"questions": ["Who uses it?"]})

    assert merged.message == "An app\n\nFor nurses"
    assert merged.context.target_section == "solution"
    assert merged.context.conversation_history == [
        {"role": "assistant", "content": "Who uses it?"},
        {"role": "user", "content": "For nurses"},
    ]


@pytest.mark.asyncio
async def test_requested_persona_runs_as_subagent(registry, workspace):
    controller = make_controller(registry=registry, workspace=workspace)
    events, options = collect()
    request = RunRequest(
        artifact_kind="prd",
        input=RunInput(message=MESSAGE),
        intent_plan=IntentPlan(requested_artifacts=["persona"]),
    )

    summary = await controller.start(request, options)

    assert summary.status == RunStatus.COMPLETED
    assert summary.artifact.kind == "prd"
    [subagent] = summary.subagents
    assert subagent.subagent_id == "persona.builder"
    assert subagent.artifact.kind == "persona"
    assert subagent.artifact.metadata.extras["source_artifact_id"] == summary.artifact.id
    assert len(subagent.artifact.data["personas"]) == 2
    assert index_of(events, ProgressEventType.SUBAGENT_STARTED) < index_of(events, ProgressEventType.SUBAGENT_COMPLETED)
    assert any(e.type == ProgressEventType.SUBAGENT_PROGRESS for e in events)

    kinds = sorted(a.kind for a in await workspace.list_artifacts(summary.run_id))
    assert kinds == ["persona", "prd"]


@pytest.mark.asyncio
async def test_sink_failures_do_not_break_the_run():
    controller = make_controller()

    def broken_sink(event):
        raise RuntimeError("subscriber went away")

    summary = await controller.start(make_request(), ControllerStartOptions(on_event=broken_sink))

    assert summary.status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_async_sink_receives_events():
    controller = make_controller()
    received = []

    async def sink(event):
        received.append(event.type)

    await controller.start(make_request(), ControllerStartOptions(on_event=sink))

    assert ProgressEventType.PLAN_CREATED in received
    assert ProgressEventType.ARTIFACT_DELIVERED in received


@pytest.mark.asyncio
async def test_workspace_records_audit_events(workspace):
    controller = make_controller(workspace=workspace)

    summary = await controller.start(make_request())

    types = {event.type for event in await workspace.get_events(summary.run_id)}
    assert {
        WorkspaceEventType.SYSTEM,
        WorkspaceEventType.PLAN,
        WorkspaceEventType.SKILL,
        WorkspaceEventType.ARTIFACT,
        WorkspaceEventType.VERIFICATION,
    } <= types


@pytest.mark.asyncio
async def test_empty_message_is_rejected():
    controller = make_controller()

    with pytest.raises(RunInputError):
        await controller.start(make_request("   "))
    with pytest.raises(RunInputError):
        await controller.start(RunRequest(artifact_kind="prd"))


def test_unknown_run_lookups_raise():
    controller = make_controller()

    with pytest.raises(RunNotFoundError):
        controller.get_summary("nope")
    with pytest.raises(RunNotFoundError):
        controller.cancel("nope")


class FailingWorkspace(InMemoryWorkspaceRepository):
    """Rejects audit events matching ``should_fail``."""

    def __init__(self, should_fail):
        super().__init__()
        self.should_fail = should_fail

    async def append_event(self, run_id, event):
        if self.should_fail(event.payload):
            raise WorkspaceError("disk full")
        await super().append_event(run_id, event)


@pytest.mark.asyncio
async def test_audit_failure_after_a_step_fails_that_step():
    workspace = FailingWorkspace(
        lambda payload: payload.get("action") == "complete" and payload.get("step_id") == "write-solution",
    )
    controller = make_controller(workspace=workspace)
    events, options = collect()

    summary = await controller.start(make_request(), options)

    assert summary.status == RunStatus.FAILED
    assert summary.metadata["failed_step"] == "write-solution"
    assert summary.metadata["error"] == "disk full"
    assert summary.metadata["step_statuses"]["write-solution"] == "failed"
    assert summary.metadata["step_statuses"]["assemble-prd"] == "blocked"
    assert controller.get_summary(summary.run_id).status == RunStatus.FAILED
    assert await controller.skill_runner.states.get(summary.run_id) is None
    assert events[-1].type == ProgressEventType.RUN_STATUS and events[-1].status == "failed"


@pytest.mark.asyncio
async def test_unwritable_workspace_still_returns_a_failed_summary():
    controller = make_controller(workspace=FailingWorkspace(lambda payload: True))

    summary = await controller.start(make_request(), ControllerStartOptions(raise_on_error=False))

    assert summary.status == RunStatus.FAILED
    assert summary.metadata["error"] == "disk full"
    assert controller.get_summary(summary.run_id).status == RunStatus.FAILED
    assert controller.list_runs() == [summary.run_id]

    with pytest.raises(WorkspaceError):
        await controller.start(make_request())


@pytest.mark.asyncio
async def test_only_the_most_recent_runs_are_kept():
    controller = make_controller()
    controller.history_limit = 2
    replies = iter([ClarificationResponse(needs_clarification=True, questions=["Who uses it?"])])
    controller.skill_runner.clarification_analyzer.generator = FakeGenerator(
        {ClarificationResponse: lambda prompt: next(replies, ClarificationResponse(needs_clarification=False))},
    )

    first = await controller.start(make_request("An app"))
    second = await controller.start(make_request())
    third = await controller.start(make_request())

    assert first.status == RunStatus.AWAITING_INPUT
    assert controller.list_runs() == [second.run_id, third.run_id]
    with pytest.raises(RunNotFoundError):
        controller.get_summary(first.run_id)
    with pytest.raises(RunNotFoundError):
        await controller.resume(first.run_id, ControllerStartOptions(input="Warehouse staff"))
    assert first.run_id not in controller._requests


@pytest.mark.asyncio
async def test_resumed_run_counts_once_in_history():
    controller = make_controller()
    controller.history_limit = 2
    replies = iter([ClarificationResponse(needs_clarification=True, questions=["Who uses it?"])])
    controller.skill_runner.clarification_analyzer.generator = FakeGenerator(
        {ClarificationResponse: lambda prompt: next(replies, ClarificationResponse(needs_clarification=False))},
    )

    first = await controller.start(make_request("An app"))
    second = await controller.start(make_request())
    resumed = await controller.resume(first.run_id, ControllerStartOptions(input="Warehouse staff"))

    assert resumed.status == RunStatus.COMPLETED
    assert controller.list_runs() == [second.run_id, first.run_id]


@pytest.mark.asyncio
async def test_planner_refinement_is_applied_before_execution():
    controller = make_controller()
    refined = []
    original = controller.planner.refine_plan

    async def refine_plan(plan, context):
        refined.append(plan.id)
        draft = await original(plan, context)
        draft.plan.nodes["write-constraints"].metadata["reviewed"] = True
        return draft

    controller.planner.refine_plan = refine_plan
    events, options = collect()

    summary = await controller.start(make_request(), options)

    assert refined == [f"plan-{summary.run_id}"]
    plan = events[index_of(events, ProgressEventType.PLAN_CREATED)].payload["plan"]
    assert plan["nodes"]["write-constraints"]["metadata"]["reviewed"] is True


@pytest.mark.asyncio
async def test_steps_become_ready_once_dependencies_complete():
    controller = make_controller()
    snapshots = {}

    def sink(event):
        if event.type == ProgressEventType.STEP_STARTED and event.step_id not in snapshots:
            snapshots[event.step_id] = dict(controller.get_summary(event.run_id).metadata["step_statuses"])

    summary = await controller.start(make_request(), ControllerStartOptions(on_event=sink))

    at_analysis = snapshots["analyze-context"]
    assert at_analysis["clarification-check"] == "complete"
    assert at_analysis["analyze-context"] == "running"
    assert at_analysis["write-solution"] == "pending"

    first_writer = next(step for step in snapshots if step.startswith("write-"))
    at_writing = snapshots[first_writer]
    assert at_writing[first_writer] == "running"
    writers = [step for step in at_writing if step.startswith("write-")]
    assert all(at_writing[step] != "pending" for step in writers)
    assert at_writing["assemble-prd"] == "pending"
    assert set(summary.metadata["step_statuses"].values()) == {"complete"}


@pytest.mark.asyncio
async def test_progress_sink_does_not_change_the_artifact():
    events, options = collect()

    observed = await make_controller().start(make_request(), options)
    silent = await make_controller().start(make_request())

    assert events
    assert observed.artifact.data["sections"] == silent.artifact.data["sections"]
    observed_meta = observed.artifact.data["metadata"]
    silent_meta = silent.artifact.data["metadata"]
    assert observed_meta["sections_generated"] == silent_meta["sections_generated"]
    assert observed_meta["confidence_assessments"] == silent_meta["confidence_assessments"]
    assert observed.artifact.version == silent.artifact.version
    assert observed.verification.status == silent.verification.status
