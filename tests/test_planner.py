import pytest

from product_agent.agent.planner import (
    PlanValidationError,
    PrdPlanner,
    resolve_sections,
    validate_plan,
)
from product_agent.models.events import WorkspaceDescriptor, WorkspaceHandle
from product_agent.models.plan import AnalyzeContextTask, ClarificationCheckTask, PlanGraph, PlanNode, WriteSectionTask
from product_agent.models.run import IntentPlan, RunContext, RunInput, RunInputContext, RunRequest, RunSettings
from product_agent.prd.analyzers import (
    SectionDetectionAnalyzer,
    SectionDetectionResponse,
    detect_sections_by_keywords,
)
from product_agent.subagents.storymap import storymap_manifest

from conftest import FakeGenerator, make_request


def make_context(request, run_id="run-1"):
    return RunContext(
        run_id=run_id,
        request=request,
        settings=RunSettings(model="openai/gpt-4o-mini", temperature=0.2, max_output_tokens=4000),
        workspace=WorkspaceHandle(descriptor=WorkspaceDescriptor(run_id=run_id, root="memory://run-1", kind="prd")),
    )


def _kinds(plan):
    return [node.task.kind for node in plan.nodes.values()]


@pytest.mark.asyncio
async def test_full_plan_has_every_canonical_section():
    request = make_request("Create a PRD for a mobile note-taking app for students")
    draft = await PrdPlanner().create_plan(make_context(request))
    plan = draft.plan

    kinds = _kinds(plan)
    assert kinds.count("clarification-check") == 1
    assert kinds.count("analyze-context") == 1
    assert kinds.count("write-section") == 5
    assert kinds.count("assemble-prd") == 1
    assert plan.entry_id == "clarification-check"
    assert plan.id == "plan-run-1"
    assert plan.nodes["assemble-prd"].depends_on == [
        "write-targetUsers", "write-solution", "write-keyFeatures", "write-successMetrics", "write-constraints",
    ]
    assert all(plan.nodes[f"write-{s}"].depends_on == ["analyze-context"] for s in plan.metadata["requested_sections"])
    assert plan.nodes["analyze-context"].depends_on == ["clarification-check"]


@pytest.mark.asyncio
async def test_target_sections_limit_the_writers():
    request = make_request("Create a PRD for a mobile note-taking app for students", target_sections=["solution"])
    plan = (await PrdPlanner().create_plan(make_context(request))).plan

    writers = [node_id for node_id, node in plan.nodes.items() if isinstance(node.task, WriteSectionTask)]
    assert writers == ["write-solution"]
    assert plan.nodes["assemble-prd"].depends_on == ["write-solution"]


@pytest.mark.asyncio
async def test_unknown_sections_are_dropped():
    request = make_request("A PRD please", target_sections=["pricing", "constraints", "keyFeatures"])
    plan = (await PrdPlanner().create_plan(make_context(request))).plan

    assert plan.metadata["requested_sections"] == ["keyFeatures", "constraints"]
    assert "write-pricing" not in plan.nodes


def test_resolve_sections_defaults_to_all_when_nothing_valid():
    assert resolve_sections(["nope"]) == ["targetUsers", "solution", "keyFeatures", "successMetrics", "constraints"]
    assert resolve_sections(None) == resolve_sections([])


@pytest.mark.asyncio
async def test_requested_artifacts_add_subagent_steps(registry):
    request = RunRequest(
        artifact_kind="prd",
        input=RunInput(message="Build a PRD"),
        intent_plan=IntentPlan(requested_artifacts=["persona"]),
    )
    plan = (await PrdPlanner(registry=registry).create_plan(make_context(request))).plan

    node = plan.nodes["subagent-persona.builder"]
    assert node.task.subagent_id == "persona.builder"
    assert node.task.source_step == "assemble-prd"
    assert node.depends_on == ["assemble-prd"]
    assert validate_plan(plan)[-1] == "subagent-persona.builder"


@pytest.mark.asyncio
async def test_story_map_step_waits_for_requested_personas(registry):
    registry.register(storymap_manifest)
    request = RunRequest(
        artifact_kind="prd",
        input=RunInput(message="Build a PRD"),
        intent_plan=IntentPlan(requested_artifacts=["story-map", "persona"]),
    )
    plan = (await PrdPlanner(registry=registry).create_plan(make_context(request))).plan

    assert plan.nodes["subagent-storymap.builder"].depends_on == ["assemble-prd", "subagent-persona.builder"]
    assert plan.nodes["subagent-persona.builder"].depends_on == ["assemble-prd"]
    assert validate_plan(plan)[-1] == "subagent-storymap.builder"


def _graph(nodes, entry="a"):
    return PlanGraph(id="p", artifact_kind="prd", entry_id=entry, nodes=nodes, version="test")


def test_validate_plan_returns_dependency_order():
    plan = _graph({
        "c": PlanNode(id="c", label="c", task=WriteSectionTask(section="solution"), depends_on=["b"]),
        "b": PlanNode(id="b", label="b", task=AnalyzeContextTask(), depends_on=["a"]),
        "a": PlanNode(id="a", label="a", task=ClarificationCheckTask()),
    })
    assert validate_plan(plan) == ["a", "b", "c"]


def test_validate_plan_rejects_unknown_dependency():
    plan = _graph({
        "a": PlanNode(id="a", label="a", task=ClarificationCheckTask()),
        "b": PlanNode(id="b", label="b", task=AnalyzeContextTask(), depends_on=["ghost"]),
    })
    with pytest.raises(PlanValidationError, match="ghost"):
        validate_plan(plan)


def test_validate_plan_rejects_cycles():
    plan = _graph({
        "a": PlanNode(id="a", label="a", task=ClarificationCheckTask()),
        "b": PlanNode(id="b", label="b", task=AnalyzeContextTask(), depends_on=["a", "c"]),
        "c": PlanNode(id="c", label="c", task=WriteSectionTask(section="solution"), depends_on=["b"]),
    })
    with pytest.raises(PlanValidationError, match="cycle"):
        validate_plan(plan)


def test_validate_plan_rejects_self_dependency_and_bad_entry():
    plan = _graph({
        "a": PlanNode(id="a", label="a", task=ClarificationCheckTask()),
        "b": PlanNode(id="b", label="b", task=AnalyzeContextTask(), depends_on=["b"]),
    })
    with pytest.raises(PlanValidationError, match="itself"):
        validate_plan(plan)

    with pytest.raises(PlanValidationError, match="entry"):
        validate_plan(_graph({"a": PlanNode(id="a", label="a", task=ClarificationCheckTask())}, entry="z"))


EXISTING_PRD = {"sections": {
    "targetUsers": {"targetUsers": ["Clinic managers"]},
    "solution": {"solutionOverview": "Scheduling assistant", "approach": "Web app"},
    "keyFeatures": {"keyFeatures": ["Calendar sync"]},
}}


def edit_request(message, **context_fields):
    return make_request(message, context=RunInputContext(existing_prd=EXISTING_PRD, **context_fields))


def _writers(plan):
    return [node.task.section for node in plan.nodes.values() if isinstance(node.task, WriteSectionTask)]


def test_keyword_detection_matches_whole_words():
    assert detect_sections_by_keywords("Add a feature to measure no-show rates") == ["keyFeatures", "successMetrics"]
    assert detect_sections_by_keywords("Support Telegram") == []


@pytest.mark.asyncio
async def test_edit_plans_only_detected_and_keyword_sections():
    generator = FakeGenerator({
        SectionDetectionResponse: SectionDetectionResponse(affected_sections=["constraints"], confidence="high"),
    })
    planner = PrdPlanner(section_detector=SectionDetectionAnalyzer(generator))

    plan = (await planner.create_plan(make_context(edit_request("Must support GDPR, and add an export feature")))).plan

    assert _writers(plan) == ["keyFeatures", "constraints"]
    assert plan.metadata["section_detection"]["detected"] == ["constraints"]
    assert plan.metadata["section_detection"]["heuristic"] == ["keyFeatures"]
    assert generator.schemas_called() == [SectionDetectionResponse]


@pytest.mark.asyncio
async def test_edit_without_any_detected_section_rewrites_everything():
    generator = FakeGenerator({SectionDetectionResponse: SectionDetectionResponse(affected_sections=[])})
    planner = PrdPlanner(section_detector=SectionDetectionAnalyzer(generator))

    plan = (await planner.create_plan(make_context(edit_request("Support Telegram")))).plan

    assert _writers(plan) == ["targetUsers", "solution", "keyFeatures", "successMetrics", "constraints"]
    assert plan.metadata["section_detection"]["used_fallback"] is True


@pytest.mark.asyncio
async def test_detection_failure_falls_back_to_keywords():
    generator = FakeGenerator({SectionDetectionResponse: RuntimeError("provider down")})
    planner = PrdPlanner(section_detector=SectionDetectionAnalyzer(generator))

    plan = (await planner.create_plan(make_context(edit_request("Who is the audience now?")))).plan

    assert _writers(plan) == ["targetUsers"]
    assert plan.metadata["section_detection"]["error"] == "provider down"


@pytest.mark.asyncio
async def test_explicit_target_sections_skip_detection():
    generator = FakeGenerator()
    planner = PrdPlanner(section_detector=SectionDetectionAnalyzer(generator))
    request = make_request(
        "Add an export feature", target_sections=["solution"], context=RunInputContext(existing_prd=EXISTING_PRD),
    )

    plan = (await planner.create_plan(make_context(request))).plan

    assert _writers(plan) == ["solution"]
    assert "section_detection" not in plan.metadata
    assert generator.calls == []
