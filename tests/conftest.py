import pytest

from product_agent.agent.controller import GraphController
from product_agent.agent.planner import PrdPlanner
from product_agent.agent.skill_runner import PrdSkillRunner
from product_agent.agent.verifier import ArtifactVerifier
from product_agent.models.run import RunInput, RunRequest
from product_agent.prd.analyzers import (
    ClarificationResponse,
    ContextAnalysisResponse,
    Requirements,
    SectionDetectionAnalyzer,
    SectionDetectionResponse,
)
from product_agent.prd.writers.constraints import ConstraintsPlan, StringListPlan
from product_agent.prd.writers.key_features import KeyFeaturesPlan
from product_agent.prd.writers.solution import SolutionResponse
from product_agent.prd.writers.success_metrics import SuccessMetric, SuccessMetricsPlan
from product_agent.prd.writers.target_users import TargetUsersPlan
from product_agent.repositories import InMemoryWorkspaceRepository
from product_agent.subagents.persona import persona_manifest
from product_agent.subagents.registry import SubagentRegistry


MESSAGE = (
    "Build a shift handoff app for warehouse teams so supervisors can pass open tasks, "
    "safety incidents and equipment status between shifts without paper logs."
)


def default_responses():
    return {
        ClarificationResponse: ClarificationResponse(needs_clarification=False, confidence=92),
        ContextAnalysisResponse: ContextAnalysisResponse(
            themes=["Shift continuity", "Safety reporting"],
            requirements=Requirements(
                functional=["Create handoff notes", "Flag safety incidents"],
                technical=["Offline support on handheld scanners"],
                user_experience=["One-screen handoff summary"],
                mvp_features=["Handoff checklist"],
            ),
            constraints=["Must run on existing Android scanners"],
        ),
        TargetUsersPlan: TargetUsersPlan(
            mode="smart_merge",
            proposed_users=[
                "Warehouse shift supervisors who need to hand over open work quickly",
                "Safety officers tracking incidents across shifts",
            ],
        ),
        SolutionResponse: SolutionResponse(
            solution_overview="A mobile handoff log that replaces paper shift reports with structured, searchable notes.",
            approach="Offline-first Android app syncing to a central shift timeline.",
        ),
        KeyFeaturesPlan: KeyFeaturesPlan(
            proposed_features=[
                "Structured shift handoff checklist",
                "Safety incident flagging with photos",
                "Equipment status board per zone",
            ],
        ),
        SuccessMetricsPlan: SuccessMetricsPlan(
            proposed_metrics=[
                SuccessMetric(metric="Handoffs logged digitally", target="90% of shifts", timeline="Within 3 months"),
                SuccessMetric(metric="Missed open tasks", target="Reduce by 40%", timeline="Within 6 months"),
            ],
        ),
        ConstraintsPlan: ConstraintsPlan(
            constraints=StringListPlan(proposed=["Must run on the existing Android scanner fleet"]),
            assumptions=StringListPlan(proposed=["Supervisors have five minutes at each shift change"]),
        ),
        SectionDetectionResponse: SectionDetectionResponse(
            affected_sections=["keyFeatures"], reasoning={"keyFeatures": "New capability requested"}, confidence="high",
        ),
    }


class FakeGenerator:
    """Returns canned schema instances keyed by schema class and records every call."""

    def __init__(self, responses=None):
        self.responses = default_responses()
        self.responses.update(responses or {})
        self.calls = []

    async def generate_structured(self, model, schema, prompt, temperature=None, max_tokens=None,
                                  fallback_model=None):
        self.calls.append({"model": model, "schema": schema, "prompt": prompt, "temperature": temperature})
        response = self.responses[schema]
        if isinstance(response, Exception):
            raise response
        if callable(response) and not isinstance(response, type):
            return response(prompt)
        return response

    def schemas_called(self):
        return [call["schema"] for call in self.calls]


def make_request(message=MESSAGE, **input_fields):
    return RunRequest(artifact_kind="prd", input=RunInput(message=message, **input_fields))


def make_controller(generator=None, workspace=None, registry=None, skill_runner=None):
    generator = generator or FakeGenerator()
    return GraphController(
        planner=PrdPlanner(registry=registry, section_detector=SectionDetectionAnalyzer(generator)),
        skill_runner=skill_runner or PrdSkillRunner(generator),
        verifier=ArtifactVerifier(),
        workspace=workspace or InMemoryWorkspaceRepository(),
        registry=registry,
    )


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def workspace():
    return InMemoryWorkspaceRepository()


@pytest.fixture
def registry():
    registry = SubagentRegistry()
    registry.register(persona_manifest)
    return registry
