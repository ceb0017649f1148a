"""
Constraints section writer: constraints and assumptions, two string lists
merged under the same mode.
"""

from typing import Any, Dict, List

from pydantic import Field, field_validator

from product_agent.models.base import WireModel
from product_agent.prd import prompts
from product_agent.prd.merge import apply_edit_plan, sanitize_strings
from product_agent.prd.writers.base import (
    BaseSectionWriter,
    LLMPlan,
    PlanOperation,
    existing_list,
    json_list,
    to_edit_plan,
)

MIN_CONSTRAINTS = 1
MAX_CONSTRAINTS = 8
MIN_ASSUMPTIONS = 1
MAX_ASSUMPTIONS = 6
MIN_CONSTRAINT_LENGTH = 15
MIN_ASSUMPTION_LENGTH = 15


class StringListPlan(WireModel):
    operations: List[PlanOperation] = Field(default_factory=list)
    proposed: List[str] = Field(default_factory=list)

    @field_validator("operations", "proposed", mode="before")
    def decode_lists(cls, v):
        return json_list(v)


class ConstraintsPlan(LLMPlan):
    constraints: StringListPlan = Field(default_factory=StringListPlan)
    assumptions: StringListPlan = Field(default_factory=StringListPlan)

    @field_validator("constraints", "assumptions", mode="before")
    def decode_plan(cls, v):
        return json_list(v) or {}


class ConstraintsSectionWriter(BaseSectionWriter):
    section_name = "constraints"

    async def generate(self, run_input, analysis, existing_section, settings):
        existing_constraints = sanitize_strings(existing_list(existing_section, "constraints"))
        existing_assumptions = sanitize_strings(
            existing_section.get("assumptions") if isinstance(existing_section, dict) else []
        )
        plan: ConstraintsPlan = await self._generate(
            ConstraintsPlan,
            prompts.constraints_prompt(run_input.message, analysis, existing_constraints, existing_assumptions),
            settings,
        )

        merged = {}
        for field, existing, list_plan in (
            ("constraints", existing_constraints, plan.constraints),
            ("assumptions", existing_assumptions, plan.assumptions),
        ):
            edit_plan = to_edit_plan(
                plan.mode,
                [(op.action, op.reference, op.value, op.rationale) for op in list_plan.operations],
                list_plan.proposed,
            )
            merged[field] = apply_edit_plan(existing, edit_plan)

        return merged, {
            "constraints_count": len(merged["constraints"]),
            "assumptions_count": len(merged["assumptions"]),
            "plan_mode": plan.mode,
            "constraint_operations": len(plan.constraints.operations),
            "assumption_operations": len(plan.assumptions.operations),
        }

    def validate(self, content: Dict[str, Any]) -> List[str]:
        constraints = content.get("constraints") or []
        assumptions = content.get("assumptions") or []
        issues = []
        if len(constraints) < MIN_CONSTRAINTS:
            issues.append("No constraints defined - every project has constraints")
        if len(constraints) > MAX_CONSTRAINTS:
            issues.append(f"Too many constraints (should focus on {MIN_CONSTRAINTS}-{MAX_CONSTRAINTS} key limitations)")
        if len(assumptions) < MIN_ASSUMPTIONS:
            issues.append("No assumptions defined - every project has assumptions")
        if len(assumptions) > MAX_ASSUMPTIONS:
            issues.append(f"Too many assumptions (should focus on {MIN_ASSUMPTIONS}-{MAX_ASSUMPTIONS} key assumptions)")
        if any(len(c) < MIN_CONSTRAINT_LENGTH for c in constraints):
            issues.append(f"Some constraints are too vague (should be at least {MIN_CONSTRAINT_LENGTH} characters)")
        if any(len(a) < MIN_ASSUMPTION_LENGTH for a in assumptions):
            issues.append(f"Some assumptions are too vague (should be at least {MIN_ASSUMPTION_LENGTH} characters)")
        return issues
