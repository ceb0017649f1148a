"""
Target users section writer.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from product_agent.models.base import WireModel
from product_agent.prd import prompts
from product_agent.prd.merge import apply_edit_plan, sanitize_strings
from product_agent.prd.writers.base import BaseSectionWriter, LLMPlan, existing_list, json_list, to_edit_plan

MAX_TARGET_USERS = 5
MIN_USER_DESCRIPTION_LENGTH = 10


class TargetUserOperation(WireModel):
    action: str = "add"
    reference_user: Optional[str] = None
    user: Optional[str] = None
    rationale: Optional[str] = None


class TargetUsersPlan(LLMPlan):
    operations: List[TargetUserOperation] = Field(default_factory=list)
    proposed_users: List[str] = Field(default_factory=list)

    @field_validator("operations", "proposed_users", mode="before")
    def decode_lists(cls, v):
        return json_list(v)


class TargetUsersSectionWriter(BaseSectionWriter):
    section_name = "targetUsers"

    async def generate(self, run_input, analysis, existing_section, settings):
        existing_users = sanitize_strings(existing_list(existing_section, "targetUsers"))
        plan: TargetUsersPlan = await self._generate(
            TargetUsersPlan,
            prompts.target_users_prompt(run_input.message, analysis, existing_users),
            settings,
        )
        edit_plan = to_edit_plan(
            plan.mode,
            [(op.action, op.reference_user, op.user, op.rationale) for op in plan.operations],
            plan.proposed_users,
            plan.summary,
        )
        users = apply_edit_plan(existing_users, edit_plan)
        return {"targetUsers": users}, {
            "target_users_count": len(users),
            "plan_mode": edit_plan.mode.value,
            "operations_applied": len(edit_plan.operations),
            "proposed_users": len(edit_plan.proposed),
        }

    def validate(self, content: Dict[str, Any]) -> List[str]:
        users = content.get("targetUsers") or []
        issues = []
        if not users:
            issues.append("No target users defined")
        if len(users) > MAX_TARGET_USERS:
            issues.append(f"Too many target users (should be 2-{MAX_TARGET_USERS} for focus)")
        if any(len(user) < MIN_USER_DESCRIPTION_LENGTH for user in users):
            issues.append(
                f"Some target users are too vague (should be at least {MIN_USER_DESCRIPTION_LENGTH} characters)"
            )
        return issues
