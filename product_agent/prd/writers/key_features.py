"""
Key features section writer.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from product_agent.models.base import WireModel
from product_agent.prd import prompts
from product_agent.prd.merge import apply_edit_plan, sanitize_strings
from product_agent.prd.writers.base import BaseSectionWriter, LLMPlan, existing_list, json_list, to_edit_plan

MIN_KEY_FEATURES = 3
MAX_KEY_FEATURES = 8
MIN_FEATURE_DESCRIPTION_LENGTH = 15


class KeyFeatureOperation(WireModel):
    action: str = "add"
    reference_feature: Optional[str] = None
    feature: Optional[str] = None
    rationale: Optional[str] = None


class KeyFeaturesPlan(LLMPlan):
    operations: List[KeyFeatureOperation] = Field(default_factory=list)
    proposed_features: List[str] = Field(default_factory=list)

    @field_validator("operations", "proposed_features", mode="before")
    def decode_lists(cls, v):
        return json_list(v)


class KeyFeaturesSectionWriter(BaseSectionWriter):
    section_name = "keyFeatures"

    async def generate(self, run_input, analysis, existing_section, settings):
        existing_features = sanitize_strings(existing_list(existing_section, "keyFeatures"))
        plan: KeyFeaturesPlan = await self._generate(
            KeyFeaturesPlan,
            prompts.key_features_prompt(run_input.message, analysis, existing_features),
            settings,
        )
        edit_plan = to_edit_plan(
            plan.mode,
            [(op.action, op.reference_feature, op.feature, op.rationale) for op in plan.operations],
            plan.proposed_features,
            plan.summary,
        )
        features = apply_edit_plan(existing_features, edit_plan)
        return {"keyFeatures": features}, {
            "features_count": len(features),
            "plan_mode": edit_plan.mode.value,
            "operations_applied": len(edit_plan.operations),
            "proposed_features": len(edit_plan.proposed),
        }

    def validate(self, content: Dict[str, Any]) -> List[str]:
        features = content.get("keyFeatures") or []
        issues = []
        if len(features) < MIN_KEY_FEATURES:
            issues.append(f"Too few key features (should have at least {MIN_KEY_FEATURES})")
        if len(features) > MAX_KEY_FEATURES:
            issues.append(f"Too many key features (should focus on {MIN_KEY_FEATURES}-{MAX_KEY_FEATURES})")
        if any(len(feature) < MIN_FEATURE_DESCRIPTION_LENGTH for feature in features):
            issues.append(
                f"Some features are too vague (should be at least {MIN_FEATURE_DESCRIPTION_LENGTH} characters)"
            )
        return issues
