"""
Success metrics section writer. Metrics are matched on their name.
"""

import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import Field, field_validator

from product_agent.models.base import WireModel
from product_agent.prd import prompts
from product_agent.prd.merge import apply_edit_plan, text_key
from product_agent.prd.writers.base import BaseSectionWriter, LLMPlan, existing_list, json_list, to_edit_plan

MIN_SUCCESS_METRICS = 2
MAX_SUCCESS_METRICS = 6
MIN_TIMELINE_LENGTH = 5
VAGUE_TARGET_TERMS = ("improve", "better")


class SuccessMetric(WireModel):
    metric: str
    target: str = ""
    timeline: str = ""


class SuccessMetricOperation(WireModel):
    action: str = "add"
    reference_metric: Optional[str] = None
    metric: Optional[SuccessMetric] = None
    rationale: Optional[str] = None


class SuccessMetricsPlan(LLMPlan):
    operations: List[SuccessMetricOperation] = Field(default_factory=list)
    proposed_metrics: List[SuccessMetric] = Field(default_factory=list)

    @field_validator("operations", "proposed_metrics", mode="before")
    def decode_lists(cls, v):
        return json_list(v)


def metric_key(item: Any) -> str:
    if isinstance(item, dict):
        return text_key(item.get("metric"))
    return text_key(item)


def sanitize_metrics(items: Sequence[Any]) -> List[Dict[str, str]]:
    """Keep metric records that carry a name, with trimmed string fields."""
    out = []
    for item in items or []:
        if isinstance(item, SuccessMetric):
            item = item.model_dump()
        if not isinstance(item, dict):
            continue
        name = str(item.get("metric") or "").strip()
        if not name:
            continue
        out.append({
            "metric": name,
            "target": str(item.get("target") or "").strip(),
            "timeline": str(item.get("timeline") or "").strip(),
        })
    return out


class SuccessMetricsSectionWriter(BaseSectionWriter):
    section_name = "successMetrics"

    async def generate(self, run_input, analysis, existing_section, settings):
        existing_metrics = sanitize_metrics(existing_list(existing_section, "successMetrics"))
        plan: SuccessMetricsPlan = await self._generate(
            SuccessMetricsPlan,
            prompts.success_metrics_prompt(run_input.message, analysis, existing_metrics),
            settings,
        )
        edit_plan = to_edit_plan(
            plan.mode,
            [
                (op.action, op.reference_metric, op.metric.model_dump() if op.metric else None, op.rationale)
                for op in plan.operations
            ],
            [m.model_dump() for m in plan.proposed_metrics],
            plan.summary,
        )
        metrics = apply_edit_plan(existing_metrics, edit_plan, key=metric_key, sanitize=sanitize_metrics)
        return {"successMetrics": metrics}, {
            "metrics_count": len(metrics),
            "plan_mode": edit_plan.mode.value,
            "operations_applied": len(edit_plan.operations),
            "proposed_metrics": len(edit_plan.proposed),
        }

    def validate(self, content: Dict[str, Any]) -> List[str]:
        metrics = content.get("successMetrics") or []
        issues = []
        if len(metrics) < MIN_SUCCESS_METRICS:
            issues.append(f"Too few success metrics (should have at least {MIN_SUCCESS_METRICS})")
        if len(metrics) > MAX_SUCCESS_METRICS:
            issues.append(f"Too many success metrics (should focus on {MIN_SUCCESS_METRICS}-{MAX_SUCCESS_METRICS})")
        vague = [
            m for m in metrics
            if not re.search(r"\d", m.get("target", ""))
            or any(term in m.get("target", "").lower() for term in VAGUE_TARGET_TERMS)
        ]
        if vague:
            issues.append("Some metric targets are not measurable (include a specific number)")
        unclear = [
            m for m in metrics
            if len(m.get("timeline", "")) < MIN_TIMELINE_LENGTH or "tbd" in m.get("timeline", "").lower()
        ]
        if unclear:
            issues.append("Some metric timelines are missing or unclear")
        return issues
