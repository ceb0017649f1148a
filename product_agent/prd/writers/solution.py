"""
Solution section writer. The model output overwrites the section 1:1.
"""

from typing import Any, Dict, List

from product_agent.models.base import WireModel
from product_agent.prd import prompts
from product_agent.prd.writers.base import BaseSectionWriter

MIN_SOLUTION_OVERVIEW_LENGTH = 50
MIN_APPROACH_LENGTH = 30
PLACEHOLDERS = ("tbd", "to be determined")


class SolutionResponse(WireModel):
    solution_overview: str
    approach: str


class SolutionSectionWriter(BaseSectionWriter):
    section_name = "solution"
    temperature = 0.25

    async def generate(self, run_input, analysis, existing_section, settings):
        existing = existing_section if isinstance(existing_section, dict) else None
        response: SolutionResponse = await self._generate(
            SolutionResponse,
            prompts.solution_prompt(run_input.message, analysis, existing),
            settings,
        )
        content = {
            "solutionOverview": response.solution_overview.strip(),
            "approach": response.approach.strip(),
        }
        return content, {
            "solution_overview_length": len(content["solutionOverview"]),
            "approach_length": len(content["approach"]),
        }

    def validate(self, content: Dict[str, Any]) -> List[str]:
        overview = content.get("solutionOverview") or ""
        approach = content.get("approach") or ""
        issues = []
        if len(overview) < MIN_SOLUTION_OVERVIEW_LENGTH:
            issues.append(f"Solution overview is too brief (should be at least {MIN_SOLUTION_OVERVIEW_LENGTH} characters)")
        if len(approach) < MIN_APPROACH_LENGTH:
            issues.append(f"Approach is too brief (should be at least {MIN_APPROACH_LENGTH} characters)")
        text = f"{overview} {approach}".lower()
        if any(placeholder in text for placeholder in PLACEHOLDERS):
            issues.append("Solution contains placeholder text")
        return issues
