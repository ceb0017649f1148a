"""
PRD section writers, one per canonical section.
"""

from typing import Dict

from product_agent.prd.writers.base import BaseSectionWriter, SectionWriterResult
from product_agent.prd.writers.constraints import ConstraintsSectionWriter
from product_agent.prd.writers.key_features import KeyFeaturesSectionWriter
from product_agent.prd.writers.solution import SolutionSectionWriter
from product_agent.prd.writers.success_metrics import SuccessMetricsSectionWriter
from product_agent.prd.writers.target_users import TargetUsersSectionWriter

SECTION_WRITERS = (
    TargetUsersSectionWriter,
    SolutionSectionWriter,
    KeyFeaturesSectionWriter,
    SuccessMetricsSectionWriter,
    ConstraintsSectionWriter,
)

# Canonical section order used by the planner and the verifier.
CANONICAL_SECTIONS = tuple(writer.section_name for writer in SECTION_WRITERS)


def create_section_writers(generator) -> Dict[str, BaseSectionWriter]:
    """Instantiate every section writer around one generation service."""
    return {writer.section_name: writer(generator) for writer in SECTION_WRITERS}


__all__ = [
    "BaseSectionWriter",
    "SectionWriterResult",
    "CANONICAL_SECTIONS",
    "create_section_writers",
]
