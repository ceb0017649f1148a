import itertools

from product_agent.models.skill import ConfidenceAssessment, ConfidenceLevel
from product_agent.prd.confidence import (
    assess_confidence,
    assess_content_specificity,
    assess_context_richness,
    assess_input_completeness,
    combine_confidence_assessments,
)

RANK = {ConfidenceLevel.LOW: 1, ConfidenceLevel.MEDIUM: 2, ConfidenceLevel.HIGH: 3}
LEVELS = [ConfidenceLevel.LOW, ConfidenceLevel.MEDIUM, ConfidenceLevel.HIGH]


def test_no_factors_defaults_to_medium():
    assessment = assess_confidence()
    assert assessment.level == ConfidenceLevel.MEDIUM
    assert "insufficient assessment data" in assessment.reasons[0]


def test_all_strong_factors_are_high():
    assessment = assess_confidence(
        input_completeness=ConfidenceLevel.HIGH,
        context_richness=ConfidenceLevel.HIGH,
        validation_success=True,
        content_specificity=ConfidenceLevel.HIGH,
        has_errors=False,
        content_length=500,
    )
    assert assessment.level == ConfidenceLevel.HIGH
    assert "Content passes validation checks" in assessment.reasons


def test_all_weak_factors_are_low():
    assessment = assess_confidence(
        input_completeness=ConfidenceLevel.LOW,
        context_richness=ConfidenceLevel.LOW,
        validation_success=False,
        has_errors=True,
        content_length=10,
    )
    assert assessment.level == ConfidenceLevel.LOW


def test_improving_any_single_factor_never_lowers_the_level():
    base = dict(
        input_completeness=ConfidenceLevel.MEDIUM,
        context_richness=ConfidenceLevel.LOW,
        content_specificity=ConfidenceLevel.MEDIUM,
        validation_success=False,
        has_errors=False,
        content_length=100,
    )
    for name in ("input_completeness", "context_richness", "content_specificity"):
        previous = None
        for level in LEVELS:
            current = assess_confidence(**{**base, name: level}).level
            if previous is not None:
                assert RANK[current] >= RANK[previous]
            previous = current

    worse = assess_confidence(**{**base, "validation_success": False}).level
    better = assess_confidence(**{**base, "validation_success": True}).level
    assert RANK[better] >= RANK[worse]

    shorter = assess_confidence(**{**base, "content_length": 20}).level
    longer = assess_confidence(**{**base, "content_length": 300}).level
    assert RANK[longer] >= RANK[shorter]


def test_monotonic_over_every_level_combination():
    for a, b in itertools.product(LEVELS, repeat=2):
        for upgraded in LEVELS:
            if RANK[upgraded] < RANK[a]:
                continue
            low = assess_confidence(input_completeness=a, context_richness=b, validation_success=True).level
            high = assess_confidence(input_completeness=upgraded, context_richness=b, validation_success=True).level
            assert RANK[high] >= RANK[low]


def test_input_completeness_thresholds():
    long_message = "x" * 120
    payload = {"selectedMessages": [{"id": 1}]}
    assert assess_input_completeness(long_message, payload) == ConfidenceLevel.HIGH
    assert assess_input_completeness(long_message) == ConfidenceLevel.MEDIUM
    assert assess_input_completeness("short", payload) == ConfidenceLevel.MEDIUM
    assert assess_input_completeness("short") == ConfidenceLevel.LOW


def test_context_richness_counts_items_and_current_prd():
    assert assess_context_richness(None) == ConfidenceLevel.LOW
    assert assess_context_richness({"categorizedContext": [1, 2]}) == ConfidenceLevel.MEDIUM
    assert assess_context_richness({"categorizedContext": [1, 2, 3], "currentPRD": {"a": 1}}) == ConfidenceLevel.HIGH


def test_content_specificity_prefers_specific_numbers_and_names():
    specific = "Specific rollout to 12 Berlin warehouses, for example with detailed weekly reviews. " * 8
    assert assess_content_specificity(specific) == ConfidenceLevel.HIGH
    assert assess_content_specificity("various general things") == ConfidenceLevel.LOW
    assert assess_content_specificity("") == ConfidenceLevel.LOW


def test_combine_uses_majority_rules():
    high = ConfidenceAssessment(level=ConfidenceLevel.HIGH, reasons=["good"])
    medium = ConfidenceAssessment(level=ConfidenceLevel.MEDIUM)
    low = ConfidenceAssessment(level=ConfidenceLevel.LOW)

    assert combine_confidence_assessments({"a": high, "b": high, "c": low}).level == ConfidenceLevel.HIGH
    assert combine_confidence_assessments({"a": low, "b": low, "c": medium}).level == ConfidenceLevel.LOW
    assert combine_confidence_assessments({"a": high, "b": medium, "c": medium, "d": low, "e": medium}).level == (
        ConfidenceLevel.MEDIUM
    )
    combined = combine_confidence_assessments({"a": high})
    assert combined.reasons[0] == "Overall assessment based on 1 sections"
    assert "a: good" in combined.reasons
