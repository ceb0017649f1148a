from product_agent.prd.merge import (
    EditAction,
    EditOperation,
    EditPlan,
    MergeMode,
    apply_edit_plan,
    dedupe,
    normalize_action,
)
from product_agent.prd.writers.success_metrics import metric_key, sanitize_metrics


def test_update_operation_replaces_referenced_item_and_keeps_order():
    existing = ["Enterprise buyers", "Ops managers"]
    plan = EditPlan(
        mode="smart_merge",
        operations=[
            EditOperation(action="update", reference="Ops managers", value="Warehouse ops managers"),
            EditOperation(action="add", value="Finance teams"),
        ],
    )

    assert apply_edit_plan(existing, plan) == ["Enterprise buyers", "Warehouse ops managers", "Finance teams"]


def test_case_insensitive_match_keeps_existing_item():
    existing = ["Small teams", "Enterprise IT"]
    plan = EditPlan(mode="smart_merge", proposed=["small teams", "Agencies"])

    assert apply_edit_plan(existing, plan) == ["Small teams", "Enterprise IT", "Agencies"]


def test_remove_operation_drops_matching_item():
    plan = EditPlan(operations=[EditOperation(action="delete", reference="B")])
    assert apply_edit_plan(["a", "b", "c"], plan) == ["a", "c"]


def test_remove_of_unknown_reference_is_ignored():
    plan = EditPlan(operations=[EditOperation(action="remove", reference="missing")])
    assert apply_edit_plan(["a", "b"], plan) == ["a", "b"]


def test_replace_mode_with_proposed_items_discards_existing():
    plan = EditPlan(mode="replace", proposed=["x", "y"])
    assert apply_edit_plan(["a", "b", "c"], plan) == ["x", "y"]


def test_replace_mode_without_proposed_keeps_operation_results():
    plan = EditPlan(mode="replace", operations=[EditOperation(action="add", value="d")])
    assert apply_edit_plan(["a"], plan) == ["a", "d"]


def test_empty_plan_returns_sanitized_existing():
    assert apply_edit_plan(["  a ", "", "A", None, "b"], EditPlan()) == ["a", "b"]


def test_merge_is_idempotent_for_smart_merge():
    plan = EditPlan(mode="smart_merge", proposed=["New persona", "Existing persona"])
    once = apply_edit_plan(["Existing persona"], plan)
    twice = apply_edit_plan(once, plan)

    assert once == twice == ["Existing persona", "New persona"]


def test_result_never_empty_when_items_are_proposed():
    plan = EditPlan(
        mode="smart_merge",
        operations=[EditOperation(action="remove", reference="only")],
        proposed=[],
    )
    assert apply_edit_plan(["only"], plan) == []

    plan_with_proposed = EditPlan(
        mode="append",
        operations=[EditOperation(action="remove", reference="only")],
        proposed=["fresh"],
    )
    assert apply_edit_plan(["only"], plan_with_proposed) == ["fresh"]


def test_plan_accepts_json_encoded_lists_and_unknown_verbs():
    plan = EditPlan(
        mode="SOMETHING",
        operations='[{"action": "insert", "value": "b"}]',
        proposed='["c"]',
    )

    assert plan.mode == MergeMode.SMART_MERGE
    assert plan.operations[0].action == EditAction.ADD
    assert apply_edit_plan(["a"], plan) == ["a", "b", "c"]


def test_normalize_action_synonyms():
    assert normalize_action("Modify") == EditAction.UPDATE
    assert normalize_action("retain") == EditAction.UPDATE
    assert normalize_action("drop it") == EditAction.ADD


def test_dedupe_keeps_first_occurrence():
    assert dedupe(["Alpha", "beta", "ALPHA", "Beta "]) == ["Alpha", "beta"]


def test_metric_records_merge_by_metric_name():
    existing = [{"metric": "Activation rate", "target": "30%", "timeline": "Q1"}]
    plan = EditPlan(
        operations=[EditOperation(
            action="update",
            reference="activation RATE",
            value={"metric": "Activation rate", "target": "45%", "timeline": "Q2"},
        )],
        proposed=[{"metric": "Retention", "target": "60%", "timeline": "Within 6 months"}, {"metric": "  "}],
    )

    merged = apply_edit_plan(existing, plan, key=metric_key, sanitize=sanitize_metrics)

    assert merged == [
        {"metric": "Activation rate", "target": "45%", "timeline": "Q2"},
        {"metric": "Retention", "target": "60%", "timeline": "Within 6 months"},
    ]
