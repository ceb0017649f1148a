"""
Section merge engine.

Applies an edit-plan proposed by the model (itemized add/update/remove
operations, a list of proposed items and a merge mode) onto existing section
content. Matching is a case-insensitive exact comparison of item keys;
paraphrased duplicates are not detected.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from pydantic import BaseModel, Field, field_validator

from product_agent.services.json_repair import parse_json_field

T = TypeVar("T")


class MergeMode(str, Enum):
    APPEND = "append"
    REPLACE = "replace"
    SMART_MERGE = "smart_merge"


class EditAction(str, Enum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


_ACTION_SYNONYMS = {
    "add": EditAction.ADD,
    "append": EditAction.ADD,
    "insert": EditAction.ADD,
    "update": EditAction.UPDATE,
    "modify": EditAction.UPDATE,
    "edit": EditAction.UPDATE,
    "keep": EditAction.UPDATE,
    "retain": EditAction.UPDATE,
    "remove": EditAction.REMOVE,
    "delete": EditAction.REMOVE,
}


def normalize_action(action: Any) -> EditAction:
    """Canonicalize an operation verb; unknown verbs are treated as ``add``."""
    if isinstance(action, EditAction):
        return action
    return _ACTION_SYNONYMS.get(str(action or "").strip().lower(), EditAction.ADD)


def normalize_mode(mode: Any) -> MergeMode:
    try:
        return MergeMode(str(mode or "").strip().lower())
    except ValueError:
        return MergeMode.SMART_MERGE


class EditOperation(BaseModel, Generic[T]):
    action: EditAction = EditAction.ADD
    reference: Optional[str] = None
    value: Optional[T] = None
    rationale: Optional[str] = None

    @field_validator("action", mode="before")
    def coerce_action(cls, v):
        return normalize_action(v)


class EditPlan(BaseModel, Generic[T]):
    """Normalized edit-plan consumed by :func:`apply_edit_plan`."""
    mode: MergeMode = MergeMode.SMART_MERGE
    operations: List[EditOperation[T]] = Field(default_factory=list)
    proposed: List[T] = Field(default_factory=list)
    summary: Optional[str] = None

    @field_validator("mode", mode="before")
    def coerce_mode(cls, v):
        return normalize_mode(v)

    @field_validator("operations", "proposed", mode="before")
    def decode_lists(cls, v):
        v = parse_json_field(v)
        return [] if v is None else v


def sanitize_strings(items: Sequence[Any]) -> List[str]:
    """Trim string items and drop empty or non-string entries."""
    out: List[str] = []
    for item in items or []:
        if isinstance(item, str) and item.strip():
            out.append(item.strip())
    return out


def text_key(item: Any) -> str:
    return str(item or "").strip().lower()


def dedupe(items: Sequence[T], key: Callable[[T], str] = text_key) -> List[T]:
    """Case-insensitive dedupe that keeps the first occurrence."""
    seen = set()
    unique: List[T] = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        unique.append(item)
    return unique


def _find_index(items: Sequence[T], reference: Optional[str], key: Callable[[T], str]) -> int:
    if reference is None:
        return -1
    ref = text_key(reference)
    if not ref:
        return -1
    for index, item in enumerate(items):
        if key(item) == ref:
            return index
    return -1


def apply_edit_plan(
    existing: Sequence[Any],
    plan: EditPlan,
    key: Callable[[Any], str] = text_key,
    sanitize: Callable[[Sequence[Any]], List[Any]] = sanitize_strings,
) -> List[Any]:
    """Merge ``plan`` into ``existing`` and return the new item list.

    Operations run in order against the sanitized existing items. In replace
    mode a non-empty proposed list becomes the result; otherwise every proposed
    item is upserted, a case-insensitive match leaving the existing item in
    place. The result is deduplicated and never left empty while proposed
    items exist. A plan with no operations and nothing proposed returns the
    sanitized, deduplicated input.
    """
    working = list(sanitize(list(existing or [])))

    for operation in plan.operations:
        values = sanitize([operation.value]) if operation.value is not None else []
        value = values[0] if values else None
        reference = operation.reference if operation.reference is not None else (
            key(value) if value is not None else None
        )
        index = _find_index(working, reference, key)

        if operation.action == EditAction.REMOVE:
            if index >= 0:
                del working[index]
            continue

        if value is None:
            continue
        if index >= 0:
            working[index] = value
        else:
            working.append(value)

    proposed = sanitize(list(plan.proposed or []))

    if plan.mode == MergeMode.REPLACE:
        working = proposed if proposed else working
    else:
        for item in proposed:
            if _find_index(working, key(item), key) < 0:
                working.append(item)

    working = dedupe(working, key)

    if not working and proposed:
        working = dedupe(proposed, key)

    return working
