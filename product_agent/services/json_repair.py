"""
Best-effort repair of malformed JSON returned by language models.

Repair is deliberately bounded: a fixed sequence of textual fixes followed by
one parse. Callers decide what to do when it still fails.
"""

from __future__ import annotations

import json
import re
from typing import Any, List, Optional


class JSONRepairError(ValueError):
    """Raised when a model response cannot be turned into JSON."""
    pass


_XML_TAG = re.compile(r"</?(?:parameter|invoke|function_calls)[^>]*>", re.I)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_DANGLING_COMMAS = re.compile(r",+\s*$")
_MISSING_COMMA_AFTER_CLOSER = re.compile(r"([}\]\"])(\s*\n\s*)(\"[^\"]+\"\s*:)")


def strip_code_fences(text: str) -> str:
    t = (text or "").strip()
    if t.startswith("```"):
        t = t.strip("`\n ")
        if t.lower().startswith("json"):
            t = t[len("json"):].lstrip()
    return t


def _extract_balanced(value: str, opener: str, closer: str) -> Optional[str]:
    """Return the first balanced ``opener ... closer`` span, ignoring brackets inside strings."""
    start = value.find(opener)
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(value)):
        char = value[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return value[start:index + 1]
    return None


def extract_json_array(value: str) -> Optional[List[Any]]:
    """Parse the first complete JSON array embedded in ``value``."""
    candidate = _extract_balanced(value, "[", "]")
    if candidate is None:
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, list) else None


def sanitize_json_text(text: str) -> str:
    """Apply the textual fixes: fences, stray tool tags, missing and trailing commas."""
    sanitized = strip_code_fences(text)
    sanitized = _XML_TAG.sub("", sanitized)
    sanitized = sanitized.strip()
    if not sanitized.startswith(("{", "[")):
        obj = _extract_balanced(sanitized, "{", "}")
        if obj is not None:
            sanitized = obj
    sanitized = _MISSING_COMMA_AFTER_CLOSER.sub(r"\1,\2\3", sanitized)
    sanitized = _DANGLING_COMMAS.sub("", sanitized)
    sanitized = _TRAILING_COMMA.sub(r"\1", sanitized)
    return sanitized


def repair_json(text: str) -> Any:
    """Parse ``text`` as JSON, repairing common model formatting mistakes first."""
    try:
        return json.loads(strip_code_fences(text))
    except (json.JSONDecodeError, TypeError):
        pass
    sanitized = sanitize_json_text(text or "")
    try:
        return json.loads(sanitized)
    except json.JSONDecodeError as e:
        if sanitized.startswith("{"):
            obj = _extract_balanced(sanitized, "{", "}")
            if obj is not None and obj != sanitized:
                try:
                    return json.loads(obj)
                except json.JSONDecodeError:
                    pass
        array = extract_json_array(sanitized)
        if array is not None:
            return array
        raise JSONRepairError(f"Unable to sanitize malformed AI response: {e}") from e


def parse_json_field(value: Any) -> Any:
    """Decode a field that a model emitted as a JSON string instead of structured data.

    Values that are not strings, or strings that cannot be repaired, are
    returned unchanged so schema validation reports the real problem.
    """
    if not isinstance(value, str):
        return value
    try:
        return repair_json(value)
    except JSONRepairError:
        return value
