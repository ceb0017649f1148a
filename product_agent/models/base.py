"""
Shared base model for wire-level contracts.
"""

from datetime import datetime, timezone
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current time used for every timestamp in the engine."""
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for contracts exchanged with callers.

    Attributes are snake_case in Python and camelCase on the wire; both
    spellings are accepted when validating input.
    """

    class Config:
        alias_generator = to_camel
        populate_by_name = True
