"""Services package."""

from .generation import GenerationError, GenerationService, ModelNotFoundError
from .json_repair import JSONRepairError, parse_json_field, repair_json

__all__ = ["GenerationError", "GenerationService", "ModelNotFoundError", "JSONRepairError", "parse_json_field", "repair_json"]
