"""
Base schemas and response utilities.
"""

from typing import Any, Dict, List, Union
from pydantic import BaseModel


def to_wire(data: Any) -> Any:
    """Serialize models (or lists of models) to their camelCase JSON form."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, list):
        return [to_wire(item) for item in data]
    return data


class BaseResponse:
    """Envelope shared by every HTTP endpoint."""

    @staticmethod
    def success(data: Union[BaseModel, List[Any], Any], message: str = "Success") -> Dict[str, Any]:
        return {
            "success": True,
            "message": message,
            "data": to_wire(data)
        }

    @staticmethod
    def error(message: str, details: Any = None, status_code: int = 400) -> Dict[str, Any]:
        response = {
            "success": False,
            "message": message,
            "status_code": status_code
        }
        if details:
            response["details"] = details
        return response
