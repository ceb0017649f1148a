"""
Request and response schemas for run endpoints.
"""

from typing import Optional
from pydantic import model_validator

from product_agent.models.base import WireModel
from product_agent.models.run import RunInput, RunStatus


class ResumeRunRequest(WireModel):
    """Clarification answer for a run awaiting input: a plain message or a full input."""
    message: Optional[str] = None
    input: Optional[RunInput] = None

    @model_validator(mode="after")
    def validate_single_source(self):
        if self.message is not None and self.input is not None:
            raise ValueError("Provide either message or input, not both")
        if self.message is not None and not self.message.strip():
            raise ValueError("message must not be empty")
        return self

    @property
    def answer(self):
        return self.input if self.input is not None else self.message


class RunAcceptedResponse(WireModel):
    """Returned when a run is started in the background."""
    run_id: str
    status: RunStatus = RunStatus.PENDING


class CancelRunResponse(WireModel):
    run_id: str
    cancelled: bool
