"""Schemas package."""

from .base import BaseResponse
from .run import CancelRunResponse, ResumeRunRequest, RunAcceptedResponse

__all__ = ["BaseResponse", "CancelRunResponse", "ResumeRunRequest", "RunAcceptedResponse"]
