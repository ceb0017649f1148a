"""
Subagent contract: a uniform ``execute(request) -> artifact`` lifecycle.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
from pydantic import BaseModel, Field

from product_agent.models.artifact import Artifact
from product_agent.models.run import RunContext
from product_agent.models.subagent import SubagentMetadata, SubagentResult


class SubagentError(Exception):
    """Raised for registry misuse and failed subagent executions."""
    pass


class SubagentRequest(BaseModel):
    """Inputs handed to a subagent lifecycle."""
    params: Dict[str, Any] = Field(default_factory=dict)
    run: RunContext
    source_artifact: Optional[Artifact] = None
    # Artifacts produced earlier in the run, by kind, oldest first.
    source_artifacts: Dict[str, List[Artifact]] = Field(default_factory=dict)
    emit: Optional[Callable[[Any], Any]] = None

    class Config:
        arbitrary_types_allowed = True


class SubagentLifecycle(ABC):
    """A subagent that turns a source artifact (or prompt) into a new artifact."""

    metadata: SubagentMetadata

    @abstractmethod
    async def execute(self, request: SubagentRequest) -> SubagentResult:
        pass
