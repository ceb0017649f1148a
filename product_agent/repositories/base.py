"""
Workspace repository interface.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from product_agent.models.artifact import Artifact, ArtifactSummary
from product_agent.models.events import WorkspaceEvent, WorkspaceHandle


class WorkspaceError(Exception):
    """Raised for workspace misuse (uninitialized runs, invalid paths)."""
    pass


class WorkspaceRepository(ABC):
    """Abstract interface for per-run artifact and event storage."""

    @abstractmethod
    async def ensure_workspace(
        self,
        run_id: str,
        artifact_kind: str,
        persist_artifacts: Optional[bool] = None,
        temp_subdir: Optional[str] = None,
    ) -> WorkspaceHandle:
        """
        Create (or reopen) the workspace of a run.

        Args:
            run_id: Run identifier
            artifact_kind: Kind of the primary artifact of the run
            persist_artifacts: Override of the repository-wide persistence flag
            temp_subdir: Override of the scratch directory name

        Returns:
            Handle describing the workspace
        """
        pass

    @abstractmethod
    async def write_artifact(self, run_id: str, artifact: Artifact) -> None:
        """Persist an artifact and update the run's artifact index."""
        pass

    @abstractmethod
    async def read_artifact(self, run_id: str, artifact_id: str) -> Optional[Artifact]:
        """Return a persisted artifact, or None when it does not exist."""
        pass

    @abstractmethod
    async def list_artifacts(self, run_id: str) -> List[ArtifactSummary]:
        pass

    @abstractmethod
    async def append_event(self, run_id: str, event: WorkspaceEvent) -> None:
        pass

    @abstractmethod
    async def get_events(self, run_id: str) -> List[WorkspaceEvent]:
        pass

    @abstractmethod
    async def teardown(self, run_id: str) -> None:
        """Delete everything stored for a run."""
        pass

    @abstractmethod
    def has_workspace(self, run_id: str) -> bool:
        pass
