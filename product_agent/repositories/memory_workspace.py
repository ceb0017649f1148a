"""
In-memory WorkspaceRepository, used by tests and the ``memory`` backend.
"""

from typing import Dict, List, Optional

from product_agent.models.artifact import Artifact, ArtifactSummary
from product_agent.models.base import utcnow
from product_agent.models.events import WorkspaceDescriptor, WorkspaceEvent, WorkspaceHandle
from product_agent.repositories.base import WorkspaceError, WorkspaceRepository


class InMemoryWorkspaceRepository(WorkspaceRepository):

    def __init__(self, persist_artifacts: bool = True):
        self.persist_artifacts = persist_artifacts
        self._descriptors: Dict[str, WorkspaceDescriptor] = {}
        self._artifacts: Dict[str, Dict[str, Artifact]] = {}
        self._events: Dict[str, List[WorkspaceEvent]] = {}

    def _descriptor(self, run_id: str) -> WorkspaceDescriptor:
        descriptor = self._descriptors.get(run_id)
        if descriptor is None:
            raise WorkspaceError(f"Workspace for run {run_id} has not been initialized")
        return descriptor

    def has_workspace(self, run_id: str) -> bool:
        return run_id in self._descriptors

    async def ensure_workspace(self, run_id, artifact_kind, persist_artifacts=None, temp_subdir=None) -> WorkspaceHandle:
        descriptor = self._descriptors.get(run_id)
        if descriptor is None:
            descriptor = WorkspaceDescriptor(
                run_id=run_id,
                root=f"memory://{run_id}",
                kind=artifact_kind,
                metadata={
                    "persist_artifacts": self.persist_artifacts if persist_artifacts is None else persist_artifacts,
                    "temp_subdir": temp_subdir or "tmp",
                },
            )
            self._descriptors[run_id] = descriptor
            self._artifacts[run_id] = {}
            self._events[run_id] = []
        return WorkspaceHandle(descriptor=descriptor)

    async def write_artifact(self, run_id: str, artifact: Artifact) -> None:
        descriptor = self._descriptor(run_id)
        if not descriptor.metadata.get("persist_artifacts", True):
            return
        self._artifacts[run_id][artifact.id] = artifact.model_copy(
            update={"metadata": artifact.metadata.model_copy(update={"updated_at": utcnow()})}
        )

    async def read_artifact(self, run_id: str, artifact_id: str) -> Optional[Artifact]:
        self._descriptor(run_id)
        return self._artifacts[run_id].get(artifact_id)

    async def list_artifacts(self, run_id: str) -> List[ArtifactSummary]:
        self._descriptor(run_id)
        return [
            ArtifactSummary(
                id=a.id,
                kind=a.kind,
                label=a.label,
                version=a.version,
                created_at=a.metadata.created_at,
                updated_at=a.metadata.updated_at,
                metadata=a.metadata.extras,
            )
            for a in self._artifacts[run_id].values()
        ]

    async def append_event(self, run_id: str, event: WorkspaceEvent) -> None:
        self._descriptor(run_id)
        self._events[run_id].append(event)

    async def get_events(self, run_id: str) -> List[WorkspaceEvent]:
        self._descriptor(run_id)
        return list(self._events[run_id])

    async def teardown(self, run_id: str) -> None:
        self._descriptors.pop(run_id, None)
        self._artifacts.pop(run_id, None)
        self._events.pop(run_id, None)
