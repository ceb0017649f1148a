"""
Local filesystem implementation of the WorkspaceRepository.

Layout per run::

    <root>/<run_id>/artifacts/<artifact_id>.json
    <root>/<run_id>/artifacts/index.json
    <root>/<run_id>/events/events.jsonl
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from typing import Any, Dict, List, Optional

from product_agent.models.artifact import Artifact, ArtifactSummary
from product_agent.models.base import utcnow
from product_agent.models.events import WorkspaceDescriptor, WorkspaceEvent, WorkspaceHandle
from product_agent.repositories.base import WorkspaceError, WorkspaceRepository

logger = logging.getLogger(__name__)

ARTIFACTS_DIR = "artifacts"
EVENTS_DIR = "events"
ARTIFACT_INDEX_FILE = "index.json"
EVENTS_FILE = "events.jsonl"


def _read_json(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None


def _write_json(path: str, payload: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)


class LocalWorkspaceRepository(WorkspaceRepository):
    """Stores run workspaces under a root directory."""

    def __init__(self, root: str, persist_artifacts: bool = True, temp_subdir: str = "tmp") -> None:
        self.root: str = os.path.abspath(root)
        self.persist_artifacts = persist_artifacts
        self.temp_subdir = temp_subdir
        self._descriptors: Dict[str, WorkspaceDescriptor] = {}
        os.makedirs(self.root, exist_ok=True)

    def _abs_path_for(self, *segments: str) -> str:
        full = os.path.abspath(os.path.join(self.root, *[s.lstrip("/\\") for s in segments]))
        # Ensure within root
        if os.path.commonpath([self.root, full]) != self.root or full == self.root:
            raise WorkspaceError("Invalid workspace path traversal attempt")
        return full

    def _descriptor(self, run_id: str) -> WorkspaceDescriptor:
        descriptor = self._descriptors.get(run_id)
        if descriptor is None:
            raise WorkspaceError(f"Workspace for run {run_id} has not been initialized")
        return descriptor

    def has_workspace(self, run_id: str) -> bool:
        return run_id in self._descriptors

    async def ensure_workspace(
        self,
        run_id: str,
        artifact_kind: str,
        persist_artifacts: Optional[bool] = None,
        temp_subdir: Optional[str] = None,
    ) -> WorkspaceHandle:
        run_root = self._abs_path_for(run_id)
        os.makedirs(os.path.join(run_root, ARTIFACTS_DIR), exist_ok=True)
        os.makedirs(os.path.join(run_root, EVENTS_DIR), exist_ok=True)

        descriptor = self._descriptors.get(run_id)
        if descriptor is None:
            descriptor = WorkspaceDescriptor(
                run_id=run_id,
                root=run_root,
                kind=artifact_kind,
                metadata={
                    "persist_artifacts": self.persist_artifacts if persist_artifacts is None else persist_artifacts,
                    "temp_subdir": temp_subdir or self.temp_subdir,
                },
            )
            self._descriptors[run_id] = descriptor
        return WorkspaceHandle(descriptor=descriptor)

    async def write_artifact(self, run_id: str, artifact: Artifact) -> None:
        descriptor = self._descriptor(run_id)
        if not descriptor.metadata.get("persist_artifacts", self.persist_artifacts):
            return

        artifacts_dir = os.path.join(descriptor.root, ARTIFACTS_DIR)
        os.makedirs(artifacts_dir, exist_ok=True)
        artifact_path = self._abs_path_for(run_id, ARTIFACTS_DIR, f"{artifact.id}.json")

        stamped = artifact.model_copy(
            update={"metadata": artifact.metadata.model_copy(update={"updated_at": utcnow()})}
        )
        _write_json(artifact_path, stamped.model_dump(mode="json", by_alias=True))

        index_path = os.path.join(artifacts_dir, ARTIFACT_INDEX_FILE)
        index: List[Dict[str, Any]] = _read_json(index_path) or []
        summary = ArtifactSummary(
            id=stamped.id,
            kind=stamped.kind,
            label=stamped.label,
            version=stamped.version,
            created_at=stamped.metadata.created_at,
            updated_at=stamped.metadata.updated_at,
            metadata=stamped.metadata.extras,
        ).model_dump(mode="json", by_alias=True)
        index = [entry for entry in index if entry.get("id") != artifact.id] + [summary]
        _write_json(index_path, index)

    async def read_artifact(self, run_id: str, artifact_id: str) -> Optional[Artifact]:
        self._descriptor(run_id)
        payload = _read_json(self._abs_path_for(run_id, ARTIFACTS_DIR, f"{artifact_id}.json"))
        return Artifact.model_validate(payload) if payload is not None else None

    async def list_artifacts(self, run_id: str) -> List[ArtifactSummary]:
        descriptor = self._descriptor(run_id)
        index = _read_json(os.path.join(descriptor.root, ARTIFACTS_DIR, ARTIFACT_INDEX_FILE)) or []
        return [ArtifactSummary.model_validate(entry) for entry in index]

    async def append_event(self, run_id: str, event: WorkspaceEvent) -> None:
        descriptor = self._descriptor(run_id)
        events_dir = os.path.join(descriptor.root, EVENTS_DIR)
        os.makedirs(events_dir, exist_ok=True)
        with open(os.path.join(events_dir, EVENTS_FILE), "a", encoding="utf-8") as f:
            f.write(event.model_dump_json(by_alias=True) + "\n")

    async def get_events(self, run_id: str) -> List[WorkspaceEvent]:
        descriptor = self._descriptor(run_id)
        path = os.path.join(descriptor.root, EVENTS_DIR, EVENTS_FILE)
        try:
            with open(path, "r", encoding="utf-8") as f:
                lines = [line for line in f.read().splitlines() if line.strip()]
        except FileNotFoundError:
            return []
        return [WorkspaceEvent.model_validate_json(line) for line in lines]

    async def teardown(self, run_id: str) -> None:
        descriptor = self._descriptors.pop(run_id, None)
        run_root = descriptor.root if descriptor else self._abs_path_for(run_id)
        shutil.rmtree(run_root, ignore_errors=True)
        logger.info(f"Removed workspace of run {run_id}")
