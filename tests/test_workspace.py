import json
import os

import pytest

from product_agent.models.artifact import Artifact
from product_agent.models.events import WorkspaceEvent, WorkspaceEventType
from product_agent.repositories import InMemoryWorkspaceRepository, LocalWorkspaceRepository, WorkspaceError


def artifact(artifact_id="artifact-1", kind="prd", label="PRD"):
    return Artifact(id=artifact_id, kind=kind, version="2.0", label=label, data={"sections": {}})


@pytest.fixture(params=["filesystem", "memory"])
def repository(request, tmp_path):
    if request.param == "filesystem":
        return LocalWorkspaceRepository(root=str(tmp_path))
    return InMemoryWorkspaceRepository()


@pytest.mark.asyncio
async def test_artifacts_round_trip_with_index(repository):
    await repository.ensure_workspace("run-1", "prd")
    await repository.write_artifact("run-1", artifact())
    await repository.write_artifact("run-1", artifact(label="PRD v2"))
    await repository.write_artifact("run-1", artifact("artifact-2", kind="persona"))

    stored = await repository.read_artifact("run-1", "artifact-1")
    summaries = await repository.list_artifacts("run-1")

    assert stored.label == "PRD v2"
    assert stored.metadata.updated_at is not None
    assert [s.id for s in summaries] == ["artifact-1", "artifact-2"]
    assert await repository.read_artifact("run-1", "missing") is None


@pytest.mark.asyncio
async def test_events_are_appended_in_order(repository):
    await repository.ensure_workspace("run-1", "prd")
    for step in ("a", "b"):
        await repository.append_event(
            "run-1", WorkspaceEvent(run_id="run-1", type=WorkspaceEventType.SKILL, payload={"step_id": step}),
        )

    events = await repository.get_events("run-1")

    assert [e.payload["step_id"] for e in events] == ["a", "b"]


@pytest.mark.asyncio
async def test_uninitialized_run_raises(repository):
    with pytest.raises(WorkspaceError, match="not been initialized"):
        await repository.write_artifact("ghost", artifact())
    with pytest.raises(WorkspaceError):
        await repository.get_events("ghost")


@pytest.mark.asyncio
async def test_persist_disabled_skips_artifacts(repository):
    await repository.ensure_workspace("run-1", "prd", persist_artifacts=False)
    await repository.write_artifact("run-1", artifact())

    assert await repository.list_artifacts("run-1") == []


@pytest.mark.asyncio
async def test_teardown_forgets_the_run(repository):
    await repository.ensure_workspace("run-1", "prd")
    await repository.teardown("run-1")

    assert not repository.has_workspace("run-1")


@pytest.mark.asyncio
async def test_filesystem_layout(tmp_path):
    repository = LocalWorkspaceRepository(root=str(tmp_path))
    handle = await repository.ensure_workspace("run-1", "prd")
    await repository.write_artifact("run-1", artifact())
    await repository.append_event("run-1", WorkspaceEvent(run_id="run-1", type=WorkspaceEventType.SYSTEM))

    run_root = tmp_path / "run-1"
    assert handle.descriptor.root == str(run_root)
    assert json.loads((run_root / "artifacts" / "artifact-1.json").read_text())["kind"] == "prd"
    assert json.loads((run_root / "artifacts" / "index.json").read_text())[0]["id"] == "artifact-1"
    assert len((run_root / "events" / "events.jsonl").read_text().splitlines()) == 1

    await repository.teardown("run-1")
    assert not os.path.exists(run_root)


@pytest.mark.asyncio
async def test_path_traversal_is_rejected(tmp_path):
    repository = LocalWorkspaceRepository(root=str(tmp_path / "runs"))

    with pytest.raises(WorkspaceError):
        await repository.ensure_workspace("../escape", "prd")

    await repository.ensure_workspace("run-1", "prd")
    with pytest.raises(WorkspaceError):
        await repository.write_artifact("run-1", artifact("../../../outside"))
