"""
Run API endpoints: start, inspect, resume and cancel controller runs.
"""

import asyncio
import logging
from typing import Optional, Set

from fastapi import APIRouter, Depends, HTTPException, Query, status

from product_agent.agent.controller import (
    ControllerStartOptions,
    GraphController,
    RunInputError,
    RunNotFoundError,
)
from product_agent.agent.planner import PlanValidationError
from product_agent.core.config import settings
from product_agent.dependencies import get_controller, get_stream_manager
from product_agent.models.run import RunRequest
from product_agent.repositories import WorkspaceError
from product_agent.schemas.base import BaseResponse
from product_agent.schemas.run import CancelRunResponse, ResumeRunRequest, RunAcceptedResponse
from product_agent.websocket.manager import ProgressStreamManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["runs"])

# Strong references to runs started in the background.
_background_runs: Set[asyncio.Task] = set()


def _options(stream: ProgressStreamManager, run_id: Optional[str] = None) -> ControllerStartOptions:
    return ControllerStartOptions(
        on_event=stream.publish if settings.PROGRESS_STREAM_ENABLED else None,
        raise_on_error=False,
        run_id=run_id,
    )


def _to_http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, (RunInputError, PlanValidationError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, (RunNotFoundError, WorkspaceError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    logger.error(f"Failed to {action}: {e}", exc_info=True)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to {action}: {str(e)}")


@router.post("/runs", status_code=status.HTTP_200_OK)
async def start_run(
    request: RunRequest,
    background: bool = Query(False, description="Return immediately and run in the background"),
    controller: GraphController = Depends(get_controller),
    stream: ProgressStreamManager = Depends(get_stream_manager),
):
    """Start a run. With ``background=true`` the response only carries the run id."""
    try:
        if request.input is None or not (request.input.message or "").strip():
            raise RunInputError("Run input with a non-empty message is required")

        if background:
            run_id = controller.id_factory()
            task = asyncio.create_task(controller.start(request, _options(stream, run_id)))
            _background_runs.add(task)
            task.add_done_callback(_background_runs.discard)
            return BaseResponse.success(RunAcceptedResponse(run_id=run_id), "Run started")

        summary = await controller.start(request, _options(stream))
        return BaseResponse.success(summary, f"Run {summary.status.value}")
    except Exception as e:
        raise _to_http_error(e, "start run")


@router.get("/runs/{run_id}")
async def get_run(run_id: str, controller: GraphController = Depends(get_controller)):
    try:
        return BaseResponse.success(controller.get_summary(run_id))
    except Exception as e:
        raise _to_http_error(e, "get run")


@router.post("/runs/{run_id}/resume")
async def resume_run(
    run_id: str,
    payload: ResumeRunRequest,
    controller: GraphController = Depends(get_controller),
    stream: ProgressStreamManager = Depends(get_stream_manager),
):
    """Resume a run awaiting clarification with an answer message or a replacement input."""
    try:
        options = _options(stream).model_copy(update={"input": payload.answer})
        summary = await controller.resume(run_id, options)
        return BaseResponse.success(summary, f"Run {summary.status.value}")
    except Exception as e:
        raise _to_http_error(e, "resume run")


@router.post("/runs/{run_id}/cancel")
async def cancel_run(run_id: str, controller: GraphController = Depends(get_controller)):
    try:
        cancelled = controller.cancel(run_id)
        message = "Cancellation requested" if cancelled else "Run already finished"
        return BaseResponse.success(CancelRunResponse(run_id=run_id, cancelled=cancelled), message)
    except Exception as e:
        raise _to_http_error(e, "cancel run")


@router.get("/runs/{run_id}/artifacts")
async def list_run_artifacts(run_id: str, controller: GraphController = Depends(get_controller)):
    try:
        return BaseResponse.success(await controller.workspace.list_artifacts(run_id))
    except Exception as e:
        raise _to_http_error(e, "list artifacts")


@router.get("/runs/{run_id}/artifacts/{artifact_id}")
async def get_run_artifact(run_id: str, artifact_id: str, controller: GraphController = Depends(get_controller)):
    try:
        artifact = await controller.workspace.read_artifact(run_id, artifact_id)
    except Exception as e:
        raise _to_http_error(e, "read artifact")
    if artifact is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Artifact {artifact_id} not found")
    return BaseResponse.success(artifact)


@router.get("/runs/{run_id}/events")
async def get_run_events(run_id: str, controller: GraphController = Depends(get_controller)):
    try:
        return BaseResponse.success(await controller.workspace.get_events(run_id))
    except Exception as e:
        raise _to_http_error(e, "get events")


@router.get("/subagents")
async def list_subagents(controller: GraphController = Depends(get_controller)):
    manifests = controller.registry.list() if controller.registry is not None else []
    return BaseResponse.success(manifests)
