"""
WebSocket endpoint streaming run progress events.
"""

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from product_agent.dependencies import get_stream_manager
from product_agent.websocket.manager import ProgressStreamManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/runs/{run_id}")
async def websocket_run_endpoint(
    websocket: WebSocket,
    run_id: str,
    stream: ProgressStreamManager = Depends(get_stream_manager),
):
    """Subscribe to the progress events of a run."""
    connected = await stream.connect(websocket, run_id)
    if not connected:
        return

    try:
        while True:
            try:
                data = await websocket.receive_text()
                message_data = json.loads(data)
            except json.JSONDecodeError:
                await stream._send_error(websocket, "Invalid JSON format")
                continue
            await stream.handle_message(websocket, run_id, message_data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected from run {run_id}")
    finally:
        await stream.disconnect(websocket, run_id)
