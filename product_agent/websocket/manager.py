"""
WebSocket connection manager for streaming run progress events.
"""

import logging
from collections import OrderedDict, deque
from typing import Any, Deque, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from product_agent.core.config import settings
from product_agent.models.events import ProgressEvent, ProgressEventType
from product_agent.models.run import RunStatus

logger = logging.getLogger(__name__)

# Events kept per run so late subscribers can catch up.
HISTORY_LIMIT = 200

TERMINAL_STATUSES = {RunStatus.COMPLETED.value, RunStatus.FAILED.value, RunStatus.AWAITING_INPUT.value}


class ProgressStreamManager:
    """Fans progress events of a run out to its websocket subscribers."""

    def __init__(self, history_limit: int = HISTORY_LIMIT, finished_runs_limit: Optional[int] = None):
        # Active connections: run_id -> set of websockets
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        # Recent events: run_id -> serialized events
        self.history: Dict[str, Deque[Dict[str, Any]]] = {}
        self.history_limit = history_limit
        # Finished runs in completion order; their history is dropped oldest first.
        self.finished_runs: "OrderedDict[str, None]" = OrderedDict()
        self.finished_runs_limit = (
            finished_runs_limit if finished_runs_limit is not None else settings.PROGRESS_HISTORY_FINISHED_RUNS
        )

    async def connect(self, websocket: WebSocket, run_id: str, replay: bool = True) -> bool:
        """Accept a connection, confirm it and replay buffered events."""
        try:
            await websocket.accept()
        except Exception as e:
            logger.error(f"Error accepting WebSocket for run {run_id}: {e}")
            return False

        self.active_connections.setdefault(run_id, set()).add(websocket)
        logger.info(f"WebSocket subscribed to run {run_id}")

        await self._send_to_websocket(websocket, {"type": "connection_confirmed", "data": {"run_id": run_id}})
        if replay:
            for payload in list(self.history.get(run_id, ())):
                await self._send_to_websocket(websocket, {"type": "progress", "data": payload})
        return True

    async def disconnect(self, websocket: WebSocket, run_id: str) -> None:
        connections = self.active_connections.get(run_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            del self.active_connections[run_id]
        logger.info(f"WebSocket unsubscribed from run {run_id}")

    async def publish(self, event: ProgressEvent) -> None:
        """Progress sink handed to the controller."""
        payload = event.model_dump(mode="json", by_alias=True)
        buffer = self.history.setdefault(event.run_id, deque(maxlen=self.history_limit))
        buffer.append(payload)
        await self._broadcast_to_run(event.run_id, {"type": "progress", "data": payload})

        if event.type == ProgressEventType.RUN_STATUS:
            self._track_finished(event.run_id, event.status in TERMINAL_STATUSES)

    async def handle_message(self, websocket: WebSocket, run_id: str, data: Any) -> None:
        """Handle a client message; only ``ping`` is understood."""
        message_type = data.get("type") if isinstance(data, dict) else None
        if message_type == "ping":
            await self._send_to_websocket(websocket, {"type": "pong", "data": {"run_id": run_id}})
        else:
            await self._send_error(websocket, f"Unknown message type: {message_type}")

    def clear_history(self, run_id: str) -> None:
        self.history.pop(run_id, None)
        self.finished_runs.pop(run_id, None)

    def _track_finished(self, run_id: str, finished: bool) -> None:
        if not finished:
            self.finished_runs.pop(run_id, None)
            return
        self.finished_runs[run_id] = None
        self.finished_runs.move_to_end(run_id)
        while len(self.finished_runs) > self.finished_runs_limit:
            expired, _ = self.finished_runs.popitem(last=False)
            self.history.pop(expired, None)
            logger.debug(f"Dropped progress history of run {expired}")

    async def _broadcast_to_run(self, run_id: str, message: dict):
        """Broadcast message to all connections subscribed to a run."""
        for websocket in list(self.active_connections.get(run_id, set())):
            await self._send_to_websocket(websocket, message, run_id)

    async def _send_to_websocket(self, websocket: WebSocket, message: dict, run_id: Optional[str] = None):
        """Send message to a specific WebSocket."""
        try:
            await websocket.send_json(message)
        except WebSocketDisconnect:
            if run_id:
                await self.disconnect(websocket, run_id)
        except Exception as e:
            logger.warning(f"Error sending WebSocket message: {e}")
            if run_id:
                await self.disconnect(websocket, run_id)

    async def _send_error(self, websocket: WebSocket, error_message: str):
        """Send error message to WebSocket."""
        await self._send_to_websocket(websocket, {"type": "error", "data": {"message": error_message}})
