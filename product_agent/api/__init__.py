"""API package."""

from .runs import router as runs_router
from .websocket import router as websocket_router

__all__ = [
    "runs_router",
    "websocket_router",
]
