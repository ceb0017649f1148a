"""
Dependency injection setup for the application.
"""

from functools import lru_cache

from product_agent.agent.composition import create_prd_controller
from product_agent.agent.controller import GraphController
from product_agent.websocket.manager import ProgressStreamManager


@lru_cache()
def get_controller() -> GraphController:
    """Get the process-wide graph controller."""
    return create_prd_controller()


@lru_cache()
def get_stream_manager() -> ProgressStreamManager:
    """Get the progress stream manager instance."""
    return ProgressStreamManager()
