"""WebSocket package."""

from .manager import ProgressStreamManager

__all__ = ["ProgressStreamManager"]
