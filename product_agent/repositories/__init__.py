"""Workspace repositories package."""

from .base import WorkspaceError, WorkspaceRepository
from .local_workspace import LocalWorkspaceRepository
from .memory_workspace import InMemoryWorkspaceRepository

__all__ = ["WorkspaceError", "WorkspaceRepository", "LocalWorkspaceRepository", "InMemoryWorkspaceRepository"]
