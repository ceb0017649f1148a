"""
Wiring of the default PRD controller: generator, planner, skill runner,
verifier, workspace and subagent registry.
"""

import logging
from typing import Optional

from product_agent.agent.controller import GraphController
from product_agent.agent.planner import PrdPlanner
from product_agent.agent.skill_runner import PrdSkillRunner
from product_agent.agent.verifier import ArtifactVerifier
from product_agent.core.config import settings
from product_agent.prd.analyzers import SectionDetectionAnalyzer
from product_agent.repositories import InMemoryWorkspaceRepository, LocalWorkspaceRepository, WorkspaceRepository
from product_agent.services.generation import GenerationService
from product_agent.subagents.persona import persona_manifest
from product_agent.subagents.prd import prd_manifest
from product_agent.subagents.registry import SubagentRegistry
from product_agent.subagents.storymap import storymap_manifest

logger = logging.getLogger(__name__)


def create_workspace() -> WorkspaceRepository:
    """Workspace backend selected by ``WORKSPACE_BACKEND``."""
    if settings.WORKSPACE_BACKEND == "memory":
        return InMemoryWorkspaceRepository(persist_artifacts=settings.WORKSPACE_PERSIST_ARTIFACTS)
    return LocalWorkspaceRepository(
        root=settings.WORKSPACE_ROOT,
        persist_artifacts=settings.WORKSPACE_PERSIST_ARTIFACTS,
        temp_subdir=settings.WORKSPACE_TEMP_SUBDIR,
    )


def create_default_registry() -> SubagentRegistry:
    registry = SubagentRegistry()
    registry.register(prd_manifest)
    registry.register(persona_manifest)
    registry.register(storymap_manifest)
    return registry


def create_prd_controller(
    generator=None,
    workspace: Optional[WorkspaceRepository] = None,
    registry: Optional[SubagentRegistry] = None,
) -> GraphController:
    """Build a controller with the default PRD components, overriding any that are given."""
    generator = generator or GenerationService()
    registry = registry or create_default_registry()
    logger.info(f"Creating PRD controller with {settings.WORKSPACE_BACKEND} workspace")
    return GraphController(
        planner=PrdPlanner(registry=registry, section_detector=SectionDetectionAnalyzer(generator)),
        skill_runner=PrdSkillRunner(generator),
        verifier=ArtifactVerifier(),
        workspace=workspace or create_workspace(),
        registry=registry,
    )
