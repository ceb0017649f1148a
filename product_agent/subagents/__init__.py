"""Subagents package."""

from .base import SubagentError, SubagentLifecycle, SubagentRequest
from .persona import persona_manifest
from .prd import prd_manifest
from .registry import SubagentRegistry
from .storymap import storymap_manifest

__all__ = [
    "SubagentError",
    "SubagentLifecycle",
    "SubagentRequest",
    "SubagentRegistry",
    "persona_manifest",
    "prd_manifest",
    "storymap_manifest",
]
