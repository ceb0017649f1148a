"""
Explicit subagent registry, built once at startup and injected into the
planner and the controller.
"""

import importlib
import logging
from typing import Any, Callable, Dict, List, Optional

from product_agent.models.subagent import SubagentManifest
from product_agent.subagents.base import SubagentError, SubagentLifecycle

logger = logging.getLogger(__name__)

SubagentLoader = Callable[[SubagentManifest], Any]


def import_loader(manifest: SubagentManifest) -> Any:
    """Import ``manifest.entry`` and call its ``export_name`` factory."""
    module = importlib.import_module(manifest.entry)
    factory = getattr(module, manifest.export_name, None)
    if factory is None:
        raise SubagentError(f"Subagent entry {manifest.entry} does not export {manifest.export_name}")
    return factory() if callable(factory) else factory


class SubagentRegistry:

    def __init__(self):
        self._manifests: Dict[str, SubagentManifest] = {}
        self._loaders: Dict[str, SubagentLoader] = {}
        self._lifecycles: Dict[str, SubagentLifecycle] = {}

    def register(self, manifest: SubagentManifest, loader: Optional[SubagentLoader] = None) -> None:
        if not manifest.id:
            raise SubagentError("Subagent manifest requires a non-empty id")
        self._manifests[manifest.id] = manifest
        self._loaders[manifest.id] = loader or import_loader
        self._lifecycles.pop(manifest.id, None)
        logger.info(f"Registered subagent {manifest.id} ({manifest.creates} <- {', '.join(manifest.consumes)})")

    def list(self) -> List[SubagentManifest]:
        return list(self._manifests.values())

    def get(self, subagent_id: str) -> Optional[SubagentManifest]:
        return self._manifests.get(subagent_id)

    def filter_by_artifact(self, kind: str) -> List[SubagentManifest]:
        return [m for m in self._manifests.values() if m.creates == kind]

    def create_lifecycle(self, subagent_id: str) -> SubagentLifecycle:
        """Load (once) and return the lifecycle of a registered subagent."""
        cached = self._lifecycles.get(subagent_id)
        if cached is not None:
            return cached

        manifest = self._manifests.get(subagent_id)
        if manifest is None:
            raise SubagentError(f"Subagent {subagent_id} is not registered")

        lifecycle = self._loaders[subagent_id](manifest)
        if not isinstance(lifecycle, SubagentLifecycle):
            raise SubagentError(f"Subagent {subagent_id} factory did not return a subagent lifecycle")

        self._lifecycles[subagent_id] = lifecycle
        return lifecycle
