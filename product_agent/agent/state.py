from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional
from pydantic import BaseModel, Field

from product_agent.models.skill import ConfidenceAssessment


class RunState(BaseModel):
    """Intermediate analyzer and section results of one run.

    Owned by the skill runner and keyed by run id; never shared across runs.
    """

    analysis_results: Dict[str, Any] = Field(default_factory=dict)
    sections: Dict[str, Any] = Field(default_factory=dict)
    # Existing sections a writer left untouched.
    kept_sections: Dict[str, Any] = Field(default_factory=dict)
    confidence_assessments: Dict[str, ConfidenceAssessment] = Field(default_factory=dict)
    validation_issues: Dict[str, List[str]] = Field(default_factory=dict)
    started_at: float = Field(default_factory=time.monotonic)
    clarification: Optional[Dict[str, Any]] = None
    halt_reason: Optional[str] = None


class RunStateStore:
    """Run id -> RunState map guarded by an asyncio lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._states: Dict[str, RunState] = {}
        self._lock = asyncio.Lock()
        self.clock = clock

    async def ensure(self, run_id: str) -> RunState:
        async with self._lock:
            state = self._states.get(run_id)
            if state is None:
                state = RunState(started_at=self.clock())
                self._states[run_id] = state
            return state

    async def get(self, run_id: str) -> Optional[RunState]:
        async with self._lock:
            return self._states.get(run_id)

    async def discard(self, run_id: str) -> None:
        async with self._lock:
            self._states.pop(run_id, None)

    def __contains__(self, run_id: str) -> bool:
        return run_id in self._states

    def __len__(self) -> int:
        return len(self._states)
