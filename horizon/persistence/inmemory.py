"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, Optional

from ..contracts import StepState
from .models import Step, Workflow, utcnow
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out, so the store only changes through the repository API.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._steps: Dict[str, Step] = {}
        self._sequence = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: Workflow, steps: list[Step]) -> None:
        async with self._lock:
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
            for step in steps:
                self._sequence += 1
                step.sequence = self._sequence
                self._steps[step.id] = step.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(self) -> list[Workflow]:
        ordered = sorted(self._workflows.values(), key=lambda wf: wf.created_at)
        return [wf.model_copy(deep=True) for wf in ordered]

    async def save_workflow(self, workflow: Workflow) -> None:
        workflow.updated_at = utcnow()
        async with self._lock:
            self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_step(self, step_id: str) -> Optional[Step]:
        step = self._steps.get(step_id)
        return step.model_copy(deep=True) if step else None

    async def list_steps(self, workflow_id: str) -> list[Step]:
        steps = [s for s in self._steps.values() if s.workflow_id == workflow_id]
        return [s.model_copy(deep=True) for s in sorted(steps, key=lambda s: s.sequence)]

    async def save_step(self, step: Step) -> None:
        step.updated_at = utcnow()
        async with self._lock:
            self._steps[step.id] = step.model_copy(deep=True)

    async def claim_next_eligible(self, now: datetime) -> Optional[Step]:
        async with self._lock:
            due = [s for s in self._steps.values() if s.is_eligible(now)]
            if not due:
                return None
            step = min(due, key=lambda s: (s.scheduled_for, s.sequence))
            step.state = StepState.RUNNING
            step.started_at = now
            step.updated_at = now
            return step.model_copy(deep=True)

    async def find_next_blocked(
        self, workflow_id: str, after_sequence: int
    ) -> Optional[Step]:
        candidates = [
            s
            for s in self._steps.values()
            if s.workflow_id == workflow_id
            and s.state is StepState.BLOCKED
            and s.sequence > after_sequence
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda s: s.sequence).model_copy(deep=True)

    async def find_running(self) -> list[Step]:
        running = [s for s in self._steps.values() if s.state is StepState.RUNNING]
        return [s.model_copy(deep=True) for s in sorted(running, key=lambda s: s.sequence)]
