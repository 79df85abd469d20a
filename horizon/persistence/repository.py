"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from .models import Step, Workflow


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    ``claim_next_eligible`` is the only operation that must be atomic: two
    concurrent callers can never both receive the same step.
    """

    async def create_workflow(self, workflow: Workflow, steps: list[Step]) -> None:
        """Persist a workflow with its full step chain, assigning step sequences."""

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        """Retrieve the workflow by id."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all persisted workflows, oldest first."""

    async def save_workflow(self, workflow: Workflow) -> None:
        """Overwrite the stored workflow record."""

    async def get_step(self, step_id: str) -> Optional[Step]:
        """Retrieve a step by id."""

    async def list_steps(self, workflow_id: str) -> list[Step]:
        """Return the workflow's steps in chain order."""

    async def save_step(self, step: Step) -> None:
        """Overwrite the stored step record."""

    async def claim_next_eligible(self, now: datetime) -> Optional[Step]:
        """Atomically move the next due PENDING step to RUNNING and return it."""

    async def find_next_blocked(
        self, workflow_id: str, after_sequence: int
    ) -> Optional[Step]:
        """Return the first BLOCKED step of the workflow after ``after_sequence``."""

    async def find_running(self) -> list[Step]:
        """Return every step currently marked RUNNING."""
