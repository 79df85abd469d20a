"""Data models for persisted workflow state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import DEFAULT_AGENT, StepKind, StepState, WorkflowStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Step(BaseModel):
    """One unit of work in a workflow's chain."""

    id: str = Field(default_factory=_new_id)
    workflow_id: str
    # Insertion order, assigned by the repository on create.
    sequence: int = 0
    name: str
    kind: StepKind = StepKind.TASK
    wait_ms: Optional[int] = None
    state: StepState = StepState.BLOCKED
    assigned_agent: str = DEFAULT_AGENT
    scheduled_for: datetime = Field(default_factory=utcnow)
    logs: list[str] = Field(default_factory=list)
    output: Optional[Any] = None
    # Reserved; no retry policy reads or writes it.
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def is_eligible(self, now: datetime) -> bool:
        return self.state is StepState.PENDING and self.scheduled_for <= now

    def log(self, line: str) -> None:
        self.logs.append(line)


class Workflow(BaseModel):
    """Persisted workflow instance data."""

    id: str = Field(default_factory=_new_id)
    goal: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def merge_context(self, patch: dict[str, Any]) -> list[str]:
        """Add keys from ``patch`` that are not present yet; return the added keys."""
        added = [key for key in patch if key not in self.context]
        for key in added:
            self.context[key] = patch[key]
        return added
