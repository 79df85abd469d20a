"""Error types raised by the workflow engine."""

from __future__ import annotations


class HorizonError(Exception):
    """Base class for engine errors."""


class InvalidPlanError(HorizonError, ValueError):
    """A plan cannot become a workflow (empty, or a malformed wait directive)."""


class WorkflowNotFoundError(HorizonError, LookupError):
    """A step references a workflow that is not in the repository."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class StepHandlerError(HorizonError):
    """Raised by step handlers to report a failed step."""
