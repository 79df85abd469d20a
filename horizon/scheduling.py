"""Sleep-until behaviour for wait steps.

A wait step holds no timer. Running it pushes its chain successor's
``scheduled_for`` into the future; the successor is unblocked as usual but
stays unclaimable until the deadline passes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from .contracts import HandlerResult, StepKind
from .persistence import Step, WorkflowRepository

logger = logging.getLogger(__name__)


class WaitScheduler:
    """Defers the successor of a wait step by the step's duration."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def defer_successor(self, step: Step, now: datetime) -> HandlerResult:
        if step.kind is not StepKind.WAIT or step.wait_ms is None:
            raise ValueError(f"Step {step.id} is not a wait step")

        successor = await self._repository.find_next_blocked(
            step.workflow_id, step.sequence
        )
        if successor is None:
            logger.info(f"Wait step '{step.name}' has no successor to defer")
            return HandlerResult(
                output={"deferred_step": None, "scheduled_for": None, "wait_ms": step.wait_ms},
                logs=["No following step to schedule."],
            )

        successor.scheduled_for = now + timedelta(milliseconds=step.wait_ms)
        await self._repository.save_step(successor)
        deadline = successor.scheduled_for.isoformat()
        logger.info(
            f"Wait step '{step.name}' deferred '{successor.name}' until {deadline}"
        )
        return HandlerResult(
            output={
                "deferred_step": successor.id,
                "scheduled_for": deadline,
                "wait_ms": step.wait_ms,
            },
            logs=[f"Scheduled next step '{successor.name}' for {deadline}"],
        )
