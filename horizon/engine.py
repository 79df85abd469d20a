"""Durable sequential workflow engine.

The engine owns no in-memory workflow state. Every iteration it claims the
next due step from the repository, runs its handler, persists the result and
unblocks the following step of the same workflow. All progress lives in the
repository, which is what makes a restart safe.

Known gaps, kept as observable behaviour:

* A FAILED step never unblocks its successor. The workflow stalls at that
  step with no automatic remediation and no alert beyond a log line.
* The workflow's own ``status`` stays ``PENDING``; only steps move through
  the state machine.
* Recovery re-runs interrupted steps, so handlers with external side
  effects run at least once, not exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from pydantic_core import to_jsonable_python

from .contracts import HandlerResult, PlanEntry, StepKind, StepState, resolve_plan
from .exceptions import WorkflowNotFoundError
from .handlers import HandlerRegistry
from .persistence import Step, Workflow, WorkflowRepository, get_repository
from .persistence.models import utcnow
from .planner import Planner
from .results import StepResult, WorkflowContext
from .scheduling import WaitScheduler

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_ERROR_BACKOFF = 5.0


class WorkflowEngine:
    """Claims due steps one at a time and drives them to a terminal state."""

    def __init__(
        self,
        repository: WorkflowRepository | None = None,
        handlers: HandlerRegistry | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        error_backoff: float = DEFAULT_ERROR_BACKOFF,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository or get_repository()
        self._handlers = handlers or HandlerRegistry()
        self._waits = WaitScheduler(self._repository)
        self._clock = clock
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Workflow creation
    async def create_workflow(self, goal: str, steps: Iterable[PlanEntry]) -> Workflow:
        """Persist a workflow with its whole chain; only the first step is PENDING.

        Raises:
            InvalidPlanError: The plan is empty or holds a malformed wait directive.
        """
        specs = resolve_plan(list(steps))
        now = self._clock()
        workflow = Workflow(goal=goal, created_at=now, updated_at=now)
        records = [
            Step(
                workflow_id=workflow.id,
                name=spec.name,
                kind=spec.kind,
                wait_ms=spec.wait_ms,
                assigned_agent=spec.agent,
                state=StepState.PENDING if index == 0 else StepState.BLOCKED,
                scheduled_for=now,
                created_at=now,
                updated_at=now,
            )
            for index, spec in enumerate(specs)
        ]
        await self._repository.create_workflow(workflow, records)
        logger.info(
            f"Created workflow {workflow.id} with {len(records)} steps for goal '{goal}'"
        )
        return workflow

    async def plan_workflow(self, goal: str, planner: Planner) -> Workflow:
        """Ask ``planner`` for the step chain of ``goal`` and create the workflow."""
        planned = await planner.plan(goal)
        return await self.create_workflow(goal, planned)

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(self, lifespan: Optional[float] = None) -> None:
        """Recover interrupted steps, then claim and execute until stopped.

        Args:
            lifespan: Maximum time in seconds to keep running. If None, runs
                until ``stop`` is called.
        """
        self._running = True
        logger.info("Event Horizon engine starting")
        try:
            await self.recover()
            await self._loop(lifespan)
        finally:
            self._running = False
            # a stop requested before start ends that run; the next one starts fresh
            self._stop_event.clear()
            logger.info("Engine stopped")

    def stop(self) -> None:
        """Ask the loop to exit; a step already in flight is allowed to finish."""
        logger.info("Stop requested")
        self._stop_event.set()

    async def recover(self) -> list[Step]:
        """Reset steps left RUNNING by a dead process back to PENDING, due now."""
        logger.info("Checking for interrupted steps...")
        stuck = await self._repository.find_running()
        now = self._clock()
        for step in stuck:
            logger.warning(f"Recovering interrupted step '{step.name}' (id={step.id})")
            step.state = StepState.PENDING
            step.scheduled_for = now
            step.started_at = None
            step.log(f"Recovered after interrupted execution at {now.isoformat()}")
            await self._repository.save_step(step)
        return stuck

    async def _loop(self, lifespan: Optional[float]) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None

        while not self._stop_event.is_set():
            if deadline is not None and loop.time() >= deadline:
                break
            try:
                worked = await self.run_once()
            except Exception:
                logger.exception("Error in engine loop")
                await self._pause(self.error_backoff, deadline)
                continue
            if not worked:
                await self._pause(self.poll_interval, deadline)

    async def _pause(self, seconds: float, deadline: Optional[float]) -> None:
        if deadline is not None:
            seconds = max(0.0, min(seconds, deadline - asyncio.get_running_loop().time()))
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Claim / execute
    async def run_once(self) -> bool:
        """Claim and execute one due step. Returns False when nothing was due."""
        step = await self._repository.claim_next_eligible(self._clock())
        if step is None:
            return False
        logger.info(
            f"Claimed step '{step.name}' (id={step.id}, workflow={step.workflow_id})"
        )
        await self._execute(step)
        return True

    async def run_until_idle(self, max_steps: Optional[int] = None) -> int:
        """Execute due steps until none remain (or ``max_steps`` ran)."""
        executed = 0
        while max_steps is None or executed < max_steps:
            if not await self.run_once():
                break
            executed += 1
        return executed

    async def _execute(self, step: Step) -> None:
        step.log(f"Started execution at {self._clock().isoformat()}")
        await self._repository.save_step(step)

        try:
            workflow, result = await self._run_handler(step)
            output, patch = _storable(result)
        except Exception as exc:
            logger.error(f"Step '{step.name}' failed: {exc}")
            step.state = StepState.FAILED
            step.completed_at = self._clock()
            step.log(f"Error: {exc}")
            await self._repository.save_step(step)
            logger.warning(
                f"Workflow {step.workflow_id} is stalled at failed step '{step.name}'"
            )
            return

        if patch and workflow.merge_context(patch):
            await self._repository.save_workflow(workflow)

        step.output = output
        step.logs.extend(result.logs)
        step.state = StepState.COMPLETED
        step.completed_at = self._clock()
        step.log("Completed successfully.")
        await self._repository.save_step(step)
        logger.info(f"Step '{step.name}' completed")

        await self._unblock_next(step)

    async def _run_handler(self, step: Step) -> tuple[Workflow, HandlerResult]:
        workflow = await self._repository.get_workflow(step.workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(step.workflow_id)

        if step.kind is StepKind.WAIT:
            result = await self._waits.defer_successor(step, self._clock())
        else:
            handler = self._handlers.resolve(step.name, step.assigned_agent)

            async def stream_log(line: str) -> None:
                step.log(line)
                await self._repository.save_step(step)

            context = WorkflowContext(
                workflow.id, workflow.goal, workflow.context, log_sink=stream_log
            )
            result = await handler.execute(step.name, step.assigned_agent, context)
        return workflow, _as_handler_result(result)

    async def _unblock_next(self, step: Step) -> Optional[Step]:
        successor = await self._repository.find_next_blocked(
            step.workflow_id, step.sequence
        )
        if successor is None:
            logger.info(f"Workflow {step.workflow_id} reached the end of its chain")
            return None

        now = self._clock()
        # A deadline set by a wait step is kept; anything already due runs now.
        if successor.scheduled_for <= now:
            successor.scheduled_for = now
        successor.state = StepState.PENDING
        await self._repository.save_step(successor)
        logger.info(
            f"Unblocked next step '{successor.name}', due {successor.scheduled_for.isoformat()}"
        )
        return successor


def _as_handler_result(result: object) -> HandlerResult:
    """Accept ``HandlerResult`` or a plain ``(output, context_patch)`` pair."""
    if isinstance(result, HandlerResult):
        return result
    if isinstance(result, tuple) and len(result) == 2:
        output, patch = result
        return HandlerResult(output=output, context_patch=patch or {})
    return HandlerResult(output=result)


def _storable(result: HandlerResult) -> tuple[Any, dict[str, Any]]:
    """Output and context patch as plain JSON values.

    Raises ``PydanticSerializationError`` for values with no JSON form, so the
    step fails instead of every backend rejecting it on save.
    """
    output = result.output
    patch = dict(result.context_patch)
    if isinstance(output, StepResult):
        for key, value in output.context_patch().items():
            patch.setdefault(key, value)
    return to_jsonable_python(output), to_jsonable_python(patch)
