"""Claim/execute loop, wait scheduling and failure behaviour of the engine."""

from datetime import timedelta

import pytest

from horizon import (
    HandlerRegistry,
    HandlerResult,
    InvalidPlanError,
    StepKind,
    StepState,
    WorkflowEngine,
    WorkflowStatus,
)
from horizon.persistence import InMemoryWorkflowRepository, Step, Workflow


class RecordingHandler:
    def __init__(self):
        self.calls = []

    async def execute(self, step_name, agent, context):
        self.calls.append(step_name)
        return HandlerResult(output={"step": step_name})


class FailingHandler:
    async def execute(self, step_name, agent, context):
        raise RuntimeError("boom")


class PatchHandler:
    async def execute(self, step_name, agent, context):
        return HandlerResult(
            output={"seen": context.raw("origin")},
            context_patch={"origin": step_name, step_name: True},
        )


class RunningCounter:
    """Counts RUNNING steps of the owning workflow while the handler runs."""

    def __init__(self, repository):
        self.repository = repository
        self.counts = []

    async def execute(self, step_name, agent, context):
        steps = await self.repository.list_steps(context.workflow_id)
        self.counts.append(sum(s.state is StepState.RUNNING for s in steps))
        return HandlerResult(output=None)


def _engine(clock, handler=None, repository=None, registry=None):
    registry = registry or HandlerRegistry(default=handler or RecordingHandler())
    return WorkflowEngine(
        repository=repository or InMemoryWorkflowRepository(),
        handlers=registry,
        clock=clock,
        poll_interval=0.01,
    )


@pytest.mark.asyncio
async def test_create_workflow_materializes_chain(clock):
    engine = _engine(clock)
    wf = await engine.create_workflow("Trip", ["A", ("B", "ResearchAgent"), "WAIT: 250"])

    steps = await engine.repository.list_steps(wf.id)
    assert [s.name for s in steps] == ["A", "B", "WAIT: 250"]
    assert [s.state for s in steps] == [
        StepState.PENDING,
        StepState.BLOCKED,
        StepState.BLOCKED,
    ]
    assert steps[1].assigned_agent == "ResearchAgent"
    assert steps[2].kind is StepKind.WAIT
    assert steps[2].wait_ms == 250
    assert [s.sequence for s in steps] == sorted(s.sequence for s in steps)

    stored = await engine.repository.get_workflow(wf.id)
    assert stored.goal == "Trip"
    assert stored.status is WorkflowStatus.PENDING
    assert stored.context == {}


@pytest.mark.asyncio
async def test_empty_plan_is_rejected(clock):
    engine = _engine(clock)
    with pytest.raises(InvalidPlanError):
        await engine.create_workflow("Nothing to do", [])
    with pytest.raises(InvalidPlanError):
        await engine.create_workflow("Bad wait", ["A", "WAIT: soon"])
    assert await engine.repository.list_workflows() == []


@pytest.mark.asyncio
async def test_linear_completion_follows_creation_order(clock):
    handler = RecordingHandler()
    engine = _engine(clock, handler)
    wf = await engine.create_workflow("Linear", ["S1", "S2", "S3", "S4"])

    for _ in range(4):
        assert await engine.run_once() is True
        clock.advance(seconds=1)
    assert await engine.run_once() is False

    assert handler.calls == ["S1", "S2", "S3", "S4"]
    steps = await engine.repository.list_steps(wf.id)
    assert all(s.state is StepState.COMPLETED for s in steps)
    for prev, nxt in zip(steps, steps[1:]):
        assert nxt.scheduled_for >= prev.completed_at
        assert nxt.completed_at > prev.completed_at
    assert steps[0].output == {"step": "S1"}
    assert steps[0].logs[0].startswith("Started execution at ")
    assert steps[0].logs[-1] == "Completed successfully."


@pytest.mark.asyncio
async def test_wait_step_defers_successor(clock):
    handler = RecordingHandler()
    engine = _engine(clock, handler)
    wf = await engine.create_workflow("Sleepy", ["A", "WAIT:5000", "B"])

    assert await engine.run_once() is True  # A
    assert await engine.run_once() is True  # WAIT:5000

    a, wait, b = await engine.repository.list_steps(wf.id)
    assert a.state is StepState.COMPLETED
    assert wait.state is StepState.COMPLETED
    assert b.state is StepState.PENDING
    assert b.scheduled_for == wait.completed_at + timedelta(milliseconds=5000)
    assert wait.output["deferred_step"] == b.id
    assert any(line.startswith("Scheduled next step 'B'") for line in wait.logs)

    assert await engine.run_once() is False
    clock.advance(milliseconds=4999)
    assert await engine.run_once() is False

    clock.advance(milliseconds=1)
    assert await engine.run_once() is True

    steps = await engine.repository.list_steps(wf.id)
    assert [s.state for s in steps] == [StepState.COMPLETED] * 3
    # the wait step never reaches a handler
    assert handler.calls == ["A", "B"]


@pytest.mark.asyncio
async def test_wait_as_last_step_completes(clock):
    engine = _engine(clock)
    wf = await engine.create_workflow("Trailing wait", ["A", "WAIT: 1000"])

    assert await engine.run_until_idle() == 2
    steps = await engine.repository.list_steps(wf.id)
    assert [s.state for s in steps] == [StepState.COMPLETED, StepState.COMPLETED]
    assert steps[1].output["deferred_step"] is None


@pytest.mark.asyncio
async def test_failed_step_stalls_workflow(clock):
    registry = HandlerRegistry(default=RecordingHandler())
    registry.register_name("Sk", FailingHandler())
    engine = _engine(clock, registry=registry)
    wf = await engine.create_workflow("Fragile", ["S1", "Sk", "S3"])

    assert await engine.run_until_idle() == 2
    clock.advance(days=365)
    assert await engine.run_once() is False

    s1, sk, s3 = await engine.repository.list_steps(wf.id)
    assert s1.state is StepState.COMPLETED
    assert sk.state is StepState.FAILED
    assert sk.logs[-1] == "Error: boom"
    assert sk.retry_count == 0
    assert s3.state is StepState.BLOCKED

    stored = await engine.repository.get_workflow(wf.id)
    assert stored.status is WorkflowStatus.PENDING


@pytest.mark.asyncio
async def test_context_patch_never_overwrites(clock):
    engine = _engine(clock, PatchHandler())
    wf = await engine.create_workflow("Context", ["first", "second"])

    assert await engine.run_until_idle() == 2

    stored = await engine.repository.get_workflow(wf.id)
    assert stored.context == {"origin": "first", "first": True, "second": True}
    first, second = await engine.repository.list_steps(wf.id)
    assert first.output == {"seen": None}
    assert second.output == {"seen": "first"}


@pytest.mark.asyncio
async def test_plain_tuple_handler_result(clock):
    class TupleHandler:
        async def execute(self, step_name, agent, context):
            return "done", {"answer": 42}

    engine = _engine(clock, TupleHandler())
    wf = await engine.create_workflow("Tuple", ["only"])
    await engine.run_once()

    (step,) = await engine.repository.list_steps(wf.id)
    assert step.output == "done"
    stored = await engine.repository.get_workflow(wf.id)
    assert stored.context == {"answer": 42}


@pytest.mark.asyncio
async def test_workflow_status_is_not_advanced(clock):
    engine = _engine(clock)
    wf = await engine.create_workflow("Status", ["A", "B"])
    await engine.run_until_idle()

    stored = await engine.repository.get_workflow(wf.id)
    assert stored.status is WorkflowStatus.PENDING


@pytest.mark.asyncio
async def test_one_running_step_per_workflow(clock):
    repository = InMemoryWorkflowRepository()
    counter = RunningCounter(repository)
    engine = _engine(clock, counter, repository=repository)
    await engine.create_workflow("W1", ["a1", "a2", "a3"])
    await engine.create_workflow("W2", ["b1", "b2"])

    assert await engine.run_until_idle() == 5
    assert counter.counts == [1] * 5


@pytest.mark.asyncio
async def test_due_steps_are_served_in_schedule_order(clock):
    handler = RecordingHandler()
    engine = _engine(clock, handler)
    await engine.create_workflow("first", ["x1", "x2"])
    await engine.create_workflow("second", ["y1"])

    clock.advance(seconds=1)
    assert await engine.run_once() is True
    await engine.run_until_idle()
    # x2 became due when x1 finished, a second after y1, so y1 runs first
    # despite its later sequence
    assert handler.calls == ["x1", "y1", "x2"]


@pytest.mark.asyncio
async def test_equal_schedule_falls_back_to_insertion_order(clock):
    handler = RecordingHandler()
    engine = _engine(clock, handler)
    await engine.create_workflow("first", ["x1", "x2"])
    await engine.create_workflow("second", ["y1"])

    await engine.run_until_idle()
    assert handler.calls == ["x1", "x2", "y1"]


@pytest.mark.asyncio
async def test_missing_workflow_fails_step(clock):
    repository = InMemoryWorkflowRepository()
    engine = _engine(clock, repository=repository)
    orphan = Workflow(goal="gone")
    step = Step(workflow_id=orphan.id, name="orphan", state=StepState.PENDING, scheduled_for=clock())
    await repository.create_workflow(orphan, [step])
    repository._workflows.clear()

    assert await engine.run_once() is True
    stored = await repository.get_step(step.id)
    assert stored.state is StepState.FAILED
    assert stored.logs[-1] == f"Error: Workflow {orphan.id} not found"


@pytest.mark.asyncio
async def test_plan_workflow_uses_planner(clock):
    from horizon import StaticPlanner

    engine = _engine(clock)
    wf = await engine.plan_workflow(
        "Plan", StaticPlanner([("Find Flights", "FlightAgent"), "WAIT: 10"])
    )
    steps = await engine.repository.list_steps(wf.id)
    assert [(s.name, s.assigned_agent, s.kind) for s in steps] == [
        ("Find Flights", "FlightAgent", StepKind.TASK),
        ("WAIT: 10", "System", StepKind.WAIT),
    ]


class ValueHandler:
    def __init__(self, output=None, context_patch=None):
        self.output = output
        self.context_patch = context_patch or {}

    async def execute(self, step_name, agent, context):
        return HandlerResult(output=self.output, context_patch=self.context_patch)


@pytest.mark.asyncio
async def test_output_is_stored_as_json_on_sqlite(tmp_path, clock):
    from datetime import datetime, timezone

    from horizon.persistence import SQLiteWorkflowRepository

    handler = ValueHandler(
        output={"when": datetime(2026, 1, 2, tzinfo=timezone.utc), "tags": {"tokyo"}},
        context_patch={"booked_at": datetime(2026, 1, 3, tzinfo=timezone.utc)},
    )
    repository = SQLiteWorkflowRepository(tmp_path / "wf.db")
    engine = _engine(clock, handler, repository=repository)
    wf = await engine.create_workflow("Dates", ["A", "B"])

    assert await engine.run_once() is True

    a, b = await repository.list_steps(wf.id)
    assert a.state is StepState.COMPLETED
    assert a.output["when"].startswith("2026-01-02T00:00:00")
    assert a.output["tags"] == ["tokyo"]
    assert b.state is StepState.PENDING
    stored = await repository.get_workflow(wf.id)
    assert stored.context["booked_at"].startswith("2026-01-03T00:00:00")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "handler",
    [ValueHandler(output=object()), ValueHandler(context_patch={"raw": object()})],
    ids=["output", "context_patch"],
)
async def test_unstorable_result_fails_step_on_sqlite(tmp_path, clock, handler):
    from horizon.persistence import SQLiteWorkflowRepository

    repository = SQLiteWorkflowRepository(tmp_path / "wf.db")
    engine = _engine(clock, handler, repository=repository)
    wf = await engine.create_workflow("Opaque", ["A", "B"])

    assert await engine.run_once() is True
    assert await engine.run_once() is False

    a, b = await repository.list_steps(wf.id)
    assert a.state is StepState.FAILED
    assert a.logs[-1].startswith("Error: ")
    assert a.output is None
    assert b.state is StepState.BLOCKED
    assert (await repository.get_workflow(wf.id)).context == {}
