"""Crash recovery against a SQLite database shared by successive engines."""

import pytest

from horizon import HandlerRegistry, HandlerResult, StepState, WorkflowEngine
from horizon.persistence import SQLiteWorkflowRepository


class CountingHandler:
    def __init__(self):
        self.calls = []

    async def execute(self, step_name, agent, context):
        self.calls.append(step_name)
        return HandlerResult(output={"ok": step_name})


def _engine(repository, handler, clock):
    return WorkflowEngine(
        repository=repository,
        handlers=HandlerRegistry(default=handler),
        clock=clock,
        poll_interval=0.01,
    )


async def _crash_mid_step(db_path, clock):
    """Run the first step, then claim the second and 'die' before finishing it."""
    repo = SQLiteWorkflowRepository(db_path)
    engine = _engine(repo, CountingHandler(), clock)
    wf = await engine.create_workflow(
        "Demonstrate Resilience", ["Initialize System", "CRASH_ME_NOW", "Finalize Report"]
    )
    assert await engine.run_once() is True
    claimed = await repo.claim_next_eligible(clock())
    assert claimed.name == "CRASH_ME_NOW"
    assert claimed.state is StepState.RUNNING
    repo.close()
    return wf, claimed


@pytest.mark.asyncio
async def test_recover_resets_running_steps(tmp_path, clock):
    db_path = tmp_path / "wf.db"
    wf, claimed = await _crash_mid_step(db_path, clock)
    clock.advance(minutes=10)

    repo = SQLiteWorkflowRepository(db_path)
    before = await repo.list_steps(wf.id)
    handler = CountingHandler()
    engine = _engine(repo, handler, clock)

    recovered = await engine.recover()
    assert [s.id for s in recovered] == [claimed.id]

    step = await repo.get_step(claimed.id)
    assert step.state is StepState.PENDING
    assert step.scheduled_for == clock()
    assert "Recovered after interrupted execution" in step.logs[-1]

    # the rest of the chain is untouched
    states = {s.name: s.state for s in await repo.list_steps(wf.id)}
    assert states["Initialize System"] is StepState.COMPLETED
    assert states["Finalize Report"] is StepState.BLOCKED

    assert await engine.run_until_idle() == 2
    after = await repo.list_steps(wf.id)
    assert len(after) == len(before)
    assert [s.state for s in after] == [StepState.COMPLETED] * 3
    assert handler.calls == ["CRASH_ME_NOW", "Finalize Report"]


@pytest.mark.asyncio
async def test_start_recovers_before_claiming(tmp_path, clock):
    db_path = tmp_path / "wf.db"
    wf, claimed = await _crash_mid_step(db_path, clock)

    repo = SQLiteWorkflowRepository(db_path)
    engine = _engine(repo, CountingHandler(), clock)
    await engine.start(lifespan=0.3)

    steps = await repo.list_steps(wf.id)
    assert [s.state for s in steps] == [StepState.COMPLETED] * 3
    recovered = next(s for s in steps if s.id == claimed.id)
    assert any("Recovered" in line for line in recovered.logs)


@pytest.mark.asyncio
async def test_recover_without_interrupted_steps_is_noop(tmp_path, clock):
    repo = SQLiteWorkflowRepository(tmp_path / "wf.db")
    engine = _engine(repo, CountingHandler(), clock)
    wf = await engine.create_workflow("Calm", ["A", "B"])
    await engine.run_once()

    assert await engine.recover() == []
    states = [s.state for s in await repo.list_steps(wf.id)]
    assert states == [StepState.COMPLETED, StepState.PENDING]
