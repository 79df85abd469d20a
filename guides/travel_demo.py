"""Travel assistant demo: a workflow that sleeps between steps.

Creates the static "Trip to Japan" plan in a SQLite database and runs the
engine until the chain is finished. Press Ctrl+C while it is waiting, run the
script again with ``--resume`` and it picks up where it left off.
"""

import asyncio
import logging
import sys

from horizon import StaticPlanner, WorkflowEngine, default_registry
from horizon.persistence import SQLiteWorkflowRepository
from horizon.planner import TRAVEL_DEMO_PLAN


async def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    repository = SQLiteWorkflowRepository("travel_demo.db")
    engine = WorkflowEngine(
        repository=repository,
        handlers=default_registry(delay=1.0),
        poll_interval=0.5,
    )

    if "--resume" not in sys.argv:
        wf = await engine.plan_workflow("Trip to Japan 2026", StaticPlanner(TRAVEL_DEMO_PLAN))
        print(f"✈️  Created trip workflow {wf.id}")

    # Long enough for both waits (10s + 5s) and the mocked handler latency.
    await engine.start(lifespan=30)

    for wf in await repository.list_workflows():
        steps = await repository.list_steps(wf.id)
        print(f"📋 {wf.goal}: {[s.state.value for s in steps]}")


if __name__ == "__main__":
    asyncio.run(main())
