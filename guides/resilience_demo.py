"""Crash recovery demo.

The first run creates a workflow whose third step kills the process while it
is RUNNING. The second run recovers that step and finishes the workflow; the
crashing step is executed a second time, which is the at-least-once
behaviour of recovery.

    python guides/resilience_demo.py   # crashes
    python guides/resilience_demo.py   # recovers and completes
"""

import asyncio
import logging
import os
from pathlib import Path

from horizon import HandlerRegistry, HandlerResult, WorkflowEngine
from horizon.persistence import SQLiteWorkflowRepository

DB_PATH = "resilience_demo.db"
CRASH_MARKER = Path("resilience_demo.crashed")


class CrashOnceHandler:
    async def execute(self, step_name, agent, context):
        if not CRASH_MARKER.exists():
            CRASH_MARKER.touch()
            print("💥 Pretending to crash now!")
            os._exit(1)
        return HandlerResult(output={"result": "survived the crash"})


async def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    fresh = not Path(DB_PATH).exists()
    repository = SQLiteWorkflowRepository(DB_PATH)

    handlers = HandlerRegistry()
    handlers.register_name("CRASH_ME_NOW", CrashOnceHandler())
    engine = WorkflowEngine(repository=repository, handlers=handlers, poll_interval=0.5)

    if fresh:
        wf = await engine.create_workflow(
            "Demonstrate Resilience",
            [
                "Initialize System",
                "Load Context",
                "CRASH_ME_NOW",
                "Recovered Step",
                "Finalize Report",
            ],
        )
        print(f"🌱 Created workflow {wf.id}")

    await engine.start(lifespan=5)

    for wf in await repository.list_workflows():
        steps = await repository.list_steps(wf.id)
        print(f"📋 {wf.goal}: {[s.state.value for s in steps]}")


if __name__ == "__main__":
    asyncio.run(main())
