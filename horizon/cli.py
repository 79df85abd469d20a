"""Command line interface for running the engine and inspecting workflows."""

from __future__ import annotations

import asyncio
import logging
import re
import signal
from typing import List, Optional

import typer

from horizon import WorkflowEngine, default_registry, get_repository
from horizon.config import load_config
from horizon.exceptions import InvalidPlanError
from horizon.planner import TRAVEL_DEMO_PLAN, LLMPlanner, StaticPlanner

app = typer.Typer(help="CLI for Event Horizon workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflows")

app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", help="Logging level for engine output"),
) -> None:
    """Event Horizon CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# An agent label is a single identifier, e.g. "Find Flights@FlightAgent".
_AGENT_SUFFIX = re.compile(r"^(?P<name>.*\S)\s*@(?P<agent>[A-Za-z_][A-Za-z0-9_]*)$")


def _parse_step(raw: str) -> tuple[str, str]:
    match = _AGENT_SUFFIX.match(raw)
    if match is None:
        return raw, "System"
    return match.group("name"), match.group("agent")


@app.command("run")
def run(
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run until interrupted)"
    ),
    once: bool = typer.Option(
        False, "--once", help="Recover, execute every step that is due, then exit"
    ),
) -> None:
    """
    Run the engine against the configured repository.

    Recovers steps left RUNNING by a crashed process, then claims and executes
    due steps until stopped with Ctrl+C / SIGTERM or the lifespan expires.

    Example:
        horizon run
        horizon run --lifespan 60
        horizon run --once
    """
    config = load_config()
    engine = WorkflowEngine(
        repository=get_repository(),
        handlers=default_registry(config),
        poll_interval=config.engine.poll_interval,
        error_backoff=config.engine.error_backoff,
    )

    async def _run() -> int:
        if once:
            await engine.recover()
            return await engine.run_until_idle()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, engine.stop)
            except NotImplementedError:  # pragma: no cover - Windows
                pass
        await engine.start(lifespan=lifespan)
        return 0

    executed = asyncio.run(_run())
    if once:
        typer.echo(f"Executed {executed} step(s)")


@workflow_app.command("create")
def workflow_create(
    goal: str,
    step: List[str] = typer.Option(
        ..., "--step", "-s", help="Step name, optionally NAME@AGENT; repeat in order"
    ),
) -> None:
    """
    Create a workflow from an explicit list of steps.

    Example:
        horizon workflow create "Trip to Japan" -s "Find Flights" -s "WAIT: 5000" -s "Book Hotels"
    """
    engine = WorkflowEngine(repository=get_repository())
    try:
        wf = asyncio.run(
            engine.create_workflow(goal, [_parse_step(raw) for raw in step])
        )
    except InvalidPlanError as exc:
        typer.secho(f"Invalid plan: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Created workflow {wf.id}")


@workflow_app.command("plan")
def workflow_plan(
    goal: str,
    demo: bool = typer.Option(
        False, "--demo", help="Use the built-in travel plan instead of the LLM planner"
    ),
) -> None:
    """
    Plan a workflow for a free-form goal and create it.

    Example:
        horizon workflow plan "Plan a 2 week trip to Japan in July"
        horizon workflow plan "Trip to Japan 2026" --demo
    """
    config = load_config()
    if demo:
        planner = StaticPlanner(TRAVEL_DEMO_PLAN)
    elif config.planner.model:
        planner = LLMPlanner(model=config.planner.model)
    else:
        typer.secho(
            "No planner model configured (planner.model); use --demo", fg=typer.colors.RED
        )
        raise typer.Exit(code=1)

    engine = WorkflowEngine(repository=get_repository())
    try:
        wf = asyncio.run(engine.plan_workflow(goal, planner))
    except InvalidPlanError as exc:
        typer.secho(f"Invalid plan: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    steps = asyncio.run(engine.repository.list_steps(wf.id))
    typer.echo(f"Created workflow {wf.id} with {len(steps)} steps")
    for s in steps:
        typer.echo(f"  {s.sequence}. {s.name} ({s.assigned_agent})")


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List all workflows.

    Example:
        horizon workflow list
        # Output: 5b0e...    PENDING    Trip to Japan 2026
    """
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.status.value}\t{wf.goal}")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """
    Show a workflow with its steps, their states and logs.

    Example:
        horizon workflow show 5b0e...
        # Output: Workflow 5b0e...: PENDING
        #         Goal: Trip to Japan 2026
        #         - Find Flights [COMPLETED] FlightAgent due 2026-...
        #             Started execution at ...
    """
    repo = get_repository()
    wf = asyncio.run(repo.get_workflow(workflow_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    steps = asyncio.run(repo.list_steps(workflow_id))

    typer.echo(f"Workflow {wf.id}: {wf.status.value}")
    typer.echo(f"Goal: {wf.goal}")
    if wf.context:
        typer.echo(f"Context: {', '.join(sorted(wf.context))}")
    for s in steps:
        typer.echo(
            f"- {s.name} [{s.state.value}] {s.assigned_agent} "
            f"due {s.scheduled_for.isoformat()}"
        )
        for line in s.logs:
            typer.echo(f"    {line}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
