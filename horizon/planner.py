"""Planners turn a free-form goal into an ordered list of steps."""

from __future__ import annotations

import logging
from typing import Any, List, NamedTuple, Optional, Protocol, Sequence

from pydantic import BaseModel, Field
from pydantic_ai import Agent

from .contracts import DEFAULT_AGENT
from .exceptions import InvalidPlanError

logger = logging.getLogger(__name__)


class PlannedStep(NamedTuple):
    name: str
    agent: str = DEFAULT_AGENT


class Planner(Protocol):
    async def plan(self, goal: str) -> List[PlannedStep]:
        ...


TRAVEL_DEMO_PLAN: List[PlannedStep] = [
    PlannedStep("Find Flights", "FlightAgent"),
    PlannedStep("WAIT: 10000"),
    PlannedStep("Apply for Visa", "VisaAgent"),
    PlannedStep("WAIT: 5000"),
    PlannedStep("Book Hotels", "HotelAgent"),
    PlannedStep("Send Final Itinerary", "ItineraryAgent"),
]


class StaticPlanner:
    """Returns the same plan for every goal."""

    def __init__(self, steps: Sequence[PlannedStep | str]) -> None:
        self._steps = [
            PlannedStep(step) if isinstance(step, str) else PlannedStep(*step)
            for step in steps
        ]

    async def plan(self, goal: str) -> List[PlannedStep]:
        return list(self._steps)


PLANNER_PROMPT = """You are an expert agentic planner.
Break the user's request down into a linear list of executable steps.

Rules:
1. Steps run strictly one after another; there is no branching.
2. If the user mentions waiting or time, add a step named exactly "WAIT: <milliseconds>",
   for example "WAIT: 5000" for five seconds.
3. The last step is always "Send Final Itinerary".
4. Keep step names concise, e.g. "Find Flights", "Book Hotel".
5. Give each step the agent best suited for it, e.g. "ResearchAgent", "VisaAgent";
   use "System" for wait steps."""


class PlanStepOutput(BaseModel):
    name: str
    agent: str = DEFAULT_AGENT


class PlanOutput(BaseModel):
    steps: List[PlanStepOutput] = Field(default_factory=list)


class LLMPlanner:
    """Plan with a pydantic-ai agent producing a structured ``PlanOutput``."""

    def __init__(self, model: Optional[str] = None, agent: Optional[Any] = None) -> None:
        if agent is None:
            if not model:
                raise ValueError("LLMPlanner needs a model name or an agent")
            agent = Agent(model, system_prompt=PLANNER_PROMPT, output_type=PlanOutput)
        self._agent = agent

    async def plan(self, goal: str) -> List[PlannedStep]:
        logger.info(f"Planning steps for goal '{goal}'")
        result = await self._agent.run(goal)
        output: PlanOutput = result.output
        steps = [
            PlannedStep(s.name.strip(), s.agent or DEFAULT_AGENT)
            for s in output.steps
            if s.name.strip()
        ]
        if not steps:
            raise InvalidPlanError(f"Planner returned no steps for goal '{goal}'")
        logger.info(f"Planner produced {len(steps)} steps: {[s.name for s in steps]}")
        return steps
