"""Core contracts shared by the engine, planners and handlers."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, model_validator

from .exceptions import InvalidPlanError

DEFAULT_AGENT = "System"

_WAIT_DIRECTIVE = re.compile(r"^\s*WAIT\s*:\s*(?P<value>.*?)\s*$", re.IGNORECASE)


class StepState(str, Enum):
    BLOCKED = "BLOCKED"
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class WorkflowStatus(str, Enum):
    """Top-level workflow status.

    Only ``PENDING`` is ever written by the engine; the remaining values exist
    for reporting layers and are not reached automatically.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class StepKind(str, Enum):
    TASK = "TASK"
    WAIT = "WAIT"


class StepSpec(BaseModel):
    """One entry of a workflow plan, resolved before the workflow is created."""

    name: str
    agent: str = DEFAULT_AGENT
    kind: StepKind = StepKind.TASK
    wait_ms: Optional[int] = None

    @model_validator(mode="after")
    def _check_wait(self) -> "StepSpec":
        if self.kind is StepKind.WAIT:
            if self.wait_ms is None or self.wait_ms < 0:
                raise ValueError("wait steps need a non-negative wait_ms")
        elif self.wait_ms is not None:
            raise ValueError("wait_ms is only valid for wait steps")
        return self

    @classmethod
    def parse(cls, name: str, agent: Optional[str] = None) -> "StepSpec":
        """Build a spec from a planner step name.

        ``"WAIT: 5000"`` becomes a wait step of 5000 milliseconds; any other
        name is an ordinary task step.
        """
        agent = agent or DEFAULT_AGENT
        match = _WAIT_DIRECTIVE.match(name)
        if match is None:
            return cls(name=name, agent=agent)

        raw = match.group("value")
        if not raw.isdecimal():
            raise InvalidPlanError(f"Malformed wait directive: {name!r}")
        return cls(name=name.strip(), agent=agent, kind=StepKind.WAIT, wait_ms=int(raw))


PlanEntry = Union[StepSpec, Tuple[str, str], str]


def resolve_plan(entries: List[PlanEntry]) -> List[StepSpec]:
    """Normalise planner output into step specs, rejecting empty plans."""
    if not entries:
        raise InvalidPlanError("A workflow needs at least one step")

    specs: List[StepSpec] = []
    for entry in entries:
        if isinstance(entry, StepSpec):
            specs.append(entry)
        elif isinstance(entry, str):
            specs.append(StepSpec.parse(entry))
        else:
            name, agent = entry
            specs.append(StepSpec.parse(name, agent))
    return specs


class HandlerResult(BaseModel):
    """What a step handler hands back to the engine."""

    output: Any = None
    context_patch: Dict[str, Any] = Field(default_factory=dict)
    logs: List[str] = Field(default_factory=list)
