"""Event Horizon: durable sequential workflows that survive crashes and long waits."""

from .contracts import HandlerResult, StepKind, StepSpec, StepState, WorkflowStatus
from .engine import WorkflowEngine
from .exceptions import HorizonError, InvalidPlanError, StepHandlerError
from .handlers import HandlerRegistry, default_registry
from .persistence import Step, Workflow, get_repository
from .planner import LLMPlanner, PlannedStep, StaticPlanner
from .results import StepResult, WorkflowContext

__version__ = "0.1.0"
__all__ = [
    "HandlerRegistry",
    "HandlerResult",
    "HorizonError",
    "InvalidPlanError",
    "LLMPlanner",
    "PlannedStep",
    "StaticPlanner",
    "Step",
    "StepHandlerError",
    "StepKind",
    "StepResult",
    "StepSpec",
    "StepState",
    "Workflow",
    "WorkflowContext",
    "WorkflowEngine",
    "WorkflowStatus",
    "default_registry",
    "get_repository",
]
