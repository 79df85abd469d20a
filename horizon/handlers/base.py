"""Step handler interface and handler resolution."""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional, Protocol, Tuple

from ..contracts import HandlerResult
from ..results import WorkflowContext

logger = logging.getLogger(__name__)


class StepHandler(Protocol):
    """Domain logic producing a step's output.

    Implementations raise to report failure; the engine marks the step FAILED.
    """

    async def execute(
        self, step_name: str, agent: str, context: WorkflowContext
    ) -> HandlerResult:
        ...


class GenericHandler:
    """Fallback handler for steps with no domain logic attached."""

    async def execute(
        self, step_name: str, agent: str, context: WorkflowContext
    ) -> HandlerResult:
        return HandlerResult(
            output={
                "result": f"Success for {step_name}",
                "timestamp": int(time.time() * 1000),
            }
        )


class HandlerRegistry:
    """Map step names and agent labels to handlers.

    Resolution order: exact step name, assigned agent label, first keyword
    contained in the lower-cased step name, then the default handler.
    """

    def __init__(self, default: Optional[StepHandler] = None) -> None:
        self._by_name: Dict[str, StepHandler] = {}
        self._by_agent: Dict[str, StepHandler] = {}
        self._by_keyword: List[Tuple[str, StepHandler]] = []
        self.default: StepHandler = default or GenericHandler()

    def register_name(self, step_name: str, handler: StepHandler) -> None:
        self._by_name[step_name] = handler

    def register_agent(self, agent: str, handler: StepHandler) -> None:
        self._by_agent[agent] = handler

    def register_keyword(self, keyword: str, handler: StepHandler) -> None:
        self._by_keyword.append((keyword.lower(), handler))

    def resolve(self, step_name: str, agent: str) -> StepHandler:
        if step_name in self._by_name:
            return self._by_name[step_name]
        if agent in self._by_agent:
            return self._by_agent[agent]
        lowered = step_name.lower()
        for keyword, handler in self._by_keyword:
            if keyword in lowered:
                return handler
        logger.debug(f"No handler registered for step '{step_name}', using default")
        return self.default
