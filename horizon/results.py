"""Typed step results and read access to a workflow's context bag.

Every result kind declares the context key it contributes. Handlers return a
result model; the engine merges ``result.context_patch()`` into the workflow
context, and later steps read it back with ``WorkflowContext.get``.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field

R = TypeVar("R", bound="StepResult")


class StepResult(BaseModel):
    """Base class for handler outputs that feed the workflow context."""

    context_key: ClassVar[str]

    def context_patch(self) -> Dict[str, Any]:
        return {self.context_key: self.model_dump(mode="json")}


class TravelDates(StepResult):
    context_key: ClassVar[str] = "dates"

    recommendation: str
    reason: str


class FlightOption(BaseModel):
    airline: str
    flight: str
    time: str
    price: float
    duration: str


class FlightOptions(StepResult):
    context_key: ClassVar[str] = "flights"

    options: List[FlightOption] = Field(default_factory=list)

    def cheapest(self) -> Optional[FlightOption]:
        return min(self.options, key=lambda o: o.price, default=None)


class HotelOption(BaseModel):
    name: str
    nightly_rate: float
    rating: float


class HotelOptions(StepResult):
    context_key: ClassVar[str] = "hotels"

    nights: int
    options: List[HotelOption] = Field(default_factory=list)

    def cheapest(self) -> Optional[HotelOption]:
        return min(self.options, key=lambda o: o.nightly_rate, default=None)


class DailyForecast(BaseModel):
    date: str
    temp: int
    condition: str


class WeatherForecast(StepResult):
    context_key: ClassVar[str] = "weather"

    location: str
    forecast: List[DailyForecast] = Field(default_factory=list)


class Event(BaseModel):
    name: str
    date: str
    type: str


class EventListing(StepResult):
    context_key: ClassVar[str] = "events"

    items: List[Event] = Field(default_factory=list)


class BudgetEstimate(StepResult):
    context_key: ClassVar[str] = "budget"

    currency: str = "USD"
    flights: float = 0.0
    lodging: float = 0.0

    @property
    def total(self) -> float:
        return self.flights + self.lodging


class VisaAppointment(StepResult):
    context_key: ClassVar[str] = "visa"

    slot: str


class ResearchNotes(StepResult):
    context_key: ClassVar[str] = "research"

    topic: str
    findings: List[str] = Field(default_factory=list)


class Itinerary(StepResult):
    context_key: ClassVar[str] = "itinerary"

    markdown: str
    path: Optional[str] = None


RESULT_TYPES: Dict[str, Type[StepResult]] = {
    cls.context_key: cls
    for cls in (
        TravelDates,
        FlightOptions,
        HotelOptions,
        WeatherForecast,
        EventListing,
        BudgetEstimate,
        VisaAppointment,
        ResearchNotes,
        Itinerary,
    )
}


LogSink = Callable[[str], Awaitable[None]]


class WorkflowContext:
    """Read-only view over a workflow's goal and accumulated context.

    ``log`` writes a line to the running step's log straight away, so a
    reader sees progress before the step completes. Lines are also kept in
    ``log_lines``.
    """

    def __init__(
        self,
        workflow_id: str,
        goal: str,
        data: Optional[Dict[str, Any]] = None,
        log_sink: Optional[LogSink] = None,
    ):
        self.workflow_id = workflow_id
        self.goal = goal
        self._data = dict(data or {})
        self._log_sink = log_sink
        self.log_lines: List[str] = []

    async def log(self, line: str) -> None:
        self.log_lines.append(line)
        if self._log_sink is not None:
            await self._log_sink(line)

    def get(self, result_type: Type[R]) -> Optional[R]:
        """Return the upstream result of ``result_type``, if one was recorded."""
        raw = self._data.get(result_type.context_key)
        if raw is None:
            return None
        return result_type.model_validate(raw)

    def has(self, result_type: Type[StepResult]) -> bool:
        return result_type.context_key in self._data

    def raw(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def keys(self) -> List[str]:
        return list(self._data)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._data)
