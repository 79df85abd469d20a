"""Demo travel-assistant handlers backed by deterministic mock data."""

from __future__ import annotations

import asyncio
import logging

from ..contracts import HandlerResult
from ..exceptions import StepHandlerError
from ..results import (
    BudgetEstimate,
    DailyForecast,
    Event,
    EventListing,
    FlightOption,
    FlightOptions,
    HotelOption,
    HotelOptions,
    ResearchNotes,
    TravelDates,
    VisaAppointment,
    WeatherForecast,
    WorkflowContext,
)

logger = logging.getLogger(__name__)

DEFAULT_NIGHTS = 14

RESEARCH_THOUGHTS = [
    "Analyzing user intent...",
    "Querying internal knowledge base...",
    "Found 12 relevant documents.",
    "Refining search: adding spatial constraints...",
    "Cross-referencing with live web data...",
    "Synthesizing answer from multiple sources.",
]


class _MockHandler:
    """Shared base: an optional artificial delay standing in for remote calls."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay

    async def _simulate_latency(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)


class DatesHandler(_MockHandler):
    async def execute(self, step_name, agent, context: WorkflowContext) -> HandlerResult:
        await self._simulate_latency()
        return HandlerResult(
            output=TravelDates(
                recommendation="May 12 - May 26, 2026",
                reason="Optimal weather and scheduled cultural events.",
            )
        )


class FlightsHandler(_MockHandler):
    async def execute(self, step_name, agent, context: WorkflowContext) -> HandlerResult:
        upstream = context.get(FlightOptions)
        if upstream is not None:
            return HandlerResult(
                output=upstream, logs=["Reusing flight options found upstream."]
            )

        await self._simulate_latency()
        flights = FlightOptions(
            options=[
                FlightOption(
                    airline="SpaceX",
                    flight="SX-882",
                    time="10:00 AM",
                    price=450,
                    duration="4h 30m",
                ),
                FlightOption(
                    airline="Delta",
                    flight="DL-249",
                    time="02:00 PM",
                    price=380,
                    duration="5h 10m",
                ),
            ]
        )
        return HandlerResult(
            output=flights, logs=[f"Found {len(flights.options)} flight options."]
        )


class HotelsHandler(_MockHandler):
    async def execute(self, step_name, agent, context: WorkflowContext) -> HandlerResult:
        upstream = context.get(HotelOptions)
        if upstream is not None:
            return HandlerResult(
                output=upstream, logs=["Reusing hotel options found upstream."]
            )

        await self._simulate_latency()
        hotels = HotelOptions(
            nights=DEFAULT_NIGHTS,
            options=[
                HotelOption(name="Park Hyatt", nightly_rate=420, rating=4.8),
                HotelOption(name="Citizen M", nightly_rate=190, rating=4.3),
                HotelOption(name="Hostel One", nightly_rate=55, rating=3.9),
            ],
        )
        return HandlerResult(
            output=hotels, logs=[f"Found {len(hotels.options)} hotel options."]
        )


class WeatherHandler(_MockHandler):
    def __init__(self, location: str = "New York", delay: float = 0.0) -> None:
        super().__init__(delay)
        self.location = location

    async def execute(self, step_name, agent, context: WorkflowContext) -> HandlerResult:
        await self._simulate_latency()
        return HandlerResult(
            output=WeatherForecast(
                location=self.location,
                forecast=[
                    DailyForecast(date="2026-05-12", temp=72, condition="Sunny"),
                    DailyForecast(date="2026-05-13", temp=68, condition="Partly Cloudy"),
                    DailyForecast(date="2026-05-14", temp=65, condition="Rain"),
                ],
            )
        )


class EventsHandler(_MockHandler):
    async def execute(self, step_name, agent, context: WorkflowContext) -> HandlerResult:
        await self._simulate_latency()
        return HandlerResult(
            output=EventListing(
                items=[
                    Event(name="Met Gala Exhibition", date="May 2026", type="Art"),
                    Event(name="Central Park Jazz Fest", date="May 15th", type="Music"),
                    Event(
                        name="Empire State Building Tour",
                        date="Daily",
                        type="Sightseeing",
                    ),
                ]
            )
        )


class BudgetHandler(_MockHandler):
    """Budget from the cheapest upstream flight and hotel."""

    async def execute(self, step_name, agent, context: WorkflowContext) -> HandlerResult:
        flights = context.get(FlightOptions)
        hotels = context.get(HotelOptions)
        if flights is None or hotels is None:
            raise StepHandlerError(
                "Budget needs flight and hotel options from earlier steps"
            )

        flight = flights.cheapest()
        hotel = hotels.cheapest()
        budget = BudgetEstimate(
            flights=flight.price if flight else 0.0,
            lodging=hotel.nightly_rate * hotels.nights if hotel else 0.0,
        )
        return HandlerResult(
            output=budget,
            logs=[f"Estimated total {budget.total:.0f} {budget.currency}."],
        )


class ResearchHandler(_MockHandler):
    async def execute(self, step_name, agent, context: WorkflowContext) -> HandlerResult:
        for thought in RESEARCH_THOUGHTS:
            await self._simulate_latency()
            await context.log(thought)
        return HandlerResult(
            output=ResearchNotes(topic=context.goal, findings=RESEARCH_THOUGHTS[-2:])
        )


class VisaHandler(_MockHandler):
    async def execute(self, step_name, agent, context: WorkflowContext) -> HandlerResult:
        await context.log("Checking embassy appointment availability...")
        await self._simulate_latency()
        await context.log("Found slot: March 14th.")
        return HandlerResult(output=VisaAppointment(slot="March 14th"))
