"""Final itinerary generation from the accumulated workflow context."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic_ai import Agent

from ..contracts import HandlerResult
from ..results import (
    BudgetEstimate,
    EventListing,
    FlightOptions,
    HotelOptions,
    Itinerary,
    TravelDates,
    WorkflowContext,
)

logger = logging.getLogger(__name__)

ITINERARY_PROMPT = """You are a travel agent. Generate a markdown itinerary.
Structure it with "Flights", "Accommodation" and "Activities" sections.
Keep it brief but realistic, and only use the facts you are given."""


def render_itinerary(context: WorkflowContext) -> str:
    """Render a plain markdown itinerary from the typed context results."""
    lines = [f"# Itinerary: {context.goal}", ""]

    dates = context.get(TravelDates)
    if dates is not None:
        lines += [f"**Dates:** {dates.recommendation} ({dates.reason})", ""]

    lines.append("## Flights")
    flights = context.get(FlightOptions)
    flight = flights.cheapest() if flights else None
    if flight is not None:
        lines.append(
            f"- {flight.airline} {flight.flight} at {flight.time}, "
            f"{flight.duration}, ${flight.price:.0f}"
        )
    else:
        lines.append("- To be booked")
    lines.append("")

    lines.append("## Accommodation")
    hotels = context.get(HotelOptions)
    hotel = hotels.cheapest() if hotels else None
    if hotel is not None:
        lines.append(
            f"- {hotel.name} ({hotel.rating}/5), ${hotel.nightly_rate:.0f} per night "
            f"for {hotels.nights} nights"
        )
    else:
        lines.append("- To be booked")
    lines.append("")

    lines.append("## Activities")
    events = context.get(EventListing)
    if events is not None and events.items:
        lines += [f"- {e.name} ({e.date}, {e.type})" for e in events.items]
    else:
        lines.append("- Free exploration")

    budget = context.get(BudgetEstimate)
    if budget is not None:
        lines += ["", f"**Estimated budget:** {budget.total:.0f} {budget.currency}"]
    return "\n".join(lines) + "\n"


class ItineraryHandler:
    """Write the final itinerary, with an LLM when one is configured.

    Without ``model`` or ``agent`` the itinerary is rendered from a template.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        agent: Optional[Any] = None,
        output_path: Optional[str | Path] = None,
    ) -> None:
        if agent is None and model:
            agent = Agent(model, system_prompt=ITINERARY_PROMPT, output_type=str)
        self._agent = agent
        self.output_path = Path(output_path) if output_path else None

    async def execute(
        self, step_name: str, agent: str, context: WorkflowContext
    ) -> HandlerResult:
        logs = []
        if self._agent is not None:
            logger.info(f"Generating itinerary for '{context.goal}' with LLM")
            result = await self._agent.run(
                f"Create a final itinerary for: {context.goal}\n\n"
                f"Known facts: {context.as_dict()}"
            )
            markdown = str(result.output)
        else:
            markdown = render_itinerary(context)

        path = None
        if self.output_path is not None:
            await asyncio.to_thread(self.output_path.write_text, markdown)
            path = str(self.output_path)
            logs.append(f"Generated {self.output_path.name}")

        return HandlerResult(output=Itinerary(markdown=markdown, path=path), logs=logs)
