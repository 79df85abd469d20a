"""Step handlers and their registry."""

from __future__ import annotations

from typing import Optional

from ..config import HorizonConfig
from .base import GenericHandler, HandlerRegistry, StepHandler
from .itinerary import ItineraryHandler, render_itinerary
from .travel import (
    BudgetHandler,
    DatesHandler,
    EventsHandler,
    FlightsHandler,
    HotelsHandler,
    ResearchHandler,
    VisaHandler,
    WeatherHandler,
)

FINAL_ITINERARY_STEP = "Send Final Itinerary"


def default_registry(
    config: Optional[HorizonConfig] = None, delay: float = 0.0
) -> HandlerRegistry:
    """Registry wired with the travel-assistant demo handlers."""
    config = config or HorizonConfig()
    registry = HandlerRegistry()

    itinerary = ItineraryHandler(
        model=config.itinerary.model, output_path=config.itinerary.output_path
    )
    registry.register_name(FINAL_ITINERARY_STEP, itinerary)

    research = ResearchHandler(delay=delay)
    visa = VisaHandler(delay=delay)
    registry.register_agent("ResearchAgent", research)
    registry.register_agent("VisaAgent", visa)

    registry.register_keyword("itinerary", itinerary)
    registry.register_keyword("research", research)
    registry.register_keyword("visa", visa)
    registry.register_keyword("flight", FlightsHandler(delay=delay))
    registry.register_keyword("hotel", HotelsHandler(delay=delay))
    registry.register_keyword("weather", WeatherHandler(delay=delay))
    registry.register_keyword("budget", BudgetHandler(delay=delay))
    events = EventsHandler(delay=delay)
    registry.register_keyword("event", events)
    registry.register_keyword("visit", events)
    registry.register_keyword("date", DatesHandler(delay=delay))
    return registry


__all__ = [
    "FINAL_ITINERARY_STEP",
    "GenericHandler",
    "HandlerRegistry",
    "ItineraryHandler",
    "StepHandler",
    "default_registry",
    "render_itinerary",
]
