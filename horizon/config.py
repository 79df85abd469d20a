from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Polling behaviour of the claim/execute loop."""

    poll_interval: float = Field(default=2.0, gt=0)
    error_backoff: float = Field(default=5.0, gt=0)


class PlannerConfig(BaseModel):
    """LLM planner settings."""

    model: Optional[str] = None


class ItineraryConfig(BaseModel):
    """Final itinerary generation settings."""

    model: Optional[str] = None
    output_path: Optional[str] = None


class HorizonConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    engine: EngineConfig = EngineConfig()
    planner: PlannerConfig = PlannerConfig()
    itinerary: ItineraryConfig = ItineraryConfig()


def load_config(path: Optional[str] = None) -> HorizonConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to HORIZON_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("HORIZON_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = HorizonConfig(**data)
    else:
        config = HorizonConfig()

    env_db_url = os.getenv("HORIZON_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url

    env_poll = os.getenv("HORIZON_POLL_INTERVAL")
    if env_poll:
        config.engine = EngineConfig(
            poll_interval=float(env_poll), error_backoff=config.engine.error_backoff
        )
    return config
