"""Workflow and step storage backends, selected by database URL."""

from __future__ import annotations

import os
from typing import Optional

from ..config import HorizonConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import Step, Workflow
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowRepository = None  # type: ignore

_POSTGRES_SCHEMES = ("postgres://", "postgresql://")
_SQLITE_SCHEME = "sqlite://"

_repository_instance: WorkflowRepository | None = None


def _resolve_database_url(
    database_url: Optional[str], config: Optional[HorizonConfig]
) -> Optional[str]:
    if database_url:
        return database_url
    env_url = os.getenv("HORIZON_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    return (config or load_config()).database_url


def open_repository(database_url: Optional[str]) -> WorkflowRepository:
    """Build a new repository for ``database_url``; no URL means in-memory.

    ``sqlite://<path>`` opens (or creates) a SQLite file, ``postgres://`` and
    ``postgresql://`` connect with asyncpg.
    """
    if not database_url:
        return InMemoryWorkflowRepository()
    if database_url.startswith(_SQLITE_SCHEME):
        return SQLiteWorkflowRepository(database_url[len(_SQLITE_SCHEME):])
    if database_url.startswith(_POSTGRES_SCHEMES):
        if PostgresWorkflowRepository is None:
            raise RuntimeError("Postgres support not available (install asyncpg)")
        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[HorizonConfig] = None
) -> WorkflowRepository:
    """Process-wide repository used by the CLI.

    The first call without arguments opens the configured backend and caches
    it; later calls without arguments return the cached instance. An explicit
    ``database_url`` or ``config`` opens a fresh backend and replaces the cache.
    """
    global _repository_instance
    if _repository_instance is None or database_url is not None or config is not None:
        _repository_instance = open_repository(
            _resolve_database_url(database_url, config)
        )
    return _repository_instance


__all__ = [
    "InMemoryWorkflowRepository",
    "PostgresWorkflowRepository",
    "SQLiteWorkflowRepository",
    "Step",
    "Workflow",
    "WorkflowRepository",
    "get_repository",
    "open_repository",
]
