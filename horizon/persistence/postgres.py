"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

import asyncpg

from ..contracts import StepState
from .models import Step, Workflow, utcnow
from .repository import WorkflowRepository

_STEP_COLUMNS = (
    "seq, id, workflow_id, name, kind, wait_ms, state, assigned_agent, scheduled_for, "
    "logs, output, retry_count, created_at, updated_at, started_at, completed_at"
)


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL.

    Claims lock the candidate row with ``FOR UPDATE SKIP LOCKED`` inside a
    single ``UPDATE ... RETURNING`` statement, so competing engines never
    receive the same step.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                goal TEXT NOT NULL,
                status TEXT NOT NULL,
                context JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS steps (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                workflow_id TEXT NOT NULL REFERENCES workflows(id),
                name TEXT NOT NULL,
                kind TEXT NOT NULL,
                wait_ms BIGINT,
                state TEXT NOT NULL,
                assigned_agent TEXT NOT NULL,
                scheduled_for TIMESTAMPTZ NOT NULL,
                logs JSONB NOT NULL,
                output JSONB,
                retry_count INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS steps_due ON steps (state, scheduled_for, seq)"
        )

    @staticmethod
    def _row_to_workflow(row: asyncpg.Record) -> Workflow:
        return Workflow(
            id=row["id"],
            goal=row["goal"],
            status=row["status"],
            context=json.loads(row["context"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_step(row: asyncpg.Record) -> Step:
        return Step(
            id=row["id"],
            workflow_id=row["workflow_id"],
            sequence=row["seq"],
            name=row["name"],
            kind=row["kind"],
            wait_ms=row["wait_ms"],
            state=row["state"],
            assigned_agent=row["assigned_agent"],
            scheduled_for=row["scheduled_for"],
            logs=json.loads(row["logs"]),
            output=json.loads(row["output"]) if row["output"] else None,
            retry_count=row["retry_count"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _step_values(step: Step) -> tuple[Any, ...]:
        return (
            step.id,
            step.workflow_id,
            step.name,
            step.kind.value,
            step.wait_ms,
            step.state.value,
            step.assigned_agent,
            step.scheduled_for,
            json.dumps(step.logs),
            json.dumps(step.output) if step.output is not None else None,
            step.retry_count,
            step.created_at,
            step.updated_at,
            step.started_at,
            step.completed_at,
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: Workflow, steps: list[Step]) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    "INSERT INTO workflows (id, goal, status, context, created_at, updated_at) "
                    "VALUES ($1, $2, $3, $4, $5, $6)",
                    workflow.id,
                    workflow.goal,
                    workflow.status.value,
                    json.dumps(workflow.context),
                    workflow.created_at,
                    workflow.updated_at,
                )
                for step in steps:
                    step.sequence = await conn.fetchval(
                        "INSERT INTO steps (id, workflow_id, name, kind, wait_ms, state, "
                        "assigned_agent, scheduled_for, logs, output, retry_count, "
                        "created_at, updated_at, started_at, completed_at) "
                        "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15) "
                        "RETURNING seq",
                        *self._step_values(step),
                    )
        finally:
            await conn.close()

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT id, goal, status, context, created_at, updated_at FROM workflows WHERE id = $1",
                workflow_id,
            )
        finally:
            await conn.close()
        return self._row_to_workflow(row) if row else None

    async def list_workflows(self) -> list[Workflow]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT id, goal, status, context, created_at, updated_at FROM workflows "
                "ORDER BY created_at"
            )
        finally:
            await conn.close()
        return [self._row_to_workflow(row) for row in rows]

    async def save_workflow(self, workflow: Workflow) -> None:
        workflow.updated_at = utcnow()
        conn = await self._connect()
        try:
            await conn.execute(
                "UPDATE workflows SET goal = $1, status = $2, context = $3, updated_at = $4 "
                "WHERE id = $5",
                workflow.goal,
                workflow.status.value,
                json.dumps(workflow.context),
                workflow.updated_at,
                workflow.id,
            )
        finally:
            await conn.close()

    async def get_step(self, step_id: str) -> Optional[Step]:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_STEP_COLUMNS} FROM steps WHERE id = $1", step_id
            )
        finally:
            await conn.close()
        return self._row_to_step(row) if row else None

    async def list_steps(self, workflow_id: str) -> list[Step]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_STEP_COLUMNS} FROM steps WHERE workflow_id = $1 ORDER BY seq",
                workflow_id,
            )
        finally:
            await conn.close()
        return [self._row_to_step(row) for row in rows]

    async def save_step(self, step: Step) -> None:
        step.updated_at = utcnow()
        values = self._step_values(step)
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE steps
                SET workflow_id = $1, name = $2, kind = $3, wait_ms = $4, state = $5,
                    assigned_agent = $6, scheduled_for = $7, logs = $8, output = $9,
                    retry_count = $10, created_at = $11, updated_at = $12,
                    started_at = $13, completed_at = $14
                WHERE id = $15
                """,
                *values[1:],
                step.id,
            )
        finally:
            await conn.close()

    async def claim_next_eligible(self, now: datetime) -> Optional[Step]:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"""
                UPDATE steps
                SET state = $1, started_at = $3, updated_at = $3
                WHERE id = (
                    SELECT id FROM steps
                    WHERE state = $2 AND scheduled_for <= $3
                    ORDER BY scheduled_for, seq
                    FOR UPDATE SKIP LOCKED
                    LIMIT 1
                )
                RETURNING {_STEP_COLUMNS}
                """,
                StepState.RUNNING.value,
                StepState.PENDING.value,
                now,
            )
        finally:
            await conn.close()
        return self._row_to_step(row) if row else None

    async def find_next_blocked(
        self, workflow_id: str, after_sequence: int
    ) -> Optional[Step]:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_STEP_COLUMNS} FROM steps "
                "WHERE workflow_id = $1 AND state = $2 AND seq > $3 ORDER BY seq LIMIT 1",
                workflow_id,
                StepState.BLOCKED.value,
                after_sequence,
            )
        finally:
            await conn.close()
        return self._row_to_step(row) if row else None

    async def find_running(self) -> list[Step]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_STEP_COLUMNS} FROM steps WHERE state = $1 ORDER BY seq",
                StepState.RUNNING.value,
            )
        finally:
            await conn.close()
        return [self._row_to_step(row) for row in rows]
