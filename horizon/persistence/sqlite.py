"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..contracts import StepState
from .models import Step, Workflow, utcnow
from .repository import WorkflowRepository

_STEP_COLUMNS = (
    "seq, id, workflow_id, name, kind, wait_ms, state, assigned_agent, scheduled_for, "
    "logs, output, retry_count, created_at, updated_at, started_at, completed_at"
)

# Candidates examined per claim attempt before giving up on this poll.
_CLAIM_CANDIDATES = 8


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC text so that column order matches time order."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite.

    Several repositories (in one process or many) may share a database file.
    A claim is a conditional ``UPDATE`` that only succeeds while the row is
    still ``PENDING``, so at most one of them wins a given step.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(
            self.db_path, check_same_thread=False, timeout=30.0
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS workflows (
                    id TEXT PRIMARY KEY,
                    goal TEXT NOT NULL,
                    status TEXT NOT NULL,
                    context TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS steps (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    workflow_id TEXT NOT NULL REFERENCES workflows(id),
                    name TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    wait_ms INTEGER,
                    state TEXT NOT NULL,
                    assigned_agent TEXT NOT NULL,
                    scheduled_for TEXT NOT NULL,
                    logs TEXT NOT NULL,
                    output TEXT,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS steps_due ON steps (state, scheduled_for, seq)"
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS steps_chain ON steps (workflow_id, seq)"
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _row_to_workflow(row: sqlite3.Row) -> Workflow:
        return Workflow(
            id=row["id"],
            goal=row["goal"],
            status=row["status"],
            context=json.loads(row["context"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_step(row: sqlite3.Row) -> Step:
        return Step(
            id=row["id"],
            workflow_id=row["workflow_id"],
            sequence=row["seq"],
            name=row["name"],
            kind=row["kind"],
            wait_ms=row["wait_ms"],
            state=row["state"],
            assigned_agent=row["assigned_agent"],
            scheduled_for=_parse_ts(row["scheduled_for"]),
            logs=json.loads(row["logs"]),
            output=json.loads(row["output"]) if row["output"] else None,
            retry_count=row["retry_count"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
        )

    def _insert_workflow(self, workflow: Workflow, steps: list[Step]) -> list[int]:
        with self._lock:
            cur = self._conn.cursor()
            try:
                cur.execute(
                    "INSERT INTO workflows (id, goal, status, context, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        workflow.id,
                        workflow.goal,
                        workflow.status.value,
                        json.dumps(workflow.context),
                        _ts(workflow.created_at),
                        _ts(workflow.updated_at),
                    ),
                )
                sequences = []
                for step in steps:
                    cur.execute(
                        "INSERT INTO steps (id, workflow_id, name, kind, wait_ms, state, "
                        "assigned_agent, scheduled_for, logs, output, retry_count, "
                        "created_at, updated_at, started_at, completed_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        self._step_values(step),
                    )
                    sequences.append(cur.lastrowid)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            return sequences

    @staticmethod
    def _step_values(step: Step) -> tuple:
        return (
            step.id,
            step.workflow_id,
            step.name,
            step.kind.value,
            step.wait_ms,
            step.state.value,
            step.assigned_agent,
            _ts(step.scheduled_for),
            json.dumps(step.logs),
            json.dumps(step.output) if step.output is not None else None,
            step.retry_count,
            _ts(step.created_at),
            _ts(step.updated_at),
            _ts(step.started_at),
            _ts(step.completed_at),
        )

    def _claim(self, now: datetime) -> Optional[Step]:
        stamp = _ts(now)
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(
                "SELECT id FROM steps WHERE state = ? AND scheduled_for <= ? "
                "ORDER BY scheduled_for, seq LIMIT ?",
                (StepState.PENDING.value, stamp, _CLAIM_CANDIDATES),
            )
            candidates = [row["id"] for row in cur.fetchall()]
            for step_id in candidates:
                cur.execute(
                    "UPDATE steps SET state = ?, started_at = ?, updated_at = ? "
                    "WHERE id = ? AND state = ?",
                    (
                        StepState.RUNNING.value,
                        stamp,
                        stamp,
                        step_id,
                        StepState.PENDING.value,
                    ),
                )
                self._conn.commit()
                if cur.rowcount == 1:
                    cur.execute(
                        f"SELECT {_STEP_COLUMNS} FROM steps WHERE id = ?", (step_id,)
                    )
                    return self._row_to_step(cur.fetchone())
            return None

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, workflow: Workflow, steps: list[Step]) -> None:
        sequences = await asyncio.to_thread(self._insert_workflow, workflow, steps)
        for step, seq in zip(steps, sequences):
            step.sequence = seq

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT id, goal, status, context, created_at, updated_at FROM workflows WHERE id = ?",
            workflow_id,
        )
        return self._row_to_workflow(row) if row else None

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, goal, status, context, created_at, updated_at FROM workflows "
            "ORDER BY created_at",
        )
        return [self._row_to_workflow(row) for row in rows]

    async def save_workflow(self, workflow: Workflow) -> None:
        workflow.updated_at = utcnow()
        await asyncio.to_thread(
            self._execute,
            "UPDATE workflows SET goal = ?, status = ?, context = ?, updated_at = ? WHERE id = ?",
            workflow.goal,
            workflow.status.value,
            json.dumps(workflow.context),
            _ts(workflow.updated_at),
            workflow.id,
        )

    async def get_step(self, step_id: str) -> Optional[Step]:
        row = await asyncio.to_thread(
            self._fetchone, f"SELECT {_STEP_COLUMNS} FROM steps WHERE id = ?", step_id
        )
        return self._row_to_step(row) if row else None

    async def list_steps(self, workflow_id: str) -> list[Step]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_STEP_COLUMNS} FROM steps WHERE workflow_id = ? ORDER BY seq",
            workflow_id,
        )
        return [self._row_to_step(row) for row in rows]

    async def save_step(self, step: Step) -> None:
        step.updated_at = utcnow()
        values = self._step_values(step)
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE steps
            SET workflow_id = ?, name = ?, kind = ?, wait_ms = ?, state = ?,
                assigned_agent = ?, scheduled_for = ?, logs = ?, output = ?,
                retry_count = ?, created_at = ?, updated_at = ?, started_at = ?,
                completed_at = ?
            WHERE id = ?
            """,
            *values[1:],
            step.id,
        )

    async def claim_next_eligible(self, now: datetime) -> Optional[Step]:
        return await asyncio.to_thread(self._claim, now)

    async def find_next_blocked(
        self, workflow_id: str, after_sequence: int
    ) -> Optional[Step]:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_STEP_COLUMNS} FROM steps "
            "WHERE workflow_id = ? AND state = ? AND seq > ? ORDER BY seq LIMIT 1",
            workflow_id,
            StepState.BLOCKED.value,
            after_sequence,
        )
        return self._row_to_step(row) if row else None

    async def find_running(self) -> list[Step]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_STEP_COLUMNS} FROM steps WHERE state = ? ORDER BY seq",
            StepState.RUNNING.value,
        )
        return [self._row_to_step(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
