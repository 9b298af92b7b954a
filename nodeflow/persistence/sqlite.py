"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from ..contracts import Connection, Node, RunStatus, StepStatus, Workflow, utcnow
from ..errors import PersistenceError
from .models import RunRecord, StepRecord
from .repository import WorkflowRepository


def _dumps(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, default=str)


def _loads(value: Optional[str]) -> Any:
    return None if value is None else json.loads(value)


def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflows and runs using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = asyncio.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                user_id TEXT
            );
            CREATE TABLE IF NOT EXISTS nodes (
                id TEXT NOT NULL,
                workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                type TEXT NOT NULL,
                name TEXT NOT NULL,
                data TEXT NOT NULL,
                PRIMARY KEY (workflow_id, id)
            );
            CREATE TABLE IF NOT EXISTS connections (
                id TEXT NOT NULL,
                workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
                from_node_id TEXT NOT NULL,
                from_output TEXT NOT NULL,
                to_node_id TEXT NOT NULL,
                to_input TEXT NOT NULL,
                PRIMARY KEY (workflow_id, id)
            );
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                trigger_event_id TEXT UNIQUE,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                output TEXT,
                error TEXT
            );
            CREATE TABLE IF NOT EXISTS step_executions (
                run_id TEXT NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
                node_id TEXT NOT NULL,
                status TEXT NOT NULL,
                input TEXT,
                output TEXT,
                error TEXT,
                completed_at TEXT NOT NULL,
                PRIMARY KEY (run_id, node_id)
            );
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        try:
            self._conn.execute(query, params)
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise PersistenceError(f"SQLite write failed: {e}") from e

    def _execute_many(self, statements: Sequence[tuple]) -> int:
        """Run ``(query, params)`` pairs in one transaction; returns last rowcount."""
        rowcount = 0
        try:
            for query, params in statements:
                rowcount = self._conn.execute(query, params).rowcount
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise PersistenceError(f"SQLite write failed: {e}") from e
        return rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        try:
            return self._conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite read failed: {e}") from e

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite read failed: {e}") from e

    async def _call(self, fn, *args: Any) -> Any:
        # a single connection is shared, so calls are serialized
        async with self._lock:
            return await asyncio.to_thread(fn, *args)

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> Node:
        return Node(
            id=row["id"],
            workflow_id=row["workflow_id"],
            type=row["type"],
            name=row["name"],
            data=json.loads(row["data"]),
        )

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> RunRecord:
        return RunRecord(
            id=row["id"],
            workflow_id=row["workflow_id"],
            trigger_event_id=row["trigger_event_id"],
            status=RunStatus(row["status"]),
            started_at=_dt(row["started_at"]),
            completed_at=_dt(row["completed_at"]),
            output=_loads(row["output"]),
            error=row["error"],
        )

    # ------------------------------------------------------------------
    # Workflows
    async def save_workflow(self, workflow: Workflow) -> None:
        statements: list[tuple] = [
            (
                """
                INSERT INTO workflows (id, name, user_id) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET name = excluded.name, user_id = excluded.user_id
                """,
                (workflow.id, workflow.name, workflow.user_id),
            ),
            ("DELETE FROM nodes WHERE workflow_id = ?", (workflow.id,)),
            ("DELETE FROM connections WHERE workflow_id = ?", (workflow.id,)),
        ]
        for position, node in enumerate(workflow.nodes):
            statements.append(
                (
                    "INSERT INTO nodes (id, workflow_id, position, type, name, data) VALUES (?, ?, ?, ?, ?, ?)",
                    (node.id, workflow.id, position, node.type, node.name, json.dumps(node.data)),
                )
            )
        for conn in workflow.connections:
            statements.append(
                (
                    "INSERT INTO connections (id, workflow_id, from_node_id, from_output, to_node_id, to_input) VALUES (?, ?, ?, ?, ?, ?)",
                    (conn.id, workflow.id, conn.from_node_id, conn.from_output, conn.to_node_id, conn.to_input),
                )
            )
        await self._call(self._execute_many, statements)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await self._call(
            self._fetchone, "SELECT id, name, user_id FROM workflows WHERE id = ?", workflow_id
        )
        if not row:
            return None
        node_rows = await self._call(
            self._fetchall,
            "SELECT * FROM nodes WHERE workflow_id = ? ORDER BY position",
            workflow_id,
        )
        conn_rows = await self._call(
            self._fetchall, "SELECT * FROM connections WHERE workflow_id = ?", workflow_id
        )
        return Workflow(
            id=row["id"],
            name=row["name"],
            user_id=row["user_id"],
            nodes=[self._row_to_node(r) for r in node_rows],
            connections=[
                Connection(
                    id=r["id"],
                    workflow_id=r["workflow_id"],
                    from_node_id=r["from_node_id"],
                    from_output=r["from_output"],
                    to_node_id=r["to_node_id"],
                    to_input=r["to_input"],
                )
                for r in conn_rows
            ],
        )

    async def list_workflows(self) -> list[Workflow]:
        rows = await self._call(self._fetchall, "SELECT id FROM workflows ORDER BY id")
        workflows: list[Workflow] = []
        for row in rows:
            wf = await self.get_workflow(row["id"])
            if wf:
                workflows.append(wf)
        return workflows

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._call(
            self._execute_many,
            [
                ("DELETE FROM runs WHERE workflow_id = ?", (workflow_id,)),
                ("DELETE FROM workflows WHERE id = ?", (workflow_id,)),
            ],
        )

    async def find_nodes(self, workflow_id: str, node_type: str) -> list[Node]:
        rows = await self._call(
            self._fetchall,
            "SELECT * FROM nodes WHERE workflow_id = ? AND type = ? ORDER BY position",
            workflow_id,
            node_type,
        )
        return [self._row_to_node(r) for r in rows]

    async def list_nodes_by_type(self, node_type: str) -> list[Node]:
        rows = await self._call(
            self._fetchall,
            "SELECT * FROM nodes WHERE type = ? ORDER BY workflow_id, position",
            node_type,
        )
        return [self._row_to_node(r) for r in rows]

    # ------------------------------------------------------------------
    # Runs
    async def create_run(
        self, workflow_id: str, trigger_event_id: Optional[str] = None
    ) -> RunRecord:
        if trigger_event_id:
            row = await self._call(
                self._fetchone, "SELECT * FROM runs WHERE trigger_event_id = ?", trigger_event_id
            )
            if row:
                return self._row_to_run(row)
        run = RunRecord(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            trigger_event_id=trigger_event_id,
        )
        await self._call(
            self._execute,
            "INSERT INTO runs (id, workflow_id, trigger_event_id, status, started_at) VALUES (?, ?, ?, ?, ?)",
            run.id,
            run.workflow_id,
            run.trigger_event_id,
            run.status.value,
            _ts(run.started_at),
        )
        return run

    async def complete_run(
        self,
        run_id: str,
        status: RunStatus,
        output: Any = None,
        error: Optional[str] = None,
    ) -> None:
        await self._call(
            self._execute,
            "UPDATE runs SET status = ?, completed_at = ?, output = ?, error = ? WHERE id = ?",
            RunStatus(status).value,
            _ts(utcnow()),
            _dumps(output),
            error,
            run_id,
        )

    async def get_run(self, run_id: str) -> RunRecord | None:
        row = await self._call(self._fetchone, "SELECT * FROM runs WHERE id = ?", run_id)
        if not row:
            return None
        run = self._row_to_run(row)
        run.steps = await self.get_steps(run_id)
        return run

    async def list_runs(self, workflow_id: Optional[str] = None) -> list[RunRecord]:
        if workflow_id is None:
            rows = await self._call(
                self._fetchall, "SELECT * FROM runs ORDER BY started_at DESC"
            )
        else:
            rows = await self._call(
                self._fetchall,
                "SELECT * FROM runs WHERE workflow_id = ? ORDER BY started_at DESC",
                workflow_id,
            )
        return [self._row_to_run(r) for r in rows]

    async def delete_runs(
        self, started_before: datetime, statuses: Iterable[RunStatus]
    ) -> int:
        values = [RunStatus(s).value for s in statuses]
        if not values:
            return 0
        placeholders = ", ".join("?" for _ in values)
        return await self._call(
            self._execute_many,
            [
                (
                    f"DELETE FROM runs WHERE started_at < ? AND status IN ({placeholders})",
                    (_ts(started_before), *values),
                )
            ],
        )

    # ------------------------------------------------------------------
    # Steps
    async def upsert_step(
        self,
        run_id: str,
        node_id: str,
        status: StepStatus,
        input: Any = None,
        output: Any = None,
        error: Optional[str] = None,
    ) -> None:
        await self._call(
            self._execute,
            """
            INSERT INTO step_executions (run_id, node_id, status, input, output, error, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(run_id, node_id) DO UPDATE SET
                status = excluded.status,
                input = excluded.input,
                output = excluded.output,
                error = excluded.error,
                completed_at = excluded.completed_at
            """,
            run_id,
            node_id,
            StepStatus(status).value,
            _dumps(input),
            _dumps(output),
            error,
            _ts(utcnow()),
        )

    async def get_steps(self, run_id: str) -> list[StepRecord]:
        rows = await self._call(
            self._fetchall,
            "SELECT * FROM step_executions WHERE run_id = ? ORDER BY completed_at",
            run_id,
        )
        return [
            StepRecord(
                run_id=r["run_id"],
                node_id=r["node_id"],
                status=StepStatus(r["status"]),
                input=_loads(r["input"]),
                output=_loads(r["output"]),
                error=r["error"],
                completed_at=_dt(r["completed_at"]),
            )
            for r in rows
        ]
