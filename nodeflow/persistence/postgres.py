"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Iterable, Optional

import asyncpg

from ..contracts import Connection, Node, RunStatus, StepStatus, Workflow, utcnow
from ..errors import PersistenceError
from .models import RunRecord, StepRecord
from .repository import WorkflowRepository


def _json(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    return json.loads(value) if isinstance(value, str) else value


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflows and runs using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"Cannot connect to Postgres: {e}") from e
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                user_id TEXT
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS nodes (
                id TEXT NOT NULL,
                workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                type TEXT NOT NULL,
                name TEXT NOT NULL,
                data JSONB NOT NULL,
                PRIMARY KEY (workflow_id, id)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS connections (
                id TEXT NOT NULL,
                workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
                from_node_id TEXT NOT NULL,
                from_output TEXT NOT NULL,
                to_node_id TEXT NOT NULL,
                to_input TEXT NOT NULL,
                PRIMARY KEY (workflow_id, id)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                trigger_event_id TEXT UNIQUE,
                status TEXT NOT NULL,
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                output JSONB,
                error TEXT
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                run_id TEXT NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
                node_id TEXT NOT NULL,
                status TEXT NOT NULL,
                input JSONB,
                output JSONB,
                error TEXT,
                completed_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (run_id, node_id)
            )
            """
        )

    @staticmethod
    def _row_to_node(row: asyncpg.Record) -> Node:
        return Node(
            id=row["id"],
            workflow_id=row["workflow_id"],
            type=row["type"],
            name=row["name"],
            data=_json(row["data"]) or {},
        )

    @staticmethod
    def _row_to_run(row: asyncpg.Record) -> RunRecord:
        return RunRecord(
            id=row["id"],
            workflow_id=row["workflow_id"],
            trigger_event_id=row["trigger_event_id"],
            status=RunStatus(row["status"]),
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            output=_json(row["output"]),
            error=row["error"],
        )

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: Workflow) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO workflows (id, name, user_id) VALUES ($1, $2, $3)
                    ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, user_id = EXCLUDED.user_id
                    """,
                    workflow.id,
                    workflow.name,
                    workflow.user_id,
                )
                await conn.execute("DELETE FROM nodes WHERE workflow_id = $1", workflow.id)
                await conn.execute("DELETE FROM connections WHERE workflow_id = $1", workflow.id)
                await conn.executemany(
                    "INSERT INTO nodes (id, workflow_id, position, type, name, data) VALUES ($1, $2, $3, $4, $5, $6)",
                    [
                        (n.id, workflow.id, i, n.type, n.name, json.dumps(n.data))
                        for i, n in enumerate(workflow.nodes)
                    ],
                )
                await conn.executemany(
                    "INSERT INTO connections (id, workflow_id, from_node_id, from_output, to_node_id, to_input) VALUES ($1, $2, $3, $4, $5, $6)",
                    [
                        (c.id, workflow.id, c.from_node_id, c.from_output, c.to_node_id, c.to_input)
                        for c in workflow.connections
                    ],
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Saving workflow {workflow.id} failed: {e}") from e
        finally:
            await conn.close()

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT id, name, user_id FROM workflows WHERE id = $1", workflow_id
            )
            if not row:
                return None
            node_rows = await conn.fetch(
                "SELECT * FROM nodes WHERE workflow_id = $1 ORDER BY position", workflow_id
            )
            conn_rows = await conn.fetch(
                "SELECT * FROM connections WHERE workflow_id = $1", workflow_id
            )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Loading workflow {workflow_id} failed: {e}") from e
        finally:
            await conn.close()
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
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT id FROM workflows ORDER BY id")
        finally:
            await conn.close()
        workflows: list[Workflow] = []
        for row in rows:
            wf = await self.get_workflow(row["id"])
            if wf:
                workflows.append(wf)
        return workflows

    async def delete_workflow(self, workflow_id: str) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute("DELETE FROM runs WHERE workflow_id = $1", workflow_id)
                await conn.execute("DELETE FROM workflows WHERE id = $1", workflow_id)
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Deleting workflow {workflow_id} failed: {e}") from e
        finally:
            await conn.close()

    async def find_nodes(self, workflow_id: str, node_type: str) -> list[Node]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT * FROM nodes WHERE workflow_id = $1 AND type = $2 ORDER BY position",
                workflow_id,
                node_type,
            )
        finally:
            await conn.close()
        return [self._row_to_node(r) for r in rows]

    async def list_nodes_by_type(self, node_type: str) -> list[Node]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT * FROM nodes WHERE type = $1 ORDER BY workflow_id, position",
                node_type,
            )
        finally:
            await conn.close()
        return [self._row_to_node(r) for r in rows]

    # ------------------------------------------------------------------
    async def create_run(
        self, workflow_id: str, trigger_event_id: Optional[str] = None
    ) -> RunRecord:
        run = RunRecord(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            trigger_event_id=trigger_event_id,
        )
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO runs (id, workflow_id, trigger_event_id, status, started_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (trigger_event_id) DO NOTHING
                """,
                run.id,
                run.workflow_id,
                run.trigger_event_id,
                run.status.value,
                run.started_at,
            )
            if trigger_event_id:
                row = await conn.fetchrow(
                    "SELECT * FROM runs WHERE trigger_event_id = $1", trigger_event_id
                )
                return self._row_to_run(row)
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Creating run for {workflow_id} failed: {e}") from e
        finally:
            await conn.close()
        return run

    async def complete_run(
        self,
        run_id: str,
        status: RunStatus,
        output: Any = None,
        error: Optional[str] = None,
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "UPDATE runs SET status = $1, completed_at = $2, output = $3, error = $4 WHERE id = $5",
                RunStatus(status).value,
                utcnow(),
                None if output is None else json.dumps(output, default=str),
                error,
                run_id,
            )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Completing run {run_id} failed: {e}") from e
        finally:
            await conn.close()

    async def get_run(self, run_id: str) -> RunRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow("SELECT * FROM runs WHERE id = $1", run_id)
        finally:
            await conn.close()
        if not row:
            return None
        run = self._row_to_run(row)
        run.steps = await self.get_steps(run_id)
        return run

    async def list_runs(self, workflow_id: Optional[str] = None) -> list[RunRecord]:
        conn = await self._connect()
        try:
            if workflow_id is None:
                rows = await conn.fetch("SELECT * FROM runs ORDER BY started_at DESC")
            else:
                rows = await conn.fetch(
                    "SELECT * FROM runs WHERE workflow_id = $1 ORDER BY started_at DESC",
                    workflow_id,
                )
        finally:
            await conn.close()
        return [self._row_to_run(r) for r in rows]

    async def delete_runs(
        self, started_before: datetime, statuses: Iterable[RunStatus]
    ) -> int:
        values = [RunStatus(s).value for s in statuses]
        if not values:
            return 0
        conn = await self._connect()
        try:
            result = await conn.execute(
                "DELETE FROM runs WHERE started_at < $1 AND status = ANY($2::text[])",
                started_before,
                values,
            )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Deleting runs failed: {e}") from e
        finally:
            await conn.close()
        # status string looks like "DELETE 3"
        return int(result.split()[-1])

    # ------------------------------------------------------------------
    async def upsert_step(
        self,
        run_id: str,
        node_id: str,
        status: StepStatus,
        input: Any = None,
        output: Any = None,
        error: Optional[str] = None,
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO step_executions (run_id, node_id, status, input, output, error, completed_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (run_id, node_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    input = EXCLUDED.input,
                    output = EXCLUDED.output,
                    error = EXCLUDED.error,
                    completed_at = EXCLUDED.completed_at
                """,
                run_id,
                node_id,
                StepStatus(status).value,
                None if input is None else json.dumps(input, default=str),
                None if output is None else json.dumps(output, default=str),
                error,
                utcnow(),
            )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Saving step {node_id} of run {run_id} failed: {e}") from e
        finally:
            await conn.close()

    async def get_steps(self, run_id: str) -> list[StepRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT * FROM step_executions WHERE run_id = $1 ORDER BY completed_at",
                run_id,
            )
        finally:
            await conn.close()
        return [
            StepRecord(
                run_id=r["run_id"],
                node_id=r["node_id"],
                status=StepStatus(r["status"]),
                input=_json(r["input"]),
                output=_json(r["output"]),
                error=r["error"],
                completed_at=r["completed_at"],
            )
            for r in rows
        ]
