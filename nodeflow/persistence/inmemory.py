"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from ..contracts import Node, RunStatus, StepStatus, Workflow, utcnow
from .models import RunRecord, StepRecord
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflows and runs in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._runs: Dict[str, RunRecord] = {}
        self._runs_by_event: Dict[str, str] = {}
        self._steps: Dict[Tuple[str, str], StepRecord] = {}

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(self) -> list[Workflow]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]

    async def delete_workflow(self, workflow_id: str) -> None:
        self._workflows.pop(workflow_id, None)
        for run_id in [r.id for r in self._runs.values() if r.workflow_id == workflow_id]:
            self._drop_run(run_id)

    async def find_nodes(self, workflow_id: str, node_type: str) -> list[Node]:
        wf = self._workflows.get(workflow_id)
        if not wf:
            return []
        return [n.model_copy(deep=True) for n in wf.nodes if n.type == node_type]

    async def list_nodes_by_type(self, node_type: str) -> list[Node]:
        return [
            n.model_copy(deep=True)
            for wf in self._workflows.values()
            for n in wf.nodes
            if n.type == node_type
        ]

    # ------------------------------------------------------------------
    async def create_run(
        self, workflow_id: str, trigger_event_id: Optional[str] = None
    ) -> RunRecord:
        if trigger_event_id and trigger_event_id in self._runs_by_event:
            return self._runs[self._runs_by_event[trigger_event_id]].model_copy()
        run = RunRecord(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            trigger_event_id=trigger_event_id,
        )
        self._runs[run.id] = run
        if trigger_event_id:
            self._runs_by_event[trigger_event_id] = run.id
        return run.model_copy()

    async def complete_run(
        self,
        run_id: str,
        status: RunStatus,
        output: Any = None,
        error: Optional[str] = None,
    ) -> None:
        run = self._runs.get(run_id)
        if run:
            run.status = status
            run.completed_at = utcnow()
            run.output = output
            run.error = error

    async def get_run(self, run_id: str) -> RunRecord | None:
        run = self._runs.get(run_id)
        if not run:
            return None
        return run.model_copy(update={"steps": await self.get_steps(run_id)})

    async def list_runs(self, workflow_id: Optional[str] = None) -> list[RunRecord]:
        runs = [
            r.model_copy()
            for r in self._runs.values()
            if workflow_id is None or r.workflow_id == workflow_id
        ]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)

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
        self._steps[(run_id, node_id)] = StepRecord(
            run_id=run_id,
            node_id=node_id,
            status=status,
            input=input,
            output=output,
            error=error,
        )

    async def get_steps(self, run_id: str) -> list[StepRecord]:
        return [s.model_copy() for (rid, _), s in self._steps.items() if rid == run_id]

    async def delete_runs(
        self, started_before: datetime, statuses: Iterable[RunStatus]
    ) -> int:
        wanted = set(statuses)
        doomed = [
            r.id
            for r in self._runs.values()
            if r.status in wanted and r.started_at < started_before
        ]
        for run_id in doomed:
            self._drop_run(run_id)
        return len(doomed)

    def _drop_run(self, run_id: str) -> None:
        run = self._runs.pop(run_id, None)
        if run and run.trigger_event_id:
            self._runs_by_event.pop(run.trigger_event_id, None)
        for key in [k for k in self._steps if k[0] == run_id]:
            del self._steps[key]
