"""Repository abstraction for workflow and run persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from ..contracts import Node, RunStatus, StepStatus, Workflow
from .models import RunRecord, StepRecord


class WorkflowRepository(Protocol):
    """Protocol for persistence backends.

    Backends raise :class:`~nodeflow.errors.PersistenceError` when the
    underlying store fails.
    """

    async def save_workflow(self, workflow: Workflow) -> None:
        """Create or replace a workflow together with its nodes and connections."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow graph snapshot by id."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all stored workflows."""

    async def delete_workflow(self, workflow_id: str) -> None:
        """Delete a workflow, its graph and its runs."""

    async def find_nodes(self, workflow_id: str, node_type: str) -> list[Node]:
        """Nodes of ``node_type`` within one workflow."""

    async def list_nodes_by_type(self, node_type: str) -> list[Node]:
        """Nodes of ``node_type`` across all workflows."""

    async def create_run(
        self, workflow_id: str, trigger_event_id: Optional[str] = None
    ) -> RunRecord:
        """Create a RUNNING run; returns the existing run for a known trigger event."""

    async def complete_run(
        self,
        run_id: str,
        status: RunStatus,
        output: Any = None,
        error: Optional[str] = None,
    ) -> None:
        """Set the terminal status of a run."""

    async def get_run(self, run_id: str) -> RunRecord | None:
        """Retrieve a run including its step records."""

    async def list_runs(self, workflow_id: Optional[str] = None) -> list[RunRecord]:
        """Return runs, newest first, without their steps."""

    async def upsert_step(
        self,
        run_id: str,
        node_id: str,
        status: StepStatus,
        input: Any = None,
        output: Any = None,
        error: Optional[str] = None,
    ) -> None:
        """Insert or overwrite the step record for ``(run_id, node_id)``."""

    async def get_steps(self, run_id: str) -> list[StepRecord]:
        """Step records of one run."""

    async def delete_runs(
        self, started_before: datetime, statuses: Iterable[RunStatus]
    ) -> int:
        """Delete runs in ``statuses`` started before the cutoff; returns the count."""
