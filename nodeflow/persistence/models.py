"""Data models for persisted run state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import RunStatus, StepStatus, utcnow


class StepRecord(BaseModel):
    """Record of one node's execution within one run."""

    run_id: str
    node_id: str
    status: StepStatus
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    completed_at: datetime = Field(default_factory=utcnow)


class RunRecord(BaseModel):
    """Persisted run (execution) of a workflow."""

    id: str
    workflow_id: str
    trigger_event_id: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    output: Any = None
    error: Optional[str] = None
    steps: list[StepRecord] = Field(default_factory=list)
