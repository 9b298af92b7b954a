"""Core data contracts for the nodeflow workflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

RUN_REQUEST_EVENT = "workflows/execute.workflow"
RUN_REQUEST_TOPIC = "workflows.execute"
STATUS_TOPIC = "workflows.status"

BRANCH_KEY = "__branch"
ERROR_HANDLED_KEY = "__errorHandled"
RESERVED_KEYS = frozenset({BRANCH_KEY, ERROR_HANDLED_KEY})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NodeType(str, Enum):
    """Node type tags understood by the built-in executor registry."""

    MANUAL_TRIGGER = "MANUAL_TRIGGER"
    WEBHOOK = "WEBHOOK"
    SCHEDULE = "SCHEDULE"
    ERROR_TRIGGER = "ERROR_TRIGGER"
    CONDITION = "CONDITION"
    SWITCH = "SWITCH"
    SET_FIELDS = "SET_FIELDS"
    MERGE = "MERGE"
    WAIT = "WAIT"


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class StepStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class NodeState(str, Enum):
    """Lifecycle of a single node within one run."""

    PENDING = "PENDING"
    SKIPPED = "SKIPPED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    RECOVERED = "RECOVERED"
    UNRECOVERED = "UNRECOVERED"


class Node(BaseModel):
    """A typed unit of work in a workflow graph."""

    id: str
    workflow_id: str
    type: str
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def continue_on_failure(self) -> bool:
        return bool(self.data.get("continueOnFailure"))


class Connection(BaseModel):
    """Directed edge between two named ports."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    from_node_id: str
    from_output: str = "main"
    to_node_id: str
    to_input: str = "main"


class Workflow(BaseModel):
    """Snapshot of a stored workflow graph."""

    id: str
    name: str = ""
    user_id: Optional[str] = None
    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)

    def node(self, node_id: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.id == node_id), None)


class TriggerEvent(BaseModel):
    """Inbound request to run a workflow once."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    initial_data: Dict[str, Any] = Field(default_factory=dict)


class WorkflowEvent(BaseModel):
    """Envelope exchanged over a transport."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowEvent":
        return cls.model_validate_json(data)

    @classmethod
    def run_request(
        cls,
        workflow_id: str,
        initial_data: Optional[Dict[str, Any]] = None,
        event_id: Optional[str] = None,
    ) -> "WorkflowEvent":
        """Build a ``workflows/execute.workflow`` request."""
        event = cls(
            name=RUN_REQUEST_EVENT,
            data={"workflowId": workflow_id, "initialData": initial_data or {}},
        )
        if event_id:
            event.event_id = event_id
        return event

    def to_trigger(self) -> TriggerEvent:
        """Convert a run request envelope into a ``TriggerEvent``."""
        workflow_id = self.data.get("workflowId")
        if not workflow_id:
            raise ValueError(f"Event {self.event_id} does not name a workflow")
        return TriggerEvent(
            event_id=self.event_id,
            workflow_id=workflow_id,
            initial_data=self.data.get("initialData") or {},
        )


class RunResult(BaseModel):
    """Outcome of a successful run: ``{workflowId, result}`` plus bookkeeping."""

    run_id: str
    workflow_id: str
    status: RunStatus
    result: Dict[str, Any] = Field(default_factory=dict)
    node_states: Dict[str, NodeState] = Field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        """Public ``{workflowId, result}`` shape of a finished run."""
        return {"workflowId": self.workflow_id, "result": self.result}
