"""nodeflow: level-scheduled workflow execution engine."""

from .contracts import (
    Connection,
    Node,
    NodeState,
    NodeType,
    RunResult,
    RunStatus,
    TriggerEvent,
    Workflow,
    WorkflowEvent,
)
from .config import NodeflowConfig, load_config
from .definitions import load_workflow_file, workflow_from_dict
from .dispatch import ExecutorRegistry, default_registry
from .durable import InMemoryStepRunner, StepRunner
from .execute import RunCoordinator
from .nodes import ExecutionContext, NodeExecutor
from .persistence import get_repository
from .scheduler import CronScheduler, cleanup_execution_logs
from .status import StatusPublisher
from .transports import get_transport
from .worker import RunWorker

__version__ = "0.1.0"
__all__ = [
    "Connection",
    "CronScheduler",
    "ExecutionContext",
    "ExecutorRegistry",
    "InMemoryStepRunner",
    "Node",
    "NodeExecutor",
    "NodeState",
    "NodeType",
    "NodeflowConfig",
    "RunCoordinator",
    "RunResult",
    "RunStatus",
    "RunWorker",
    "StatusPublisher",
    "StepRunner",
    "TriggerEvent",
    "Workflow",
    "WorkflowEvent",
    "cleanup_execution_logs",
    "default_registry",
    "get_repository",
    "get_transport",
    "load_config",
    "load_workflow_file",
    "workflow_from_dict",
]
