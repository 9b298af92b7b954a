"""Error taxonomy for nodeflow runs."""

from __future__ import annotations

from typing import Iterable, List, Optional


class NodeflowError(Exception):
    """Base class for engine errors."""


class CycleError(NodeflowError):
    """The workflow graph is not a DAG."""

    def __init__(self, node_ids: Iterable[str]):
        self.node_ids = sorted(node_ids)
        super().__init__(f"Workflow contains a cycle through nodes: {', '.join(self.node_ids)}")


class UnknownNodeTypeError(NodeflowError):
    def __init__(self, node_type: str):
        self.node_type = node_type
        super().__init__(f"No executor found for node type: {node_type}")


class WorkflowNotFoundError(NodeflowError):
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} not found")


class ExpressionResolutionError(NodeflowError):
    """A single ``{{ path }}`` reference could not be resolved."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        super().__init__(f"Cannot resolve '{expression}': {reason}")


class NodeExecutionError(NodeflowError):
    """A node's executor raised."""

    def __init__(
        self,
        node_id: str,
        node_name: str,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        self.node_id = node_id
        self.node_name = node_name
        self.message = message
        self.cause = cause
        super().__init__(f"Node '{node_name}' ({node_id}) failed: {message}")


class PersistenceError(NodeflowError):
    """A repository backend failed to read or write."""


class WorkflowRunError(NodeflowError):
    """The run failed because one or more node failures propagated."""

    def __init__(
        self,
        workflow_id: str,
        run_id: Optional[str],
        failures: List[NodeExecutionError],
    ):
        self.workflow_id = workflow_id
        self.run_id = run_id
        self.failures = failures
        super().__init__("; ".join(str(f) for f in failures) or "Workflow run failed")
