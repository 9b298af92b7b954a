"""Shared helpers for building workflow graphs in tests."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Tuple

import pytest

import nodeflow.persistence as persistence
from nodeflow.config import NodeflowConfig
from nodeflow.contracts import Connection, Node, Workflow
from nodeflow.dispatch import default_registry
from nodeflow.execute import RunCoordinator
from nodeflow.nodes import ExecutionContext, NodeExecutor
from nodeflow.persistence import InMemoryWorkflowRepository


def build_workflow(
    workflow_id: str,
    nodes: Iterable[Tuple[str, str, Dict[str, Any]]],
    edges: Iterable[Tuple[str, str, str]] = (),
    user_id: str = "user-1",
) -> Workflow:
    """``nodes`` are ``(id, type, data)`` and ``edges`` ``(from, handle, to)``.

    Node names are derived from ids: ``send_email`` becomes ``Send Email``.
    """
    return Workflow(
        id=workflow_id,
        name=workflow_id,
        user_id=user_id,
        nodes=[
            Node(
                id=node_id,
                workflow_id=workflow_id,
                type=node_type,
                name=node_id.replace("_", " ").title(),
                data=data,
            )
            for node_id, node_type, data in nodes
        ],
        connections=[
            Connection(
                id=f"{src}-{handle}-{dst}",
                workflow_id=workflow_id,
                from_node_id=src,
                from_output=handle,
                to_node_id=dst,
            )
            for src, handle, dst in edges
        ],
    )


class RecordingExecutor(NodeExecutor):
    """Returns ``{"echo": data}`` and remembers every call."""

    node_type = "RECORD"

    def __init__(self) -> None:
        self.calls: list[ExecutionContext] = []

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        self.calls.append(ctx)
        return {"echo": ctx.data}

    @property
    def node_ids(self) -> list[str]:
        return [c.node_id for c in self.calls]


class FailingExecutor(NodeExecutor):
    node_type = "FAIL"

    def __init__(self) -> None:
        self.attempts = 0

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        self.attempts += 1
        raise RuntimeError(ctx.data.get("message") or "boom")


@pytest.fixture
def recorder() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def failing() -> FailingExecutor:
    return FailingExecutor()


@pytest.fixture
def repo() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def make_coordinator(repo, recorder, failing):
    """Build a coordinator over ``repo`` with the test executors registered."""

    def _make(
        config: NodeflowConfig | None = None, executors=None, **kwargs
    ) -> RunCoordinator:
        registry = default_registry({"RECORD": recorder, "FAIL": failing, **(executors or {})})
        return RunCoordinator(
            repository=repo,
            registry=registry,
            config=config or NodeflowConfig(),
            **kwargs,
        )

    return _make


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """Keep tests away from the developer's config and cached repositories."""
    monkeypatch.setenv("NODEFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("NODEFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("NODEFLOW_TRANSPORT", raising=False)
    persistence.reset_repository()
    yield
    persistence.reset_repository()


@pytest.fixture
def workflow_builder():
    return build_workflow
