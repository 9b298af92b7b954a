"""Repository tests shared by the in-memory and SQLite backends."""

from datetime import timedelta

import pytest

from nodeflow.contracts import RunStatus, StepStatus, utcnow
from nodeflow.persistence import InMemoryWorkflowRepository, SQLiteWorkflowRepository


@pytest.fixture(params=["inmemory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteWorkflowRepository(tmp_path / "nodeflow.db")
    return InMemoryWorkflowRepository()


@pytest.fixture
def order_workflow(workflow_builder):
    return workflow_builder(
        "orders",
        [
            ("trigger", "MANUAL_TRIGGER", {}),
            ("check", "CONDITION", {"variable": "{{trigger.amount}}", "operator": "greater_than", "value": 100}),
            ("nightly", "SCHEDULE", {"cronExpression": "0 2 * * *"}),
        ],
        [("trigger", "main", "check")],
    )


@pytest.mark.asyncio
async def test_workflow_roundtrip(repository, order_workflow):
    await repository.save_workflow(order_workflow)

    wf = await repository.get_workflow("orders")
    assert wf == order_workflow
    assert [n.id for n in wf.nodes] == ["trigger", "check", "nightly"]
    assert wf.connections[0].from_output == "main"
    assert await repository.get_workflow("missing") is None
    assert [w.id for w in await repository.list_workflows()] == ["orders"]


@pytest.mark.asyncio
async def test_save_workflow_replaces_graph(repository, order_workflow):
    await repository.save_workflow(order_workflow)
    order_workflow.nodes = order_workflow.nodes[:1]
    order_workflow.connections = []
    order_workflow.name = "Orders v2"
    await repository.save_workflow(order_workflow)

    wf = await repository.get_workflow("orders")
    assert wf.name == "Orders v2"
    assert [n.id for n in wf.nodes] == ["trigger"]
    assert wf.connections == []


@pytest.mark.asyncio
async def test_find_nodes_by_type(repository, order_workflow, workflow_builder):
    await repository.save_workflow(order_workflow)
    await repository.save_workflow(
        workflow_builder("reports", [("weekly", "SCHEDULE", {"cronExpression": "0 8 * * 1"})])
    )

    assert [n.id for n in await repository.find_nodes("orders", "CONDITION")] == ["check"]
    assert await repository.find_nodes("orders", "WAIT") == []
    scheduled = await repository.list_nodes_by_type("SCHEDULE")
    assert sorted((n.workflow_id, n.id) for n in scheduled) == [
        ("orders", "nightly"),
        ("reports", "weekly"),
    ]


@pytest.mark.asyncio
async def test_run_lifecycle(repository, order_workflow):
    await repository.save_workflow(order_workflow)
    run = await repository.create_run("orders", "evt-1")
    assert run.status == RunStatus.RUNNING

    await repository.upsert_step(run.id, "trigger", StepStatus.SUCCESS, input={}, output={"amount": 5})
    await repository.complete_run(run.id, RunStatus.SUCCESS, output={"trigger": {"amount": 5}})

    stored = await repository.get_run(run.id)
    assert stored.status == RunStatus.SUCCESS
    assert stored.completed_at is not None
    assert stored.output == {"trigger": {"amount": 5}}
    assert [s.node_id for s in stored.steps] == ["trigger"]
    assert stored.steps[0].output == {"amount": 5}

    assert [r.id for r in await repository.list_runs("orders")] == [run.id]
    assert await repository.list_runs("other") == []
    assert await repository.get_run("missing") is None


@pytest.mark.asyncio
async def test_create_run_is_idempotent_by_trigger_event(repository):
    first = await repository.create_run("orders", "evt-1")
    again = await repository.create_run("orders", "evt-1")
    other = await repository.create_run("orders", "evt-2")

    assert again.id == first.id
    assert other.id != first.id
    assert len(await repository.list_runs()) == 2


@pytest.mark.asyncio
async def test_upsert_step_overwrites(repository):
    run = await repository.create_run("orders", "evt-1")
    await repository.upsert_step(run.id, "n1", StepStatus.FAILED, input={"a": 1}, error="boom")
    await repository.upsert_step(run.id, "n1", StepStatus.SUCCESS, input={"a": 1}, output={"ok": True})

    steps = await repository.get_steps(run.id)
    assert len(steps) == 1
    assert steps[0].status == StepStatus.SUCCESS
    assert steps[0].output == {"ok": True}
    assert steps[0].error is None


@pytest.mark.asyncio
async def test_delete_runs_by_age_and_status(repository):
    finished = await repository.create_run("orders", "evt-1")
    await repository.complete_run(finished.id, RunStatus.SUCCESS)
    running = await repository.create_run("orders", "evt-2")
    await repository.upsert_step(finished.id, "n1", StepStatus.SUCCESS)

    future = utcnow() + timedelta(minutes=1)
    assert await repository.delete_runs(future, [RunStatus.SUCCESS, RunStatus.FAILED]) == 1
    assert await repository.get_run(finished.id) is None
    assert await repository.get_steps(finished.id) == []
    assert await repository.get_run(running.id) is not None

    past = utcnow() - timedelta(days=1)
    assert await repository.delete_runs(past, [RunStatus.RUNNING]) == 0
    assert await repository.delete_runs(future, []) == 0


@pytest.mark.asyncio
async def test_delete_workflow_removes_runs(repository, order_workflow):
    await repository.save_workflow(order_workflow)
    run = await repository.create_run("orders", "evt-1")
    await repository.upsert_step(run.id, "trigger", StepStatus.SUCCESS)

    await repository.delete_workflow("orders")
    assert await repository.get_workflow("orders") is None
    assert await repository.get_run(run.id) is None
    assert await repository.find_nodes("orders", "CONDITION") == []


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path, order_workflow):
    path = tmp_path / "nodeflow.db"
    repo = SQLiteWorkflowRepository(path)
    await repo.save_workflow(order_workflow)
    run = await repo.create_run("orders", "evt-1")

    reopened = SQLiteWorkflowRepository(path)
    assert (await reopened.get_workflow("orders")).nodes[1].data["value"] == 100
    assert (await reopened.create_run("orders", "evt-1")).id == run.id
