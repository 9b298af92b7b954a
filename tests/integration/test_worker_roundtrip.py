import pytest

from nodeflow.contracts import RUN_REQUEST_TOPIC, RunStatus, WorkflowEvent
from nodeflow.errors import PersistenceError
from nodeflow.transports import InMemoryTransport
from nodeflow.worker import RunWorker


@pytest.fixture
def greeting_workflow(workflow_builder):
    return workflow_builder(
        "greeting",
        [("t", "MANUAL_TRIGGER", {}), ("hello", "RECORD", {"text": "Hello {{trigger.name}}"})],
        [("t", "main", "hello")],
    )


@pytest.mark.asyncio
async def test_worker_executes_published_run_request(repo, recorder, make_coordinator, greeting_workflow):
    await repo.save_workflow(greeting_workflow)
    transport = InMemoryTransport()
    await transport.publish(
        RUN_REQUEST_TOPIC,
        WorkflowEvent.run_request("greeting", {"name": "Ada"}, event_id="evt-1"),
    )

    await RunWorker(transport, make_coordinator()).start(lifespan=0.3)

    assert transport.pending(RUN_REQUEST_TOPIC) == []
    assert recorder.calls[0].data == {"text": "Hello Ada"}
    [run] = await repo.list_runs("greeting")
    assert run.trigger_event_id == "evt-1"
    assert run.status == RunStatus.SUCCESS


@pytest.mark.asyncio
async def test_duplicate_request_reuses_the_run(repo, make_coordinator, greeting_workflow):
    await repo.save_workflow(greeting_workflow)
    worker = RunWorker(InMemoryTransport(), make_coordinator())
    event = WorkflowEvent.run_request("greeting", event_id="evt-dup")

    first = await worker.handle(event)
    second = await worker.handle(event)

    assert first.run_id == second.run_id
    assert len(await repo.list_runs()) == 1


@pytest.mark.asyncio
async def test_worker_ignores_unrelated_and_malformed_events(repo, recorder, make_coordinator):
    worker = RunWorker(InMemoryTransport(), make_coordinator())

    assert await worker.handle(WorkflowEvent(name="node.status", data={})) is None
    assert await worker.handle(WorkflowEvent.run_request("")) is None
    assert await worker.handle(WorkflowEvent.run_request("missing")) is None
    assert recorder.calls == []
    assert await repo.list_runs() == []


@pytest.mark.asyncio
async def test_worker_survives_failed_runs(repo, make_coordinator, workflow_builder):
    await repo.save_workflow(
        workflow_builder("broken", [("t", "MANUAL_TRIGGER", {}), ("x", "FAIL", {})], [("t", "main", "x")])
    )
    transport = InMemoryTransport()
    await transport.publish(RUN_REQUEST_TOPIC, WorkflowEvent.run_request("broken"))
    await transport.publish(RUN_REQUEST_TOPIC, WorkflowEvent.run_request("broken"))

    await RunWorker(transport, make_coordinator()).start(lifespan=0.3)

    runs = await repo.list_runs("broken")
    assert [r.status for r in runs] == [RunStatus.FAILED, RunStatus.FAILED]


@pytest.mark.asyncio
async def test_storage_outage_requeues_the_request(repo, recorder, make_coordinator, greeting_workflow, monkeypatch):
    await repo.save_workflow(greeting_workflow)
    real_create_run = repo.create_run
    outages = []

    async def flaky_create_run(workflow_id, trigger_event_id=None):
        if not outages:
            outages.append(trigger_event_id)
            raise PersistenceError("database unavailable")
        return await real_create_run(workflow_id, trigger_event_id)

    monkeypatch.setattr(repo, "create_run", flaky_create_run)
    transport = InMemoryTransport(poll_interval=0.01)
    await transport.publish(
        RUN_REQUEST_TOPIC, WorkflowEvent.run_request("greeting", {"name": "Bo"}, event_id="evt-retry")
    )

    await RunWorker(transport, make_coordinator()).start(lifespan=0.3)

    assert outages == ["evt-retry"]
    [run] = await repo.list_runs()
    assert run.trigger_event_id == "evt-retry"
    assert recorder.calls[0].data == {"text": "Hello Bo"}


@pytest.mark.asyncio
async def test_unexpected_errors_do_not_stop_the_worker(repo, recorder, make_coordinator, greeting_workflow, monkeypatch):
    await repo.save_workflow(greeting_workflow)
    coordinator = make_coordinator()
    real_run = coordinator.run

    async def crashing_run(trigger):
        if trigger.initial_data.get("name") == "crash":
            raise OSError("disk on fire")
        return await real_run(trigger)

    monkeypatch.setattr(coordinator, "run", crashing_run)
    transport = InMemoryTransport(poll_interval=0.01)
    await transport.publish(RUN_REQUEST_TOPIC, WorkflowEvent.run_request("greeting", {"name": "crash"}, event_id="evt-bad"))
    await transport.publish(RUN_REQUEST_TOPIC, WorkflowEvent.run_request("greeting", {"name": "Cy"}, event_id="evt-good"))

    await RunWorker(transport, coordinator).start(lifespan=0.3)

    assert transport.pending(RUN_REQUEST_TOPIC) == []
    [run] = await repo.list_runs("greeting")
    assert run.trigger_event_id == "evt-good"
    assert recorder.calls[0].data == {"text": "Hello Cy"}


@pytest.mark.asyncio
async def test_bad_date_in_one_request_leaves_the_next_one_running(repo, recorder, make_coordinator, workflow_builder):
    await repo.save_workflow(
        workflow_builder(
            "stamped",
            [("t", "MANUAL_TRIGGER", {}), ("log", "RECORD", {"day": "{{ trigger.ts | date }}"})],
            [("t", "main", "log")],
        )
    )
    transport = InMemoryTransport(poll_interval=0.01)
    await transport.publish(RUN_REQUEST_TOPIC, WorkflowEvent.run_request("stamped", {"ts": 10**20}, event_id="evt-1"))
    await transport.publish(RUN_REQUEST_TOPIC, WorkflowEvent.run_request("stamped", {"ts": 0}, event_id="evt-2"))

    await RunWorker(transport, make_coordinator()).start(lifespan=0.3)

    runs = await repo.list_runs("stamped")
    assert sorted(r.trigger_event_id for r in runs) == ["evt-1", "evt-2"]
    assert [c.data["day"] for c in recorder.calls] == [str(10**20), "1970-01-01"]
