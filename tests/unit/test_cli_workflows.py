import asyncio
import json

from typer.testing import CliRunner

import nodeflow.cli as cli
import nodeflow.persistence as persistence
from nodeflow.cli import app
from nodeflow.contracts import RUN_REQUEST_TOPIC, RunStatus, StepStatus, WorkflowEvent
from nodeflow.persistence import InMemoryWorkflowRepository
from nodeflow.transports import InMemoryTransport

ORDER_ROUTING = """
id: order-routing
name: Order routing
nodes:
  - id: trigger
    type: MANUAL_TRIGGER
  - id: check_amount
    type: CONDITION
    data:
      variable: "{{trigger.amount}}"
      operator: greater_than
      value: 100
  - id: tag_large
    type: SET_FIELDS
    data:
      variableName: order
      fields:
        - key: size
          value: large
  - id: tag_small
    type: SET_FIELDS
    data:
      variableName: order
      fields:
        - key: size
          value: small
connections:
  - from: trigger
    to: check_amount
  - from: check_amount
    fromOutput: "true"
    to: tag_large
  - from: check_amount
    fromOutput: "false"
    to: tag_small
"""


def _setup_repo() -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    persistence._repository_instance = repo
    return repo


def _import(runner, tmp_path, text=ORDER_ROUTING):
    path = tmp_path / "workflow.yaml"
    path.write_text(text)
    return runner.invoke(app, ["workflow", "import", str(path)])


def test_import_and_list_workflows(tmp_path):
    repo = _setup_repo()
    runner = CliRunner()

    result = _import(runner, tmp_path)
    assert result.exit_code == 0, f"Import failed: {result.stdout}"
    assert "Imported workflow order-routing (4 nodes, 3 connections)" in result.stdout
    assert asyncio.run(repo.get_workflow("order-routing")) is not None

    result = runner.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0
    assert "order-routing\tOrder routing\t4 nodes" in result.stdout


def test_list_without_workflows():
    _setup_repo()
    result = CliRunner().invoke(app, ["workflow", "list"])
    assert result.exit_code == 0
    assert "No workflows found" in result.stdout


def test_import_rejects_cycles_and_missing_files(tmp_path):
    repo = _setup_repo()
    runner = CliRunner()
    cyclic = """
id: loop
nodes:
  - {id: a, type: SET_FIELDS, data: {fields: []}}
  - {id: b, type: SET_FIELDS, data: {fields: []}}
connections:
  - {from: a, to: b}
  - {from: b, to: a}
"""

    result = _import(runner, tmp_path, cyclic)
    assert result.exit_code == 1
    assert "Invalid workflow" in result.stdout
    assert asyncio.run(repo.get_workflow("loop")) is None

    result = runner.invoke(app, ["workflow", "import", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1
    assert "does not exist" in result.stdout

    result = _import(runner, tmp_path, "name: no id here\n")
    assert result.exit_code == 1
    assert "Invalid workflow definition" in result.stdout


def test_run_prints_result_and_records_run(tmp_path):
    repo = _setup_repo()
    runner = CliRunner()
    _import(runner, tmp_path)

    result = runner.invoke(
        app, ["workflow", "run", "order-routing", "--data", '{"amount": 250}']
    )
    assert result.exit_code == 0, f"Run failed: {result.stdout}"
    summary = json.loads(result.stdout[result.stdout.index("{\n"):])
    assert summary["workflowId"] == "order-routing"
    assert summary["result"]["order"] == {"size": "large"}

    [run] = asyncio.run(repo.list_runs("order-routing"))
    assert run.status == RunStatus.SUCCESS
    steps = {s.node_id: s.status for s in asyncio.run(repo.get_steps(run.id))}
    assert steps == {
        "trigger": StepStatus.SUCCESS,
        "check_amount": StepStatus.SUCCESS,
        "tag_large": StepStatus.SUCCESS,
    }


def test_run_rejects_bad_data_and_unknown_workflow():
    _setup_repo()
    runner = CliRunner()

    result = runner.invoke(app, ["workflow", "run", "order-routing", "--data", "[1, 2]"])
    assert result.exit_code == 1
    assert "--data must be a JSON object" in result.stdout

    result = runner.invoke(app, ["workflow", "run", "missing"])
    assert result.exit_code == 1
    assert "Run failed: Workflow missing not found" in result.stdout


def test_runs_list_and_show(tmp_path):
    repo = _setup_repo()
    runner = CliRunner()

    result = runner.invoke(app, ["runs", "list"])
    assert "No runs found" in result.stdout

    _import(runner, tmp_path)
    runner.invoke(app, ["workflow", "run", "order-routing", "--data", '{"amount": 3}'])
    [run] = asyncio.run(repo.list_runs())

    result = runner.invoke(app, ["runs", "list", "order-routing"])
    assert result.exit_code == 0
    assert run.id in result.stdout
    assert "SUCCESS" in result.stdout

    result = runner.invoke(app, ["runs", "show", run.id])
    assert result.exit_code == 0
    assert f"Run {run.id} (order-routing): SUCCESS" in result.stdout
    assert "- tag_small: SUCCESS" in result.stdout
    assert "tag_large" not in result.stdout

    result_missing = runner.invoke(app, ["runs", "show", "missing-id"])
    assert result_missing.exit_code == 1
    assert "Run not found" in result_missing.stdout


def test_runs_show_failed_run():
    repo = _setup_repo()
    run = asyncio.run(repo.create_run("wf"))
    asyncio.run(repo.upsert_step(run.id, "fetch", StepStatus.FAILED, input={}, error="timeout"))
    asyncio.run(repo.complete_run(run.id, RunStatus.FAILED, error="fetch broke"))

    result = CliRunner().invoke(app, ["runs", "show", run.id])
    assert "FAILED" in result.stdout
    assert "Error: fetch broke" in result.stdout
    assert "- fetch: FAILED (timeout)" in result.stdout


def test_trigger_publishes_run_request(monkeypatch):
    _setup_repo()
    transport = InMemoryTransport()
    monkeypatch.setattr(cli, "get_transport", lambda **kwargs: transport)

    result = CliRunner().invoke(
        app, ["workflow", "trigger", "order-routing", "--data", '{"amount": 7}']
    )
    assert result.exit_code == 0
    [event] = transport.pending(RUN_REQUEST_TOPIC)
    assert event.data == {"workflowId": "order-routing", "initialData": {"amount": 7}}
    assert event.event_id in result.stdout


def test_cleanup_reports_counts():
    _setup_repo()
    result = CliRunner().invoke(app, ["cleanup"])
    assert result.exit_code == 0
    assert "Deleted 0 finished and 0 stuck runs" in result.stdout


def test_worker_runs_queued_requests(tmp_path, monkeypatch):
    repo = _setup_repo()
    runner = CliRunner()
    _import(runner, tmp_path)
    transport = InMemoryTransport(poll_interval=0.01)
    asyncio.run(
        transport.publish(
            RUN_REQUEST_TOPIC,
            WorkflowEvent.run_request("order-routing", {"amount": 500}, event_id="evt-cli"),
        )
    )
    monkeypatch.setattr(cli, "get_transport", lambda **kwargs: transport)

    result = runner.invoke(app, ["worker", "--lifespan", "0.3"])
    assert result.exit_code == 0, f"Worker failed: {result.stdout}"
    [run] = asyncio.run(repo.list_runs("order-routing"))
    assert run.trigger_event_id == "evt-cli"
    assert run.output["order"] == {"size": "large"}
