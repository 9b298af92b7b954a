"""Command line interface for nodeflow."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from .config import load_config
from .contracts import RUN_REQUEST_TOPIC, TriggerEvent, WorkflowEvent
from .definitions import load_workflow_file
from .errors import NodeflowError
from .execute import RunCoordinator
from .persistence import get_repository
from .scheduler import CronScheduler, cleanup_execution_logs
from .transports import get_transport
from .transports.redis import RedisTransport
from .worker import RunWorker

app = typer.Typer(help="CLI for nodeflow workflows")

workflow_app = typer.Typer(help="Commands for managing workflows")
runs_app = typer.Typer(help="Commands for inspecting runs")

app.add_typer(workflow_app, name="workflow")
app.add_typer(runs_app, name="runs")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Override the configured log level"
    ),
) -> None:
    """nodeflow CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=(log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_data(data: Optional[str]) -> Dict[str, Any]:
    if not data:
        return {}
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON for --data: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(parsed, dict):
        typer.secho("--data must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return parsed


@workflow_app.command("import")
def workflow_import(path: Path) -> None:
    """
    Store a workflow definition from a YAML or JSON file.

    Example:
        nodeflow workflow import ./guides/order_routing.yaml
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        workflow = load_workflow_file(path)
    except (ValueError, KeyError) as exc:
        typer.secho(f"Invalid workflow definition: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    coordinator = RunCoordinator(repository=get_repository())
    try:
        coordinator.plan(workflow)
    except NodeflowError as exc:
        typer.secho(f"Invalid workflow: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    asyncio.run(coordinator.repository.save_workflow(workflow))
    typer.echo(
        f"Imported workflow {workflow.id} ({len(workflow.nodes)} nodes, "
        f"{len(workflow.connections)} connections)"
    )


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List stored workflows.

    Example:
        nodeflow workflow list
        # Output: order-routing    Order routing    4 nodes
    """
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.name}\t{len(wf.nodes)} nodes")


@workflow_app.command("run")
def workflow_run(
    workflow_id: str,
    data: Optional[str] = typer.Option(None, help="JSON object passed as trigger data"),
) -> None:
    """
    Execute a workflow in this process and print its result.

    Example:
        nodeflow workflow run order-routing --data '{"amount": 250}'
    """
    coordinator = RunCoordinator(repository=get_repository())
    event = TriggerEvent(workflow_id=workflow_id, initial_data=_parse_data(data))
    try:
        result = asyncio.run(coordinator.run(event))
    except NodeflowError as exc:
        typer.secho(f"Run failed: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(result.summary(), indent=2, default=str))


@workflow_app.command("trigger")
def workflow_trigger(
    workflow_id: str,
    data: Optional[str] = typer.Option(None, help="JSON object passed as trigger data"),
) -> None:
    """
    Publish a run request for a worker to pick up.

    Example:
        nodeflow workflow trigger order-routing --data '{"amount": 250}'
        nodeflow worker
    """
    transport = get_transport()
    event = WorkflowEvent.run_request(workflow_id, _parse_data(data))

    async def _publish() -> None:
        await transport.connect()
        try:
            await transport.publish(RUN_REQUEST_TOPIC, event)
        finally:
            await transport.disconnect()

    asyncio.run(_publish())
    typer.echo(f"Run requested for {workflow_id} (event {event.event_id})")


@runs_app.command("list")
def runs_list(workflow_id: Optional[str] = typer.Argument(None)) -> None:
    """
    List runs, newest first.

    Example:
        nodeflow runs list order-routing
    """
    repo = get_repository()
    runs = asyncio.run(repo.list_runs(workflow_id))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.id}\t{run.workflow_id}\t{run.status.value}\t{run.started_at}")


@runs_app.command("show")
def runs_show(run_id: str) -> None:
    """
    Show a run and its step records.

    Example:
        nodeflow runs show 1f0c...
        # Output: Run 1f0c... (order-routing): SUCCESS
        #         - trigger: SUCCESS
        #         - check_amount: SUCCESS
    """
    repo = get_repository()
    run = asyncio.run(repo.get_run(run_id))
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run.id} ({run.workflow_id}): {run.status.value}")
    if run.error:
        typer.echo(f"Error: {run.error}")
    for step in run.steps:
        typer.echo(
            f"- {step.node_id}: {step.status.value}"
            + (f" ({step.error})" if step.error else "")
        )


@app.command("worker")
def worker(
    lifespan: Optional[float] = typer.Option(
        None, help="Worker timeout in seconds (default: run indefinitely)"
    ),
    requeue_unacked: bool = typer.Option(
        False,
        "--requeue-unacked",
        help="Redeliver run requests left unacknowledged by a crashed worker (redis only)",
    ),
) -> None:
    """Run a worker that executes published run requests."""
    config = load_config()
    transport = get_transport(config=config)
    coordinator = RunCoordinator(repository=get_repository(), config=config)

    async def _serve() -> None:
        await transport.connect()
        if requeue_unacked and isinstance(transport, RedisTransport):
            await transport.requeue_unacked(RUN_REQUEST_TOPIC)
        try:
            await RunWorker(transport, coordinator).start(lifespan=lifespan)
        finally:
            await transport.disconnect()

    typer.echo("Starting worker")
    asyncio.run(_serve())


@app.command("scheduler")
def scheduler(
    lifespan: Optional[float] = typer.Option(
        None, help="Scheduler timeout in seconds (default: run indefinitely)"
    ),
) -> None:
    """Publish run requests for scheduled workflows every tick."""
    config = load_config()
    transport = get_transport(config=config)
    cron = CronScheduler(get_repository(), transport, config=config)

    async def _serve() -> None:
        await transport.connect()
        try:
            await cron.run_forever(lifespan=lifespan)
        finally:
            await transport.disconnect()

    typer.echo("Starting scheduler")
    asyncio.run(_serve())


@app.command("cleanup")
def cleanup() -> None:
    """Delete old finished runs and stuck runs."""
    config = load_config()
    counts = asyncio.run(
        cleanup_execution_logs(get_repository(), retention=config.retention)
    )
    typer.echo(
        f"Deleted {counts['deletedCompleted']} finished and "
        f"{counts['deletedZombies']} stuck runs"
    )


if __name__ == "__main__":
    app()
