"""Example running a workflow in-process with a custom executor."""

import asyncio
import logging
from typing import Any, Dict

from nodeflow import (
    Connection,
    ExecutionContext,
    Node,
    NodeExecutor,
    RunCoordinator,
    StatusPublisher,
    TriggerEvent,
    default_registry,
    get_repository,
    load_workflow_file,
)
from nodeflow.transports import InMemoryTransport


class GreetExecutor(NodeExecutor):
    node_type = "GREET"

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        await ctx.emit_status("loading", f"greeting {ctx.data.get('name')}")
        return {"greeting": f"Hello, {ctx.data.get('name')}!"}


async def main():
    logging.basicConfig(level=logging.INFO)

    repository = get_repository()
    workflow = load_workflow_file("guides/order_routing.yaml")
    workflow.nodes.append(
        Node(id="greet", workflow_id=workflow.id, type="GREET", name="Greet", data={"name": "{{trigger.customer}}"})
    )
    workflow.connections.append(
        Connection(workflow_id=workflow.id, from_node_id="trigger", to_node_id="greet")
    )
    await repository.save_workflow(workflow)

    status_transport = InMemoryTransport()
    coordinator = RunCoordinator(
        repository=repository,
        registry=default_registry({"GREET": GreetExecutor()}),
        status=StatusPublisher(status_transport),
    )

    result = await coordinator.run(
        TriggerEvent(workflow_id=workflow.id, initial_data={"amount": 250, "customer": "Ada"})
    )
    print(result.result["order"], result.result["greeting"])

    run = await repository.get_run(result.run_id)
    for step in run.steps:
        print(f"{step.node_id}: {step.status.value}")


if __name__ == "__main__":
    asyncio.run(main())
