"""Trigger node executors."""

from __future__ import annotations

from typing import Any, Dict

from ..contracts import NodeType, utcnow
from .base import ExecutionContext, NodeExecutor


class ManualTriggerExecutor(NodeExecutor):
    """Expose the payload that started the run."""

    node_type = NodeType.MANUAL_TRIGGER.value

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        return dict(ctx.namespace.get("trigger") or {})


class WebhookTriggerExecutor(ManualTriggerExecutor):
    node_type = NodeType.WEBHOOK.value


class ScheduleTriggerExecutor(NodeExecutor):
    node_type = NodeType.SCHEDULE.value

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        initial = ctx.namespace.get("trigger") or {}
        return {
            "trigger": {
                "type": "schedule",
                "cronExpression": ctx.data.get("cronExpression"),
                "timezone": ctx.data.get("timezone"),
                "triggeredAt": initial.get("triggeredAt") or utcnow().isoformat(),
            }
        }


class ErrorTriggerExecutor(NodeExecutor):
    """Entry point of an error-handling subgraph.

    Only reached through failure rerouting, at which point the failure
    details are available under ``error`` in the namespace.
    """

    node_type = NodeType.ERROR_TRIGGER.value

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        error = ctx.namespace.get("error") or {
            "message": "Unknown error",
            "nodeId": "unknown",
            "timestamp": utcnow().isoformat(),
        }
        return {"handled": True, "error": error}
