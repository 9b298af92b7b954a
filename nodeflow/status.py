"""Best-effort node status notifications."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from .contracts import STATUS_TOPIC, WorkflowEvent
from .transports import BaseTransport

logger = logging.getLogger(__name__)

EmitStatus = Callable[..., Awaitable[None]]


class StatusPublisher:
    """Publish node progress events without ever failing the caller.

    With no transport configured, events are only logged at DEBUG level.
    """

    def __init__(
        self, transport: Optional[BaseTransport] = None, topic: str = STATUS_TOPIC
    ) -> None:
        self._transport = transport
        self._topic = topic

    async def publish(
        self,
        run_id: str,
        node_id: str,
        status: str,
        message: Optional[str] = None,
    ) -> None:
        logger.debug(f"Node {node_id} in run {run_id} -> {status}")
        if self._transport is None:
            return
        event = WorkflowEvent(
            name="node.status",
            data={"runId": run_id, "nodeId": node_id, "status": status, "message": message},
        )
        try:
            await self._transport.publish(self._topic, event)
        except Exception as e:
            logger.error(f"Status publish failed for node {node_id}: {e}")

    def bind(self, run_id: str, node_id: str) -> EmitStatus:
        """Return an ``emit_status(status, message=None)`` callable for one node."""

        async def emit_status(status: str, message: Optional[str] = None) -> None:
            await self.publish(run_id, node_id, status, message)

        return emit_status
