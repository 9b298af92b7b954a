"""Worker that executes run requests received over a transport."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from .contracts import RUN_REQUEST_EVENT, RUN_REQUEST_TOPIC, RunResult, WorkflowEvent
from .errors import NodeflowError, PersistenceError
from .execute import RunCoordinator
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class RunWorker:
    """Consume ``workflows/execute.workflow`` events and run them."""

    def __init__(
        self,
        transport: BaseTransport,
        coordinator: RunCoordinator,
        topic: str = RUN_REQUEST_TOPIC,
    ) -> None:
        self._transport = transport
        self._coordinator = coordinator
        self._topic = topic

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Start listening for run requests on the configured topic."""
        logger.info(f"Worker listening on {self._topic}")
        async for raw_message, event in self._transport.subscribe(
            self._topic, lifespan=lifespan
        ):
            try:
                await self.handle(event)
            except PersistenceError as e:
                logger.error(f"Requeueing run request {event.event_id}: {e}")
                await self._transport.nack(raw_message, requeue=True)
                continue
            await self._transport.ack(raw_message)

    async def handle(self, event: WorkflowEvent) -> Optional[RunResult]:
        """Run one request.

        Run failures, expected or not, are logged and swallowed so one bad
        request never stops the worker. A ``PersistenceError`` is raised
        so that ``start`` can requeue the request; replaying it is safe because
        runs are keyed by the event id.
        """
        if event.name != RUN_REQUEST_EVENT:
            logger.warning(f"Ignoring event {event.event_id} with name {event.name}")
            return None
        try:
            trigger = event.to_trigger()
        except (ValueError, ValidationError) as e:
            logger.error(f"Rejecting malformed run request {event.event_id}: {e}")
            return None

        try:
            result = await self._coordinator.run(trigger)
        except PersistenceError:
            raise
        except NodeflowError as e:
            # node failures are already recorded on the run
            logger.error(f"Run for workflow {trigger.workflow_id} failed: {e}")
            return None
        except Exception:
            logger.exception(
                f"Unexpected error running workflow {trigger.workflow_id} "
                f"for event {event.event_id}"
            )
            return None

        return result

