"""In-memory transport for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from ..contracts import WorkflowEvent
from .base import BaseTransport

# (topic, event) so that nack knows where to requeue
InMemoryMessage = Tuple[str, WorkflowEvent]


class InMemoryTransport(BaseTransport[InMemoryMessage]):
    """Per-topic FIFO queues living in this process."""

    def __init__(self, poll_interval: float = 0.05) -> None:
        self._queues: Dict[str, Deque[WorkflowEvent]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._poll_interval = poll_interval

    async def publish(self, topic: str, event: WorkflowEvent) -> None:
        # round-trip through JSON so subscribers never share mutable state
        copy = WorkflowEvent.from_json(event.to_json())
        async with self._lock:
            self._queues[topic].append(copy)

    def pending(self, topic: str) -> List[WorkflowEvent]:
        """Events queued on ``topic`` and not yet consumed."""
        return list(self._queues[topic])

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[InMemoryMessage, WorkflowEvent]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        while deadline is None or loop.time() < deadline:
            async with self._lock:
                event = self._queues[topic].popleft() if self._queues[topic] else None
            if event is None:
                await asyncio.sleep(self._poll_interval)
                continue
            yield (topic, event), event

    async def ack(self, raw_message: InMemoryMessage) -> None:
        """Nothing to do: the event left the queue when it was yielded."""

    async def nack(self, raw_message: InMemoryMessage, requeue: bool = True) -> None:
        if not requeue:
            return
        topic, event = raw_message
        async with self._lock:
            self._queues[topic].appendleft(event)
