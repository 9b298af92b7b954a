"""Transport interface shared by the scheduler, the CLI and run workers."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import WorkflowEvent

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Publish :class:`WorkflowEvent` envelopes to named topics.

    ``subscribe`` yields ``(raw_message, event)`` pairs; ``raw_message`` is the
    backend handle that ``ack`` and ``nack`` settle.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, event: WorkflowEvent) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, WorkflowEvent]]:
        """Yield events from ``topic`` until ``lifespan`` seconds elapse.

        With ``lifespan=None`` the subscription runs until cancelled.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Mark an event as processed."""
        raise NotImplementedError

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Reject an event; backends without redelivery just ack it."""
        await self.ack(raw_message)
