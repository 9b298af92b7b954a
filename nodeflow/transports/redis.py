"""Redis transport for cross-process messaging.

Each topic is a Redis list. A subscriber atomically moves an event onto a
per-topic processing list while it is handled, so an event whose worker dies
before ``ack`` is still in Redis and can be put back with
:meth:`RedisTransport.requeue_unacked`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import WorkflowEvent
from .base import BaseTransport

logger = logging.getLogger(__name__)

# (topic, serialized event) as stored in Redis
RedisMessage = Tuple[str, str]


class RedisTransport(BaseTransport[RedisMessage]):
    """At-least-once delivery over Redis lists."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "nodeflow",
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._redis: Optional[Any] = None

    def queue_key(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    def processing_key(self, topic: str) -> str:
        return f"{self.prefix}:{topic}:processing"

    async def connect(self) -> None:
        if self._redis is not None:
            return
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()
        logger.info(f"Connected to Redis at {self.host}:{self.port}/{self.db}")

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if self._redis is None:
            await self.connect()
        return self._redis

    async def publish(self, topic: str, event: WorkflowEvent) -> None:
        """Append ``event`` to the topic list; consumers pop from the other end."""
        client = await self._client()
        await client.lpush(self.queue_key(topic), event.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RedisMessage, WorkflowEvent]]:
        """Yield events until ``lifespan`` seconds elapse (forever if ``None``).

        Events that fail validation are removed from the processing list and
        dropped.
        """
        client = await self._client()
        queue, processing = self.queue_key(topic), self.processing_key(topic)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        while deadline is None or loop.time() < deadline:
            payload = await client.blmove(queue, processing, 1, "RIGHT", "LEFT")
            if payload is None:
                continue
            try:
                event = WorkflowEvent.from_json(payload)
            except ValidationError as e:
                logger.error(f"Dropping malformed event on {queue}: {e}")
                await client.lrem(processing, 1, payload)
                continue
            yield (topic, payload), event

    async def ack(self, raw_message: RedisMessage) -> None:
        topic, payload = raw_message
        client = await self._client()
        await client.lrem(self.processing_key(topic), 1, payload)

    async def nack(self, raw_message: RedisMessage, requeue: bool = True) -> None:
        """Drop the event from processing and, if ``requeue``, deliver it next."""
        topic, payload = raw_message
        client = await self._client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key(topic), 1, payload)
            if requeue:
                pipe.rpush(self.queue_key(topic), payload)
            await pipe.execute()

    async def requeue_unacked(self, topic: str) -> int:
        """Move every event left in processing back onto the queue."""
        client = await self._client()
        moved = 0
        while await client.lmove(
            self.processing_key(topic), self.queue_key(topic), "RIGHT", "RIGHT"
        ):
            moved += 1
        if moved:
            logger.warning(f"Requeued {moved} unacknowledged events on {topic}")
        return moved
