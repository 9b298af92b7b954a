"""Cron scheduler and execution log retention."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import CroniterBadCronError, croniter

from .config import NodeflowConfig, RetentionConfig, load_config
from .contracts import RUN_REQUEST_TOPIC, NodeType, RunStatus, WorkflowEvent, utcnow
from .persistence import WorkflowRepository
from .transports import BaseTransport

logger = logging.getLogger(__name__)


def previous_fire_time(
    expression: str, now: datetime, tz_name: str = "UTC"
) -> datetime:
    """Most recent time at or before ``now`` matched by ``expression`` in ``tz_name``.

    Raises:
        ValueError: for an invalid expression or unknown timezone.
    """
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone '{tz_name}'") from e
    # croniter excludes the start instant itself
    base = now.astimezone(tz).replace(microsecond=0) + timedelta(seconds=1)
    try:
        return croniter(expression, base).get_prev(datetime)
    except (CroniterBadCronError, ValueError, KeyError) as e:
        raise ValueError(f"Invalid cron expression '{expression}': {e}") from e


class CronScheduler:
    """Publish run requests for workflows whose schedule is due."""

    def __init__(
        self,
        repository: WorkflowRepository,
        transport: BaseTransport,
        config: Optional[NodeflowConfig] = None,
        topic: str = RUN_REQUEST_TOPIC,
    ) -> None:
        self._repository = repository
        self._transport = transport
        self._config = config or load_config()
        self._topic = topic

    async def due_workflows(self, now: datetime) -> Dict[str, datetime]:
        """Map workflow id to the fire time that makes it due at ``now``."""
        window = self._config.scheduler.tick_seconds
        default_tz = self._config.scheduler.default_timezone
        due: Dict[str, datetime] = {}

        for node in await self._repository.list_nodes_by_type(NodeType.SCHEDULE.value):
            if node.workflow_id in due:
                continue
            expression = node.data.get("cronExpression")
            if not expression:
                continue
            try:
                prev = previous_fire_time(
                    expression, now, node.data.get("timezone") or default_tz
                )
            except ValueError as e:
                logger.error(f"Skipping schedule node {node.id}: {e}")
                continue
            if (now - prev).total_seconds() < window:
                due[node.workflow_id] = prev

        return due

    async def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Trigger every due workflow once; returns the triggered workflow ids."""
        now = now or utcnow()
        due = await self.due_workflows(now)
        for workflow_id, fired_at in due.items():
            event = WorkflowEvent.run_request(
                workflow_id,
                {"source": "schedule", "triggeredAt": now.isoformat()},
                event_id=f"schedule:{workflow_id}:{fired_at.astimezone(timezone.utc).isoformat()}",
            )
            await self._transport.publish(self._topic, event)
            logger.info(f"Triggered scheduled workflow {workflow_id}")
        return list(due)

    async def run_forever(self, lifespan: Optional[float] = None) -> None:
        """Tick at the configured interval until ``lifespan`` seconds elapse."""
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        interval = self._config.scheduler.tick_seconds

        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}")
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break
            await asyncio.sleep(interval)


async def cleanup_execution_logs(
    repository: WorkflowRepository,
    now: Optional[datetime] = None,
    retention: Optional[RetentionConfig] = None,
) -> Dict[str, int]:
    """Delete finished runs and runs stuck in RUNNING past their retention."""
    now = now or utcnow()
    retention = retention or RetentionConfig()

    deleted_completed = await repository.delete_runs(
        now - timedelta(days=retention.completed_days),
        [RunStatus.SUCCESS, RunStatus.FAILED],
    )
    deleted_zombies = await repository.delete_runs(
        now - timedelta(days=retention.zombie_days),
        [RunStatus.RUNNING],
    )
    logger.info(
        f"Cleanup removed {deleted_completed} finished and {deleted_zombies} stuck runs"
    )
    return {"deletedCompleted": deleted_completed, "deletedZombies": deleted_zombies}
