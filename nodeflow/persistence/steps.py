"""Best-effort step record writes."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..contracts import StepStatus
from ..errors import PersistenceError
from .repository import WorkflowRepository
from .truncation import MAX_PAYLOAD_SIZE, truncate_payload

logger = logging.getLogger(__name__)


class StepRecorder:
    """Write truncated step records; storage failures never abort a run."""

    def __init__(
        self, repository: WorkflowRepository, max_payload_size: int = MAX_PAYLOAD_SIZE
    ) -> None:
        self.repository = repository
        self.max_payload_size = max_payload_size

    async def upsert_step(
        self,
        run_id: str,
        node_id: str,
        status: StepStatus,
        input: Any = None,
        output: Any = None,
        error: Optional[str] = None,
    ) -> bool:
        """Persist one step record. Returns ``False`` when the write failed."""
        try:
            await self.repository.upsert_step(
                run_id,
                node_id,
                status,
                input=truncate_payload(input, self.max_payload_size),
                output=truncate_payload(output, self.max_payload_size),
                error=error,
            )
        except PersistenceError as e:
            logger.error(f"Failed to record step {node_id} of run {run_id}: {e}")
            return False
        return True
