"""Persistence layer for workflows, runs and step records.

``database_url`` picks the backend:

* unset: process-local :class:`InMemoryWorkflowRepository`
* ``sqlite://<path>``: :class:`SQLiteWorkflowRepository` (``sqlite://:memory:`` works)
* ``postgres://`` / ``postgresql://``: ``PostgresWorkflowRepository`` (asyncpg)
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..config import NodeflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import RunRecord, StepRecord
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository
from .steps import StepRecorder
from .truncation import MAX_PAYLOAD_SIZE, truncate_payload

logger = logging.getLogger(__name__)

_repository_instance: WorkflowRepository | None = None


def _redact(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if "@" not in rest:
        return url
    return f"{scheme}{sep}***@{rest.rsplit('@', 1)[1]}"


def build_repository(database_url: Optional[str]) -> WorkflowRepository:
    """Create a repository for ``database_url`` without caching it."""
    if not database_url:
        return InMemoryWorkflowRepository()

    scheme = database_url.split("://", 1)[0].lower()
    if scheme == "sqlite":
        return SQLiteWorkflowRepository(database_url.split("://", 1)[1])
    if scheme in ("postgres", "postgresql"):
        from .postgres import PostgresWorkflowRepository

        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {_redact(database_url)}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[NodeflowConfig] = None
) -> WorkflowRepository:
    """Return the process-wide repository, building it on first use.

    Passing ``database_url`` or ``config`` always builds a fresh repository
    and makes it the cached one. Otherwise ``NODEFLOW_DATABASE_URL``,
    ``DATABASE_URL`` and the loaded configuration are consulted in that
    order, once.
    """
    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    url = (
        database_url
        or os.getenv("NODEFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or (config or load_config()).database_url
    )
    _repository_instance = build_repository(url)
    logger.debug(
        f"Using {type(_repository_instance).__name__}"
        + (f" for {_redact(url)}" if url else "")
    )
    return _repository_instance


def reset_repository() -> None:
    """Forget the cached repository instance."""
    global _repository_instance
    _repository_instance = None


__all__ = [
    "MAX_PAYLOAD_SIZE",
    "InMemoryWorkflowRepository",
    "RunRecord",
    "SQLiteWorkflowRepository",
    "StepRecord",
    "StepRecorder",
    "WorkflowRepository",
    "build_repository",
    "get_repository",
    "reset_repository",
    "truncate_payload",
]
