"""Transports carrying run requests and node status events."""

from __future__ import annotations

import os
from typing import Optional

from ..config import NodeflowConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None, config: Optional[NodeflowConfig] = None
) -> BaseTransport:
    """Build the transport named by ``backend``, ``NODEFLOW_TRANSPORT`` or the config.

    The in-memory transport only connects publishers and subscribers within
    one process; use ``redis`` when the scheduler, CLI and workers run apart.
    """
    config = config or load_config()
    name = (backend or os.getenv("NODEFLOW_TRANSPORT") or config.transport.backend).lower()

    if name == "inmemory":
        return InMemoryTransport()
    if name == "redis":
        from .redis import RedisTransport

        return RedisTransport(**config.transport.redis.model_dump())
    raise ValueError(f"Unsupported transport backend: {name}")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
