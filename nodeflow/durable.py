"""Durable step-run primitive used by the run coordinator.

A durable-execution runtime replays a function after a crash or retry and
skips the side effects that already completed. The coordinator only relies
on the small ``StepRunner`` protocol below; ``InMemoryStepRunner`` is the
process-local implementation used by default and in tests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Protocol, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StepRunner(Protocol):
    """Protocol for durable step execution backends."""

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Execute ``fn`` once for ``key`` and memoize its result."""

    async def sleep(self, key: str, seconds: float) -> None:
        """Suspend for ``seconds``; a replayed sleep returns immediately."""


class InMemoryStepRunner:
    """Memoize step results in local memory.

    Only successful results are recorded, so a step that raised runs again
    when the same runner is replayed. Reuse one instance per trigger event to
    resume a run after a failure.
    """

    def __init__(self) -> None:
        self._results: Dict[str, Any] = {}
        self._slept: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def completed_keys(self) -> Set[str]:
        return set(self._results)

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key in self._results:
                logger.debug(f"Replaying memoized step {key}")
                return self._results[key]
            result = await fn()
            self._results[key] = result
            return result

    async def sleep(self, key: str, seconds: float) -> None:
        if key in self._slept:
            return
        await asyncio.sleep(seconds)
        self._slept.add(key)
