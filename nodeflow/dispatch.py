"""Executor dispatch: node type tag to ``NodeExecutor`` lookup."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterator, Mapping, Optional

from .errors import UnknownNodeTypeError
from .nodes import BUILTIN_EXECUTORS, NodeExecutor


class ExecutorRegistry:
    """Immutable lookup table built once at startup.

    Derive a new registry with :meth:`extend` instead of mutating an
    existing one.
    """

    def __init__(self, executors: Optional[Mapping[str, NodeExecutor]] = None) -> None:
        self._executors: Mapping[str, NodeExecutor] = MappingProxyType(dict(executors or {}))

    def dispatch(self, node_type: str) -> NodeExecutor:
        """Return the executor registered for ``node_type``.

        Raises:
            UnknownNodeTypeError: if nothing is registered for the tag.
        """
        executor = self._executors.get(str(getattr(node_type, "value", node_type)))
        if executor is None:
            raise UnknownNodeTypeError(str(node_type))
        return executor

    def extend(self, executors: Mapping[str, NodeExecutor]) -> "ExecutorRegistry":
        """Return a registry with ``executors`` added or replacing entries."""
        return ExecutorRegistry({**self._executors, **executors})

    def __contains__(self, node_type: object) -> bool:
        return str(getattr(node_type, "value", node_type)) in self._executors

    def __iter__(self) -> Iterator[str]:
        return iter(self._executors)

    def __len__(self) -> int:
        return len(self._executors)


def default_registry(
    extra: Optional[Mapping[str, NodeExecutor]] = None,
) -> ExecutorRegistry:
    """Registry holding the built-in executors plus any ``extra`` ones."""
    registry = ExecutorRegistry({cls.node_type: cls() for cls in BUILTIN_EXECUTORS})
    return registry.extend(extra) if extra else registry
