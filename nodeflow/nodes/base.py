"""Executor capability consumed by the run coordinator."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional

from ..durable import InMemoryStepRunner, StepRunner
from ..status import EmitStatus


async def _discard_status(status: str, message: Optional[str] = None) -> None:
    return None


@dataclass(frozen=True)
class ExecutionContext:
    """Everything an executor may see while running one node.

    ``data`` is the node configuration with expressions already resolved and
    ``namespace`` is a read-only snapshot of the run namespace taken at the
    start of the node's level.
    """

    data: Dict[str, Any]
    node_id: str
    run_id: str
    user_id: Optional[str] = None
    namespace: Mapping[str, Any] = field(default_factory=dict)
    emit_status: EmitStatus = _discard_status
    step: StepRunner = field(default_factory=InMemoryStepRunner)


class NodeExecutor(metaclass=abc.ABCMeta):
    """Runs one node type.

    Subclasses implement :meth:`run`; :meth:`execute` wraps it with
    ``loading``/``success``/``error`` status events. The returned mapping
    becomes the node's namespace contribution; a ``__branch`` key selects the
    outgoing handle to follow.
    """

    node_type: ClassVar[str]

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        await ctx.emit_status("loading")
        try:
            result = await self.run(ctx)
        except Exception as e:
            await ctx.emit_status("error", str(e))
            raise
        await ctx.emit_status("success")
        return result

    @abc.abstractmethod
    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        raise NotImplementedError
