"""Flow-control node executors."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List

from ..contracts import BRANCH_KEY, NodeType
from .base import ExecutionContext, NodeExecutor

logger = logging.getLogger(__name__)

WAIT_UNITS = {"seconds": 1, "minutes": 60, "hours": 3600, "days": 86400}


def _to_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def compare(actual: Any, operator: str, expected: Any) -> bool:
    """Evaluate a condition operator on already-resolved operands."""
    if operator == "equals":
        return str(actual) == str(expected)
    if operator == "not_equals":
        return str(actual) != str(expected)
    if operator == "contains":
        return str(expected) in str(actual)
    if operator == "not_contains":
        return str(expected) not in str(actual)
    if operator == "greater_than":
        return _to_number(actual) > _to_number(expected)
    if operator == "less_than":
        return _to_number(actual) < _to_number(expected)
    logger.warning(f"Unknown condition operator '{operator}', treating as false")
    return False


class ConditionExecutor(NodeExecutor):
    """Two-way branch on the ``true`` / ``false`` handles."""

    node_type = NodeType.CONDITION.value

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        result = compare(
            ctx.data.get("variable"),
            ctx.data.get("operator", "equals"),
            ctx.data.get("value"),
        )
        return {"conditionMet": result, BRANCH_KEY: "true" if result else "false"}


class SwitchExecutor(NodeExecutor):
    """Multi-way branch selecting the handle of the first matching case."""

    node_type = NodeType.SWITCH.value

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        actual = str(ctx.data.get("variable"))
        cases: List[Dict[str, Any]] = ctx.data.get("cases") or []
        default_handle = ctx.data.get("defaultHandle")

        matched = next((c for c in cases if str(c.get("value")) == actual), None)
        if matched is not None:
            return {
                "match": True,
                "matchedValue": matched.get("value"),
                BRANCH_KEY: matched.get("outputHandle"),
            }
        if default_handle:
            return {"match": False, "default": True, BRANCH_KEY: default_handle}
        return {"match": False, BRANCH_KEY: None}


class SetFieldsExecutor(NodeExecutor):
    node_type = NodeType.SET_FIELDS.value

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        fields = ctx.data.get("fields")
        if not isinstance(fields, list):
            raise ValueError("No fields configured")

        output = {f["key"]: f.get("value") for f in fields if f.get("key")}
        return {ctx.data.get("variableName") or "fields": output}


class MergeExecutor(NodeExecutor):
    """Combine everything accumulated so far into one value."""

    node_type = NodeType.MERGE.value

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        mode = ctx.data.get("mode", "keepFirst")
        values = list(ctx.namespace.values())

        if mode == "append":
            merged: Any = []
            for value in values:
                if isinstance(value, list):
                    merged.extend(value)
                else:
                    merged.append(value)
        elif mode == "merge":
            merged = {}
            for value in values:
                if isinstance(value, dict):
                    merged.update(value)
        else:
            merged = dict(ctx.namespace)

        return {ctx.data.get("variableName") or "merged": merged}


class WaitExecutor(NodeExecutor):
    """Durable delay through the step runner."""

    node_type = NodeType.WAIT.value

    async def run(self, ctx: ExecutionContext) -> Dict[str, Any]:
        amount = ctx.data.get("amount", 0)
        unit = ctx.data.get("unit", "seconds")
        if unit not in WAIT_UNITS:
            raise ValueError(f"Unsupported wait unit: {unit}")

        seconds = _to_number(amount) * WAIT_UNITS[unit]
        if math.isnan(seconds) or seconds < 0:
            raise ValueError(f"Invalid wait amount: {amount}")

        await ctx.step.sleep(f"wait-{ctx.node_id}-{amount}-{unit}", seconds)
        return {"waited": True, "duration": f"{amount} {unit}"}
