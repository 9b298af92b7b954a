"""Node executor capability and the built-in executors."""

from .base import ExecutionContext, NodeExecutor
from .logic import (
    ConditionExecutor,
    MergeExecutor,
    SetFieldsExecutor,
    SwitchExecutor,
    WaitExecutor,
)
from .triggers import (
    ErrorTriggerExecutor,
    ManualTriggerExecutor,
    ScheduleTriggerExecutor,
    WebhookTriggerExecutor,
)

BUILTIN_EXECUTORS = (
    ManualTriggerExecutor,
    WebhookTriggerExecutor,
    ScheduleTriggerExecutor,
    ErrorTriggerExecutor,
    ConditionExecutor,
    SwitchExecutor,
    SetFieldsExecutor,
    MergeExecutor,
    WaitExecutor,
)

__all__ = [
    "BUILTIN_EXECUTORS",
    "ConditionExecutor",
    "ErrorTriggerExecutor",
    "ExecutionContext",
    "ManualTriggerExecutor",
    "MergeExecutor",
    "NodeExecutor",
    "ScheduleTriggerExecutor",
    "SetFieldsExecutor",
    "SwitchExecutor",
    "WaitExecutor",
    "WebhookTriggerExecutor",
]
