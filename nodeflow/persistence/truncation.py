"""Size limiting for payloads written to step records."""

from __future__ import annotations

import json
from typing import Any

MAX_PAYLOAD_SIZE = 50 * 1024


def _size(value: Any) -> int:
    return len(json.dumps(value, separators=(",", ":"), default=str))


def truncate_payload(data: Any, max_size: int = MAX_PAYLOAD_SIZE) -> Any:
    """Return ``data`` or a smaller stand-in whose JSON form fits ``max_size``.

    Lists collapse to a summary string. Dicts keep their leading keys until
    the serialized values would overflow, then gain a ``_removed_fields``
    marker. Scalars collapse to a size note.
    """
    if not data:
        return data

    try:
        total = _size(data)
        if total <= max_size:
            return data

        if isinstance(data, (list, tuple)):
            return f"[Array({len(data)}) - Truncated due to size]"

        if isinstance(data, dict):
            truncated: dict[str, Any] = {}
            size = 0
            for key, value in data.items():
                value_size = _size(value)
                if size + value_size > max_size:
                    truncated[key] = "...(truncated)"
                    truncated["_removed_fields"] = "..."
                    break
                truncated[key] = value
                size += value_size
            return truncated

        return f"[Data size {total / 1024:.2f}KB - Truncated]"
    except (TypeError, ValueError):
        return "[Unable to serialize data]"
