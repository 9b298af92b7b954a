"""Resolution of ``{{ path }}`` templates embedded in node configuration.

Templates are resolved against the run namespace. A template may name a
dotted path with optional list indexes (``items[0].title``), a system
variable (``system.now``) and an optional filter (``{{ name | upper }}``).
A reference that cannot be resolved becomes an empty string; it never
aborts resolution of the surrounding value.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import ExpressionResolutionError

logger = logging.getLogger(__name__)

_TEMPLATE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_PATH = re.compile(r"[^.\[\]\s]+(?:\[\d+\])*(?:\.[^.\[\]\s]+(?:\[\d+\])*)*")
_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")
_FILTER = re.compile(r"^(\w+)(?:\((.*)\))?$")


class _Missing:
    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return "<missing>"


MISSING = _Missing()


def _to_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date().isoformat()
        except (OverflowError, OSError, ValueError):
            return str(value)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return str(value)


SYSTEM_VARIABLES: Dict[str, Callable[[], Any]] = {
    "now": lambda: datetime.now(timezone.utc).isoformat(),
    "today": lambda: date.today().isoformat(),
    "timestamp": lambda: int(time.time() * 1000),
    "random": lambda: secrets.token_hex(3),
}

FILTERS: Dict[str, Callable[[Any, Optional[str]], Any]] = {
    "json": lambda val, _: json.dumps(None if val is MISSING else val, indent=2, default=str),
    "upper": lambda val, _: stringify(val).upper(),
    "lower": lambda val, _: stringify(val).lower(),
    "length": lambda val, _: len(val) if isinstance(val, (list, str)) else 0,
    "count": lambda val, _: len(val) if isinstance(val, list) else int(bool(val) and val is not MISSING),
    "first": lambda val, _: (val[0] if val else MISSING) if isinstance(val, list) else val,
    "last": lambda val, _: (val[-1] if val else MISSING) if isinstance(val, list) else val,
    "trim": lambda val, _: stringify(val).strip(),
    "default": lambda val, arg: (arg or "") if val in (None, MISSING, "") else val,
    "date": lambda val, _: _to_date(val) if val not in (None, MISSING) else val,
}


def stringify(value: Any) -> str:
    """Render a looked-up value for substitution into a string."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def lookup(namespace: Mapping[str, Any], path: str) -> Any:
    """Walk ``path`` through ``namespace``.

    Raises:
        ExpressionResolutionError: if the path is malformed or missing.
    """
    if not _PATH.fullmatch(path):
        raise ExpressionResolutionError(path, "malformed path")

    current: Any = namespace
    for key, index in _TOKEN.findall(path):
        if index:
            if not isinstance(current, (list, tuple)):
                raise ExpressionResolutionError(path, f"cannot index into {type(current).__name__}")
            position = int(index)
            if position >= len(current):
                raise ExpressionResolutionError(path, f"index {position} out of range")
            current = current[position]
        elif isinstance(current, Mapping):
            if key not in current:
                raise ExpressionResolutionError(path, f"no key '{key}'")
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            raise ExpressionResolutionError(path, f"no attribute '{key}'")
    return current


def _apply_filter(value: Any, spec: str) -> Any:
    match = _FILTER.match(spec)
    if not match or match.group(1) not in FILTERS:
        logger.debug(f"Ignoring unknown expression filter '{spec}'")
        return value
    name, arg = match.groups()
    if arg is not None:
        arg = re.sub(r"^(['\"])(.*)\1$", r"\2", arg.strip())
    return FILTERS[name](value, arg)


def evaluate(expression: str, namespace: Mapping[str, Any]) -> Any:
    """Evaluate the inside of one ``{{ ... }}`` segment.

    Returns ``MISSING`` when the path cannot be resolved or its filter fails.
    """
    path, _, filter_spec = expression.partition("|")
    path = path.strip()

    if path.startswith("system."):
        factory = SYSTEM_VARIABLES.get(path.split(".", 1)[1])
        value = factory() if factory else MISSING
    else:
        try:
            value = lookup(namespace, path)
        except ExpressionResolutionError as e:
            logger.debug(str(e))
            value = MISSING

    if filter_spec.strip():
        try:
            value = _apply_filter(value, filter_spec.strip())
        except Exception as e:
            logger.debug(f"Filter '{filter_spec.strip()}' failed on {path}: {e}")
            value = MISSING
    return value


def resolve_string(text: str, namespace: Mapping[str, Any]) -> str:
    """Substitute every template segment in ``text``."""
    return _TEMPLATE.sub(lambda m: stringify(evaluate(m.group(1), namespace)), text)


def resolve_expressions(data: Any, namespace: Mapping[str, Any]) -> Any:
    """Return ``data`` with every template in its string leaves resolved.

    Dicts, lists and tuples are walked recursively and rebuilt; other
    values are returned unchanged. The input is never mutated.
    """
    if isinstance(data, str):
        return resolve_string(data, namespace) if "{{" in data else data
    if isinstance(data, Mapping):
        return {key: resolve_expressions(value, namespace) for key, value in data.items()}
    if isinstance(data, list):
        return [resolve_expressions(item, namespace) for item in data]
    if isinstance(data, tuple):
        return tuple(resolve_expressions(item, namespace) for item in data)
    return data
