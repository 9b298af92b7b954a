"""Merging node outputs into the run namespace."""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

from .contracts import RESERVED_KEYS


def slugify(name: str) -> str:
    """Namespace key for a human node name: ``"Send Email"`` -> ``"send_email"``."""
    return re.sub(r"\s+", "_", name.strip().lower())


@dataclass
class Contribution:
    """Output a node adds to the namespace at the end of its level."""

    node_id: str
    node_name: str
    data: Dict[str, Any]
    spread: bool = True


def snapshot(namespace: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only view handed to nodes while a level executes."""
    return MappingProxyType(dict(namespace))


def merge_outputs(
    namespace: Mapping[str, Any],
    contributions: Iterable[Contribution],
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Return a new namespace with ``contributions`` merged in.

    ``extra`` entries are written first. Then each contribution, in order, is
    stored under its node id, then under the slug of its node name, then (when
    ``spread`` is set) each of its non-reserved keys is copied to the root.
    Later writes win, so a spread key shadows an id or slug with the same name
    and a later node shadows an earlier one.
    """
    merged = dict(namespace)
    if extra:
        merged.update(extra)

    for contribution in contributions:
        merged[contribution.node_id] = contribution.data
        if contribution.node_name:
            merged[slugify(contribution.node_name)] = contribution.data
        if contribution.spread:
            for key, value in contribution.data.items():
                if key not in RESERVED_KEYS:
                    merged[key] = value

    return merged
