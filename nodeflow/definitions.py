"""Loading workflow definitions from YAML or JSON documents."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from .contracts import Connection, Node, Workflow


def _pick(item: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in item:
            return item[key]
    return default


def workflow_from_dict(document: Mapping[str, Any]) -> Workflow:
    """Build a :class:`Workflow` from a plain document.

    Connections accept ``from``/``to`` shorthands as well as the
    ``fromNodeId``/``toNodeId`` spelling.
    """
    workflow_id = document.get("id")
    if not workflow_id:
        raise ValueError("Workflow definition requires an 'id'")

    nodes = [
        Node(
            id=item["id"],
            workflow_id=workflow_id,
            type=item["type"],
            name=item.get("name") or item["id"],
            data=item.get("data") or {},
        )
        for item in document.get("nodes") or []
    ]
    connections = []
    for item in document.get("connections") or []:
        fields: Dict[str, Any] = {
            "workflow_id": workflow_id,
            "from_node_id": _pick(item, "from", "fromNodeId", "from_node_id"),
            "from_output": _pick(item, "fromOutput", "from_output", default="main"),
            "to_node_id": _pick(item, "to", "toNodeId", "to_node_id"),
            "to_input": _pick(item, "toInput", "to_input", default="main"),
        }
        if item.get("id"):
            fields["id"] = item["id"]
        connections.append(Connection(**fields))

    return Workflow(
        id=workflow_id,
        name=document.get("name") or workflow_id,
        user_id=_pick(document, "userId", "user_id"),
        nodes=nodes,
        connections=connections,
    )


def load_workflow_file(path: str | Path) -> Workflow:
    """Read a workflow definition file; JSON is parsed as YAML."""
    with open(path) as f:
        document = yaml.safe_load(f) or {}
    if not isinstance(document, Mapping):
        raise ValueError(f"{path} does not contain a workflow mapping")
    return workflow_from_dict(document)
