"""Graph utilities: level scheduling and reachability."""

from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Sequence, Set

from .contracts import Connection, Node
from .errors import CycleError


def build_adjacency(connections: Iterable[Connection]) -> Dict[str, List[Connection]]:
    """Index outgoing connections by their source node id."""
    adjacency: Dict[str, List[Connection]] = {}
    for conn in connections:
        adjacency.setdefault(conn.from_node_id, []).append(conn)
    return adjacency


def execution_levels(
    nodes: Sequence[Node], connections: Iterable[Connection]
) -> List[List[Node]]:
    """Group ``nodes`` into levels whose dependencies are met by earlier levels.

    Level 0 holds every node without incoming connections. Each following
    level is the set of nodes whose in-degree drops to zero once the previous
    level is removed. Nodes inside a level keep their input order.

    Raises:
        CycleError: if some nodes can never be scheduled.
    """
    order = {node.id: index for index, node in enumerate(nodes)}
    in_degree = {node.id: 0 for node in nodes}
    successors: Dict[str, List[str]] = {node.id: [] for node in nodes}

    for conn in connections:
        # edges to or from nodes outside this snapshot do not constrain it
        if conn.from_node_id not in order or conn.to_node_id not in order:
            continue
        in_degree[conn.to_node_id] += 1
        successors[conn.from_node_id].append(conn.to_node_id)

    levels: List[List[Node]] = []
    current = [node.id for node in nodes if in_degree[node.id] == 0]
    scheduled = 0

    while current:
        levels.append([nodes[order[node_id]] for node_id in current])
        scheduled += len(current)
        frontier: List[str] = []
        for node_id in current:
            for successor in successors[node_id]:
                in_degree[successor] -= 1
                if in_degree[successor] == 0:
                    frontier.append(successor)
        current = sorted(frontier, key=order.__getitem__)

    if scheduled < len(nodes):
        raise CycleError(node_id for node_id, degree in in_degree.items() if degree > 0)

    return levels


def downstream_node_ids(
    node_id: str, adjacency: Dict[str, List[Connection]]
) -> List[str]:
    """Breadth-first list of every node reachable from ``node_id``."""
    seen: Set[str] = set()
    result: List[str] = []
    queue = deque([node_id])

    while queue:
        current = queue.popleft()
        for conn in adjacency.get(current, []):
            child = conn.to_node_id
            if child not in seen:
                seen.add(child)
                result.append(child)
                queue.append(child)

    return result


def handler_subgraph_ids(
    nodes: Sequence[Node], connections: Iterable[Connection], root_type: str
) -> Set[str]:
    """Ids of ``root_type`` nodes and of nodes fed exclusively by them.

    A node belongs to the subgraph when it is a root, or when all of its
    predecessors already belong to it. Nodes that also receive input from the
    regular graph stay on the regular schedule.
    """
    known = {node.id for node in nodes}
    predecessors: Dict[str, Set[str]] = {node.id: set() for node in nodes}
    for conn in connections:
        if conn.from_node_id in known and conn.to_node_id in known:
            predecessors[conn.to_node_id].add(conn.from_node_id)

    members = {node.id for node in nodes if node.type == root_type}
    if not members:
        return members

    changed = True
    while changed:
        changed = False
        for node in nodes:
            preds = predecessors[node.id]
            if node.id not in members and preds and preds <= members:
                members.add(node.id)
                changed = True
    return members
