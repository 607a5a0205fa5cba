"""
DAG utilities (pure).

Validation and ordering for step dependency graphs.
No I/O, no subprocess.
"""

from __future__ import annotations

import heapq
from collections.abc import Sequence


def validate_dag(nodes: Sequence[tuple[str, Sequence[str]]]) -> list[str]:
    """Validate a dependency graph given as ``(id, depends_on)`` pairs.

    Checks for:
    - Duplicate IDs
    - Self dependencies
    - References to unknown IDs
    - Cycles (Kahn's algorithm)

    Returns:
        List of error strings (empty = valid).
    """
    errors: list[str] = []
    ids = [node_id for node_id, _ in nodes]
    known = set(ids)

    seen: set[str] = set()
    for node_id in ids:
        if node_id in seen:
            errors.append(f"Duplicate step ID: {node_id}")
        seen.add(node_id)

    for node_id, deps in nodes:
        for dep in deps:
            if dep == node_id:
                errors.append(f"Step '{node_id}' depends on itself")
            elif dep not in known:
                errors.append(f"Step '{node_id}' depends on unknown step '{dep}'")

    if errors:
        return errors

    try:
        topological_order(nodes)
    except ValueError as e:
        errors.append(str(e))
    return errors


def topological_order(nodes: Sequence[tuple[str, Sequence[str]]]) -> list[str]:
    """Kahn's algorithm with ties broken by declaration order.

    Among all nodes whose dependencies are satisfied, the one declared
    first is always emitted next, so the order is deterministic and
    matches declaration order wherever the edges allow it.

    Raises:
        ValueError: if the graph has a cycle. The message names the
            nodes left unresolved.
    """
    index = {node_id: i for i, (node_id, _) in enumerate(nodes)}
    in_degree = {node_id: len(set(deps)) for node_id, deps in nodes}
    successors: dict[str, list[str]] = {node_id: [] for node_id, _ in nodes}
    for node_id, deps in nodes:
        for dep in set(deps):
            successors[dep].append(node_id)

    ready = [index[n] for n, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        node_id = nodes[heapq.heappop(ready)][0]
        order.append(node_id)
        for succ in successors[node_id]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(ready, index[succ])

    if len(order) < len(nodes):
        done = set(order)
        stuck = [n for n, _ in nodes if n not in done]
        raise ValueError(f"Dependency cycle detected among: {', '.join(stuck)}")

    return order
