"""Dependency-graph repair for planned tasks.

Graphs are lists indexed by plan position; ``graph[i]`` holds the indices
node ``i`` depends on. Repair runs in four deterministic steps:

1. Drop references that are not integers, out of range, or self-references.
2. Break cycles. A DFS in index order finds a cycle; among its edges that
   point from a higher index to a lower one, the edge whose dependent has the
   highest index is removed. Repeat until acyclic.
3. Connect isolated nodes. With a root present they all depend on the first
   root. Without one they are ordered by (priority, index); the first node
   anchors and each later node depends on the anchor and on its predecessor.
4. Unify terminals. The first terminal whose title mentions integration,
   finalization or completion, else the highest-indexed terminal, depends on
   every other terminal.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from vibeboard.models import Priority

TERMINAL_KEYWORDS = ("integrat", "final", "complet")


@dataclass(frozen=True, slots=True)
class GraphNode:
    title: str
    dependencies: Sequence[Any] = ()
    priority: Priority = Priority.MEDIUM


@dataclass(slots=True)
class RepairReport:
    invalid: dict[int, list[str]] = field(default_factory=dict)
    broken_edges: list[tuple[int, int]] = field(default_factory=list)
    connected: list[tuple[int, int]] = field(default_factory=list)
    terminal: int | None = None
    unified: list[int] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.invalid or self.broken_edges or self.connected or self.unified)

    def to_dict(self) -> dict[str, Any]:
        return {
            "invalid": {str(index): refs for index, refs in self.invalid.items()},
            "broken_edges": [list(edge) for edge in self.broken_edges],
            "connected": [list(edge) for edge in self.connected],
            "terminal": self.terminal,
            "unified": list(self.unified),
        }


def _parse_index(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def resolve_indices(nodes: Sequence[GraphNode]) -> tuple[list[list[int]], dict[int, list[str]]]:
    count = len(nodes)
    graph: list[list[int]] = []
    invalid: dict[int, list[str]] = {}
    for index, node in enumerate(nodes):
        resolved: list[int] = []
        for raw in node.dependencies:
            target = _parse_index(raw)
            if target is None or target < 0 or target >= count or target == index:
                invalid.setdefault(index, []).append(str(raw))
                continue
            if target not in resolved:
                resolved.append(target)
        graph.append(resolved)
    return graph, invalid


def dependents_of(graph: Sequence[Sequence[int]]) -> list[set[int]]:
    dependents: list[set[int]] = [set() for _ in graph]
    for node, dependencies in enumerate(graph):
        for dependency in dependencies:
            dependents[dependency].add(node)
    return dependents


def find_cycle(graph: Sequence[Sequence[int]]) -> list[int] | None:
    """Return nodes ``c0..ck`` where each depends on the next and ``ck`` on ``c0``."""
    state = [0] * len(graph)
    for start in range(len(graph)):
        if state[start]:
            continue
        state[start] = 1
        path = [start]
        pending = [iter(graph[start])]
        while path:
            target = next(pending[-1], None)
            if target is None:
                state[path.pop()] = 2
                pending.pop()
                continue
            if state[target] == 1:
                return path[path.index(target) :]
            if state[target] == 0:
                state[target] = 1
                path.append(target)
                pending.append(iter(graph[target]))
    return None


def is_acyclic(graph: Sequence[Sequence[int]]) -> bool:
    return find_cycle(graph) is None


def break_cycles(graph: list[list[int]]) -> list[tuple[int, int]]:
    removed: list[tuple[int, int]] = []
    while (cycle := find_cycle(graph)) is not None:
        edges = [(cycle[i], cycle[(i + 1) % len(cycle)]) for i in range(len(cycle))]
        dependent, dependency = max(edge for edge in edges if edge[0] > edge[1])
        graph[dependent].remove(dependency)
        removed.append((dependent, dependency))
    return removed


def connect_isolated(
    graph: list[list[int]], priorities: Sequence[Priority]
) -> list[tuple[int, int]]:
    if len(graph) < 2:
        return []
    dependents = dependents_of(graph)
    isolated = [i for i, deps in enumerate(graph) if not deps and not dependents[i]]
    roots = [i for i, deps in enumerate(graph) if not deps and dependents[i]]
    connected: list[tuple[int, int]] = []
    if roots:
        for node in isolated:
            graph[node].append(roots[0])
            connected.append((node, roots[0]))
        return connected
    if len(isolated) < 2:
        return connected
    ordered = sorted(isolated, key=lambda i: (priorities[i].rank, i))
    anchor = ordered[0]
    for previous, node in zip(ordered, ordered[1:]):
        for dependency in dict.fromkeys((anchor, previous)):
            graph[node].append(dependency)
            connected.append((node, dependency))
    return connected


def unify_terminals(
    graph: list[list[int]], titles: Sequence[str]
) -> tuple[int | None, list[int]]:
    dependents = dependents_of(graph)
    terminals = [i for i in range(len(graph)) if not dependents[i]]
    if len(terminals) <= 1:
        return (terminals[0] if terminals else None), []
    canonical = next(
        (i for i in terminals if any(word in titles[i].lower() for word in TERMINAL_KEYWORDS)),
        max(terminals),
    )
    others = [i for i in terminals if i != canonical]
    graph[canonical].extend(others)
    return canonical, others


def repair_dependency_graph(nodes: Sequence[GraphNode]) -> tuple[list[list[int]], RepairReport]:
    graph, invalid = resolve_indices(nodes)
    report = RepairReport(invalid=invalid)
    if invalid:
        logger.warning(f"Dropped invalid dependency references: {invalid}")

    report.broken_edges = break_cycles(graph)
    if report.broken_edges:
        logger.warning(f"Broke dependency cycles by removing edges: {report.broken_edges}")

    report.connected = connect_isolated(graph, [node.priority for node in nodes])
    if report.connected:
        logger.info(f"Connected isolated tasks: {report.connected}")

    report.terminal, report.unified = unify_terminals(graph, [node.title for node in nodes])
    if report.unified:
        logger.info(f"Task {report.terminal} now waits on terminal tasks {report.unified}")
    return graph, report
