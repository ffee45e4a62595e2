"""Dependency graph over resources (or atomic groups) keyed by logical id.

Cycle detection is a three-color depth-first search that reports every
back-edge as a full cycle path. Topological order is Kahn's algorithm with
ties broken by declaration order, so equal inputs always sort equally.
"""

import heapq
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .exceptions import CycleError

logger = logging.getLogger(__name__)

WHITE, GRAY, BLACK = 0, 1, 2


class EdgeKind(str, Enum):
    """Why one resource depends on another."""

    EXPLICIT = "explicit"
    IMPLICIT_PARENT = "implicit-parent"
    IMPLICIT_REFERENCE = "implicit-reference"


@dataclass(frozen=True)
class DependencyEdge:
    """``source`` must be deployed after ``target``."""

    source: str
    target: str
    kind: EdgeKind = EdgeKind.EXPLICIT


class DependencyGraph:
    """Directed graph whose edges point from a dependent to its dependency.

    Nodes keep the order in which they were added; that order is the
    tie-breaker for the topological sort and the start order for cycle search.
    """

    def __init__(self) -> None:
        self._order: Dict[str, int] = {}
        self._dependencies: Dict[str, List[str]] = {}
        self._dependents: Dict[str, List[str]] = defaultdict(list)
        self._edges: List[DependencyEdge] = []
        self._edge_keys: Set[Tuple[str, str]] = set()

    @classmethod
    def from_edges(
        cls, nodes: Iterable[str], edges: Iterable[DependencyEdge]
    ) -> "DependencyGraph":
        graph = cls()
        for node in nodes:
            graph.add_node(node)
        for edge in edges:
            graph.add_edge(edge)
        return graph

    def add_node(self, node_id: str) -> None:
        if node_id not in self._order:
            self._order[node_id] = len(self._order)
            self._dependencies[node_id] = []

    def add_edge(self, edge: DependencyEdge) -> bool:
        """Add an edge between known nodes.

        Returns:
            False when an endpoint is unknown or the edge already exists.
            Unknown targets are reported by validation, not here.
        """
        if edge.source not in self._order or edge.target not in self._order:
            logger.debug(f"Ignoring edge to unknown node: {edge.source} -> {edge.target}")
            return False
        key = (edge.source, edge.target)
        if key in self._edge_keys:
            return False
        self._edge_keys.add(key)
        self._edges.append(edge)
        self._dependencies[edge.source].append(edge.target)
        self._dependents[edge.target].append(edge.source)
        return True

    @property
    def nodes(self) -> List[str]:
        return list(self._order)

    @property
    def edges(self) -> List[DependencyEdge]:
        return list(self._edges)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._order

    def __len__(self) -> int:
        return len(self._order)

    def declaration_index(self, node_id: str) -> int:
        return self._order[node_id]

    def dependencies_of(self, node_id: str) -> List[str]:
        return list(self._dependencies.get(node_id, []))

    def dependents_of(self, node_id: str) -> List[str]:
        return list(self._dependents.get(node_id, []))

    def find_cycles(self) -> List[List[str]]:
        """Return every cycle found as a path whose first node is repeated at the end.

        Each back-edge met during the search yields one cycle, so the
        result is deterministic but not necessarily every elementary cycle.
        """
        color: Dict[str, int] = {node: WHITE for node in self._order}
        cycles: List[List[str]] = []

        for start in self._order:
            if color[start] != WHITE:
                continue
            # Iterative DFS; the path mirrors the gray nodes on the stack
            path: List[str] = [start]
            position: Dict[str, int] = {start: 0}
            stack: List[Tuple[str, int]] = [(start, 0)]
            color[start] = GRAY
            while stack:
                node, next_index = stack[-1]
                successors = self._dependencies[node]
                if next_index < len(successors):
                    stack[-1] = (node, next_index + 1)
                    successor = successors[next_index]
                    if color[successor] == WHITE:
                        color[successor] = GRAY
                        position[successor] = len(path)
                        path.append(successor)
                        stack.append((successor, 0))
                    elif color[successor] == GRAY:
                        cycle = path[position[successor]:] + [successor]
                        cycles.append(cycle)
                else:
                    color[node] = BLACK
                    stack.pop()
                    path.pop()
                    del position[node]
        return cycles

    def has_cycle(self) -> bool:
        return bool(self.find_cycles())

    def topological_order(self) -> List[str]:
        """Return the nodes with every dependency before its dependents.

        Raises:
            CycleError: If the graph is cyclic
        """
        remaining = {node: len(deps) for node, deps in self._dependencies.items()}
        ready = [(self._order[node], node) for node, count in remaining.items() if count == 0]
        heapq.heapify(ready)

        order: List[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for dependent in self._dependents.get(node, []):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, (self._order[dependent], dependent))

        if len(order) != len(self._order):
            cycles = self.find_cycles()
            cycle = cycles[0] if cycles else []
            raise CycleError(
                f"Dependency cycle detected: {' -> '.join(cycle)}", cycle=cycle
            )
        return order

    def transitive_dependencies(self, node_id: str) -> Set[str]:
        """All nodes reachable from ``node_id`` along dependency edges."""
        seen: Set[str] = set()
        stack = list(self._dependencies.get(node_id, []))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependencies.get(current, []))
        return seen

    def subgraph_order(self, node_ids: Iterable[str]) -> List[str]:
        """Topological order restricted to ``node_ids``."""
        wanted = set(node_ids)
        return [node for node in self.topological_order() if node in wanted]


def first_cycle(graph: DependencyGraph) -> Optional[List[str]]:
    cycles = graph.find_cycles()
    return cycles[0] if cycles else None


__all__ = [
    "DependencyEdge",
    "DependencyGraph",
    "EdgeKind",
    "first_cycle",
]
