"""Directed file dependency graph with mirrored forward/reverse adjacency.

Nodes are identity strings held in two flat mappings:

- ``forward[a]``  -> files that ``a`` depends on
- ``reverse[b]``  -> files that depend on ``b``

For every edge ``(a, b)``: ``b in forward[a]`` and ``a in reverse[b]``.
No node ever holds a reference to another node object, so removal is a
plain set discard on both sides.

Traversals (closure, cycle detection, topological sort) are iterative and
expand neighbours in sorted order, so repeated calls on the same state
return the same sequence.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Tuple

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


class SnapshotValidationError(ValueError):
    """Raised when a graph snapshot cannot be restored without breaking invariants."""


class DependencyGraph:
    """Mutable directed graph over file identities.

    Args:
        self_edges_are_cycles: Policy for lone self-edges (``a -> a``).
            When ``False`` (default) they are kept as ordinary edges but are
            neither reported as circular dependencies nor block the
            topological sort. When ``True`` each one is reported as the
            cycle ``[a, a]`` and makes the graph unsortable.
    """

    def __init__(self, self_edges_are_cycles: bool = False) -> None:
        self.self_edges_are_cycles = self_edges_are_cycles
        self._forward: Dict[str, Set[str]] = {}
        self._reverse: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_node(self, identity: str) -> None:
        with self._lock:
            if identity not in self._forward:
                self._forward[identity] = set()
                self._reverse[identity] = set()

    def add_edge(self, src: str, dst: str) -> None:
        """Record that *src* depends on *dst*. Adds both endpoints if needed."""
        with self._lock:
            self.add_node(src)
            self.add_node(dst)
            self._forward[src].add(dst)
            self._reverse[dst].add(src)

    def remove_node(self, identity: str) -> None:
        with self._lock:
            if identity not in self._forward:
                return
            for dep in self._forward.pop(identity):
                self._reverse.get(dep, set()).discard(identity)
            for dependent in self._reverse.pop(identity):
                self._forward.get(dependent, set()).discard(identity)

    def remove_outgoing_edges(self, identity: str) -> List[str]:
        """Drop only the edges leaving *identity*; incoming edges stay.

        Returns:
            The former direct dependencies, sorted.
        """
        with self._lock:
            deps = self._forward.get(identity)
            if not deps:
                return []
            removed = sorted(deps)
            for dep in removed:
                self._reverse[dep].discard(identity)
            deps.clear()
            return removed

    def clear(self) -> None:
        with self._lock:
            self._forward.clear()
            self._reverse.clear()

    # ------------------------------------------------------------------
    # Direct queries
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> List[str]:
        with self._lock:
            return list(self._forward)

    def edges(self) -> List[Tuple[str, str]]:
        with self._lock:
            return [
                (src, dst)
                for src in sorted(self._forward)
                for dst in sorted(self._forward[src])
            ]

    def edge_count(self) -> int:
        with self._lock:
            return sum(len(deps) for deps in self._forward.values())

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._forward

    def __len__(self) -> int:
        with self._lock:
            return len(self._forward)

    def __iter__(self) -> Iterator[str]:
        return iter(self.nodes)

    def get_dependencies(self, identity: str) -> Set[str]:
        with self._lock:
            return set(self._forward.get(identity, ()))

    def get_dependents(self, identity: str) -> Set[str]:
        with self._lock:
            return set(self._reverse.get(identity, ()))

    # ------------------------------------------------------------------
    # Transitive queries
    # ------------------------------------------------------------------

    def get_all_dependencies(self, identity: str) -> List[str]:
        """Everything *identity* depends on, directly or not (BFS order).

        *identity* itself appears only when a cycle leads back to it.
        """
        with self._lock:
            return self._closure(identity, self._forward)

    def get_impacted_files(self, identity: str) -> List[str]:
        """Everything that would need re-examination if *identity* changed."""
        with self._lock:
            return [n for n in self._closure(identity, self._reverse) if n != identity]

    def has_path(self, src: str, dst: str) -> bool:
        if src == dst:
            return True
        with self._lock:
            return dst in self._closure(src, self._forward)

    @staticmethod
    def _closure(start: str, adjacency: Mapping[str, Set[str]]) -> List[str]:
        seen: Set[str] = set()
        order: List[str] = []
        queue = deque(sorted(adjacency.get(start, ())))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            order.append(current)
            for nxt in sorted(adjacency.get(current, ())):
                if nxt not in seen:
                    queue.append(nxt)
        return order

    # ------------------------------------------------------------------
    # Algorithms
    # ------------------------------------------------------------------

    def detect_circular_dependencies(self) -> List[List[str]]:
        """Find cycles with a single three-color DFS over an explicit stack.

        Every back-edge found yields one cycle as a closed path
        ``[a, b, ..., a]`` taken from the active DFS path. An empty list
        means the graph is acyclic under the current self-edge policy.
        """
        with self._lock:
            color = {node: _WHITE for node in self._forward}
            cycles: List[List[str]] = []

            for root in sorted(self._forward):
                if color[root] != _WHITE:
                    continue
                color[root] = _GRAY
                path = [root]
                position = {root: 0}
                stack = [(root, iter(sorted(self._forward[root])))]

                while stack:
                    node, children = stack[-1]
                    descended = False
                    for child in children:
                        if child == node:
                            if self.self_edges_are_cycles:
                                cycles.append([node, node])
                            continue
                        state = color[child]
                        if state == _WHITE:
                            color[child] = _GRAY
                            position[child] = len(path)
                            path.append(child)
                            stack.append((child, iter(sorted(self._forward[child]))))
                            descended = True
                            break
                        if state == _GRAY:
                            cycles.append(path[position[child]:] + [child])
                    if not descended:
                        stack.pop()
                        color[node] = _BLACK
                        path.pop()
                        del position[node]

            if cycles:
                logger.debug("Detected %d circular dependencies", len(cycles))
            return cycles

    def get_topological_sort(self) -> Optional[List[str]]:
        """Order every node so each file comes after all of its dependencies.

        Kahn elimination on dependency counts. Returns ``None`` when a cycle
        (including a self-edge, if the policy counts those) prevents a total
        order.
        """
        with self._lock:
            remaining: Dict[str, int] = {}
            for node, deps in self._forward.items():
                count = len(deps)
                if node in deps and not self.self_edges_are_cycles:
                    count -= 1
                remaining[node] = count

            ready = deque(sorted(node for node, count in remaining.items() if count == 0))
            order: List[str] = []
            while ready:
                node = ready.popleft()
                order.append(node)
                for dependent in sorted(self._reverse[node]):
                    if dependent == node:
                        continue
                    remaining[dependent] -= 1
                    if remaining[dependent] == 0:
                        ready.append(dependent)

            if len(order) != len(self._forward):
                return None
            return order

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total_edges = 0
            max_deps: Tuple[str, int] = ("", 0)
            max_dependents: Tuple[str, int] = ("", 0)
            for node in sorted(self._forward):
                deps = len(self._forward[node])
                total_edges += deps
                if deps > max_deps[1]:
                    max_deps = (node, deps)
                dependents = len(self._reverse[node])
                if dependents > max_dependents[1]:
                    max_dependents = (node, dependents)
            node_count = len(self._forward)
            return {
                "nodes": node_count,
                "edges": total_edges,
                "avg_dependencies": total_edges / node_count if node_count else 0.0,
                "max_dependencies": {"file": max_deps[0], "count": max_deps[1]},
                "max_dependents": {"file": max_dependents[0], "count": max_dependents[1]},
            }

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "nodes": sorted(self._forward),
                "edges": [{"from": src, "to": dst} for src, dst in self.edges()],
            }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def copy(self) -> "DependencyGraph":
        with self._lock:
            return DependencyGraph.from_dict(
                self.to_dict(), self_edges_are_cycles=self.self_edges_are_cycles,
            )

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        self_edges_are_cycles: bool = False,
    ) -> "DependencyGraph":
        """Rebuild a graph from a snapshot.

        Raises:
            SnapshotValidationError: malformed payload, duplicate node
                identities, or an edge whose endpoint is not a listed node.
        """
        if not isinstance(data, Mapping):
            raise SnapshotValidationError("Snapshot must be an object with 'nodes' and 'edges'")
        nodes = data.get("nodes")
        edges = data.get("edges")
        if not isinstance(nodes, list) or not isinstance(edges, list):
            raise SnapshotValidationError("Snapshot 'nodes' and 'edges' must be lists")

        graph = cls(self_edges_are_cycles=self_edges_are_cycles)
        for node in nodes:
            if not isinstance(node, str):
                raise SnapshotValidationError(f"Node identity must be a string, got {node!r}")
            if node in graph._forward:
                raise SnapshotValidationError(f"Duplicate node identity: {node}")
            graph.add_node(node)

        for edge in edges:
            if not isinstance(edge, Mapping):
                raise SnapshotValidationError(f"Edge must be an object, got {edge!r}")
            src, dst = edge.get("from"), edge.get("to")
            if not isinstance(src, str) or not isinstance(dst, str):
                raise SnapshotValidationError(f"Edge needs string 'from' and 'to': {edge!r}")
            for endpoint in (src, dst):
                if endpoint not in graph._forward:
                    raise SnapshotValidationError(
                        f"Edge {src} -> {dst} references missing node {endpoint}"
                    )
            graph.add_edge(src, dst)
        return graph

    @classmethod
    def from_json(cls, text: str, self_edges_are_cycles: bool = False) -> "DependencyGraph":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SnapshotValidationError(f"Snapshot is not valid JSON: {exc}") from exc
        return cls.from_dict(data, self_edges_are_cycles=self_edges_are_cycles)
