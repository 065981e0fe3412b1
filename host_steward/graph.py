"""Dependency graph over item identifiers.

Edges are oriented dependency -> dependent. Requirement edges may reference
ids that were never registered; those endpoints are kept so `validate()` can
report them as missing instead of silently dropping the edge.

Ordering
- `topo_order()` is Kahn's algorithm over registered nodes. Ties are broken by
  registration order (FIFO queue), so the order is deterministic for a given
  registration sequence.
- Nodes on (or downstream of) a cycle never reach indegree zero and are left
  out of `topo_order()`; `validate()` reports the cycle.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from .item import Item


@dataclass(frozen=True)
class GraphReport:
    missing: List[str] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.cycles


class DependencyGraph:
    def __init__(self) -> None:
        self.nodes: Dict[str, Item] = {}
        self.outgoing: Dict[str, List[str]] = {}
        self.incoming: Dict[str, List[str]] = {}

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.nodes

    def _slot(self, item_id: str) -> None:
        self.outgoing.setdefault(item_id, [])
        self.incoming.setdefault(item_id, [])

    def _link(self, src: str, dst: str) -> None:
        self._slot(src)
        self._slot(dst)
        if dst not in self.outgoing[src]:
            self.outgoing[src].append(dst)
        if src not in self.incoming[dst]:
            self.incoming[dst].append(src)

    def add_items(self, items: Iterable[Item]) -> "DependencyGraph":
        items = list(items)
        for it in items:
            self.nodes[it.id] = it
            self._slot(it.id)
        for it in items:
            for dep in it.requires:
                self._link(dep, it.id)
        return self

    def add_edge(self, src: str, dst: str) -> "DependencyGraph":
        self._link(src, dst)
        return self

    def all_items(self) -> List[Item]:
        return list(self.nodes.values())

    def edges(self) -> List[Tuple[str, str]]:
        return [(src, dst) for src, dsts in self.outgoing.items() for dst in dsts]

    def roots(self) -> List[str]:
        """Registered nodes with no incoming edges."""
        return [i for i in self.nodes if not self.incoming.get(i)]

    def leaves(self) -> List[str]:
        """Registered nodes nothing depends on."""
        return [i for i in self.nodes if not self.outgoing.get(i)]

    def dependencies_of(self, item_id: str) -> List[str]:
        return list(self.incoming.get(item_id, ()))

    def dependents_of(self, item_id: str) -> List[str]:
        return list(self.outgoing.get(item_id, ()))

    def _kahn(self) -> Tuple[List[str], Dict[str, int]]:
        indeg: Dict[str, int] = {}
        for i in self.incoming:
            indeg[i] = len(self.incoming[i])
        for i in self.nodes:
            indeg.setdefault(i, 0)

        queue = deque(i for i, d in indeg.items() if d == 0)
        order: List[str] = []
        while queue:
            n = queue.popleft()
            order.append(n)
            for m in self.outgoing.get(n, ()):
                indeg[m] -= 1
                if indeg[m] == 0:
                    queue.append(m)
        return order, indeg

    def validate(self) -> GraphReport:
        missing: List[str] = []
        for deps in self.incoming.values():
            for dep in deps:
                if dep not in self.nodes and dep not in missing:
                    missing.append(dep)

        order, indeg = self._kahn()
        cycles: List[List[str]] = []
        if len(order) != len(indeg):
            in_cycle: Set[str] = {i for i, d in indeg.items() if d > 0}
            # Best effort: walk still-blocked predecessors until a node repeats.
            for start in [i for i in indeg if i in in_cycle]:
                if start not in in_cycle:
                    continue
                path = [start]
                seen = {start: 0}
                cur = start
                while True:
                    nxt = next((p for p in self.incoming.get(cur, ()) if p in in_cycle), None)
                    if nxt is None:
                        break
                    if nxt in seen:
                        # Predecessor walk: reverse so the witness reads in edge direction.
                        loop = path[seen[nxt]:]
                        cycles.append(list(reversed(loop)) + [loop[-1]])
                        break
                    seen[nxt] = len(path)
                    path.append(nxt)
                    cur = nxt
                in_cycle.difference_update(path)
        return GraphReport(missing=missing, cycles=cycles)

    def has_cycle(self) -> bool:
        order, indeg = self._kahn()
        return len(order) != len(indeg)

    def topo_order(self) -> List[str]:
        order, _ = self._kahn()
        return [i for i in order if i in self.nodes]
