"""Partial assignment with a trail for checkpoint/rollback.

Every mutation of the evolving graph goes through ``Assignment`` so that it
can be undone when the search backtracks. A checkpoint is just the current
trail length; rolling back replays the undo records above it in reverse.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Set, Tuple

from ..config import ExternalSpec
from ..request import Constraints


class NodeState(Enum):
    """Lifecycle of a node during the search."""
    UNSEEN = "unseen"
    PENDING = "pending"
    COMMITTED = "committed"
    REJECTED = "rejected"


@dataclass
class NodeRecord:
    """Mutable per-node attributes; only ``Assignment.set`` may change them."""
    name: str
    order: int
    state: NodeState = NodeState.PENDING
    root: bool = False
    version: Optional[str] = None
    version_weight: int = 0
    external: Optional[ExternalSpec] = None
    variants: Optional[Dict[str, Tuple[str, ...]]] = None
    variant_penalty: int = 0
    variant_retained: int = 0
    platform: Optional[str] = None
    os: Optional[str] = None
    os_source: Optional[str] = None
    target: Optional[str] = None
    target_weight: int = 0
    compiler: Optional[str] = None
    compiler_version: Optional[str] = None
    compiler_weight: int = 0
    explicit: Tuple[Constraints, ...] = ()
    imposed: Tuple[Tuple[Constraints, str], ...] = ()

    @property
    def committed(self) -> bool:
        return self.state is NodeState.COMMITTED

    def hard_constraints(self) -> List[Constraints]:
        """Explicit constraints plus imposed ones (the latter only for built nodes)."""
        constraints = list(self.explicit)
        if self.external is None:
            constraints.extend(c for c, _ in self.imposed)
        return constraints


@dataclass(frozen=True)
class WaitingEdge:
    """A consumer that needs a provider for a virtual not yet bound."""
    consumer: Optional[str]
    kinds: FrozenSet[str] = frozenset()
    imposes: Constraints = field(default_factory=Constraints)

    @property
    def is_root(self) -> bool:
        return self.consumer is None


class Assignment:
    """The evolving graph: nodes, edges, provider bindings and fired templates."""

    def __init__(self):
        self.nodes: Dict[str, NodeRecord] = {}
        self.edges: Dict[Tuple[str, str], FrozenSet[str]] = {}
        self.parents: Dict[str, List[str]] = {}
        self.children: Dict[str, List[str]] = {}
        self.providers: Dict[str, str] = {}
        self.consumers: Dict[str, Tuple[str, ...]] = {}
        self.waiting: Dict[str, Tuple[WaitingEdge, ...]] = {}
        self.fired: Set[Tuple[str, int]] = set()
        self._trail: List[Callable[[], None]] = []
        self._counter = 0

    # -- trail ---------------------------------------------------------------

    def checkpoint(self) -> int:
        return len(self._trail)

    def rollback(self, mark: int) -> None:
        """Undo every mutation recorded after ``mark``."""
        while len(self._trail) > mark:
            self._trail.pop()()

    # -- mutations -----------------------------------------------------------

    def set(self, record: NodeRecord, attribute: str, value: Any) -> None:
        old = getattr(record, attribute)
        if old is value:
            return
        setattr(record, attribute, value)
        self._trail.append(lambda: setattr(record, attribute, old))

    def add_node(self, name: str, root: bool = False) -> NodeRecord:
        record = NodeRecord(name=name, order=self._counter, root=root)
        self.nodes[name] = record
        self.parents[name] = []
        self.children[name] = []
        self._counter += 1

        def undo():
            del self.nodes[name]
            del self.parents[name]
            del self.children[name]
            self._counter -= 1
        self._trail.append(undo)
        return record

    def add_edge(self, parent: str, child: str, kinds: FrozenSet[str]) -> bool:
        """Add (or widen) an edge; returns True when the edge is new."""
        key = (parent, child)
        old = self.edges.get(key)
        if old is not None:
            merged = old | kinds
            if merged != old:
                self.edges[key] = merged
                self._trail.append(lambda: self.edges.__setitem__(key, old))
            return False

        self.edges[key] = frozenset(kinds)
        self.parents[child].append(parent)
        self.children[parent].append(child)

        def undo():
            del self.edges[key]
            self.parents[child].pop()
            self.children[parent].pop()
        self._trail.append(undo)
        return True

    def bind_provider(self, virtual: str, provider: str) -> None:
        self.providers[virtual] = provider
        self._trail.append(lambda: self.providers.pop(virtual))

    def add_consumer(self, virtual: str, consumer: str) -> None:
        old = self.consumers.get(virtual)
        if old and consumer in old:
            return
        self.consumers[virtual] = (old or ()) + (consumer,)
        if old is None:
            self._trail.append(lambda: self.consumers.pop(virtual))
        else:
            self._trail.append(lambda: self.consumers.__setitem__(virtual, old))

    def add_waiting(self, virtual: str, edge: WaitingEdge) -> None:
        old = self.waiting.get(virtual)
        self.waiting[virtual] = (old or ()) + (edge,)
        if old is None:
            self._trail.append(lambda: self.waiting.pop(virtual))
        else:
            self._trail.append(lambda: self.waiting.__setitem__(virtual, old))

    def take_waiting(self, virtual: str) -> Tuple[WaitingEdge, ...]:
        old = self.waiting.pop(virtual, ())
        if old:
            self._trail.append(lambda: self.waiting.__setitem__(virtual, old))
        return old

    def mark_fired(self, key: Tuple[str, int]) -> None:
        self.fired.add(key)
        self._trail.append(lambda: self.fired.discard(key))

    # -- queries -------------------------------------------------------------

    def lookup(self, slot: str) -> Optional[NodeRecord]:
        """Committed node for ``slot``; virtual slots resolve through their provider."""
        name = self.providers.get(slot, slot)
        record = self.nodes.get(name)
        if record is None or not record.committed:
            return None
        return record

    def state_of(self, name: str) -> NodeState:
        """Lifecycle state of ``name``; UNSEEN while the current branch has no such node."""
        record = self.nodes.get(name)
        return NodeState.UNSEEN if record is None else record.state

    def in_order(self) -> List[NodeRecord]:
        return sorted(self.nodes.values(), key=lambda r: r.order)

    def committed(self) -> List[NodeRecord]:
        return [r for r in self.in_order() if r.committed]

    def focus(self) -> Optional[NodeRecord]:
        """The pending node discovered first, i.e. the next one to assign."""
        pending = [r for r in self.nodes.values() if r.state is NodeState.PENDING]
        if not pending:
            return None
        return min(pending, key=lambda r: r.order)

    def reaches(self, source: str, target: str) -> bool:
        """True when ``target`` is reachable from ``source`` along edges."""
        stack = [source]
        seen = {source}
        while stack:
            current = stack.pop()
            if current == target:
                return True
            for child in self.children.get(current, ()):
                if child not in seen:
                    seen.add(child)
                    stack.append(child)
        return False

    def topological_order(self) -> List[str]:
        """Node names with every parent before its children (ties by discovery order)."""
        indegree = {name: len(self.parents[name]) for name in self.nodes}
        ready = sorted((n for n, d in indegree.items() if d == 0), key=lambda n: self.nodes[n].order)
        order: List[str] = []
        while ready:
            name = ready.pop(0)
            order.append(name)
            released = []
            for child in self.children[name]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    released.append(child)
            ready = sorted(ready + released, key=lambda n: self.nodes[n].order)
        return order

    def iter_edges(self) -> Iterator[Tuple[str, str, FrozenSet[str]]]:
        for (parent, child), kinds in self.edges.items():
            yield parent, child, kinds
