"""Concrete graphs, solutions and infeasibility reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..constants import ConstraintFamily


@dataclass(frozen=True)
class Node:
    """One concrete package instance with every attribute resolved."""
    name: str
    version: str
    variants: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    platform: Optional[str] = None
    os: Optional[str] = None
    target: Optional[str] = None
    compiler: Optional[str] = None
    compiler_version: Optional[str] = None
    flags: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    external: bool = False
    external_prefix: Optional[str] = None
    root: bool = False

    def variant(self, name: str) -> Tuple[str, ...]:
        return self.variants.get(name, ())

    def to_dict(self) -> Dict[str, Any]:
        variants = {
            k: (list(v) if len(v) != 1 else v[0]) for k, v in sorted(self.variants.items())
        }
        data: Dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "variants": variants,
            "platform": self.platform,
            "os": self.os,
            "target": self.target,
            "compiler": f"{self.compiler}@{self.compiler_version}" if self.compiler else None,
            "flags": {k: list(v) for k, v in self.flags.items() if v},
            "root": self.root,
            "external": self.external,
        }
        if self.external_prefix:
            data["prefix"] = self.external_prefix
        return data

    def __str__(self) -> str:
        text = f"{self.name}@{self.version}"
        if self.compiler:
            text += f" %{self.compiler}@{self.compiler_version}"
        for name, values in sorted(self.variants.items()):
            text += f" {name}={','.join(values)}"
        return text


@dataclass(frozen=True)
class Edge:
    parent: str
    child: str
    kinds: Tuple[str, ...]


@dataclass(frozen=True)
class ConcreteGraph:
    """The solved DAG; nodes are in discovery order."""
    nodes: Tuple[Node, ...]
    edges: Tuple[Edge, ...]
    providers: Dict[str, str] = field(default_factory=dict)

    def node(self, name: str) -> Node:
        """Node by package name, or by virtual through its provider.

        Raises:
            KeyError: If nothing in the graph answers to ``name``.
        """
        name = self.providers.get(name, name)
        for node in self.nodes:
            if node.name == name:
                return node
        raise KeyError(name)

    def __contains__(self, name: str) -> bool:
        name = self.providers.get(name, name)
        return any(n.name == name for n in self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(n.name for n in self.nodes)

    @property
    def roots(self) -> Tuple[Node, ...]:
        return tuple(n for n in self.nodes if n.root)

    def dependencies(self, name: str) -> Tuple[Node, ...]:
        children = [e.child for e in self.edges if e.parent == name]
        return tuple(n for n in self.nodes if n.name in children)

    def dependents(self, name: str) -> Tuple[Node, ...]:
        parents = [e.parent for e in self.edges if e.child == name]
        return tuple(n for n in self.nodes if n.name in parents)

    def topological_order(self) -> List[str]:
        """Names with parents before children; ties keep discovery order."""
        indegree = {n.name: 0 for n in self.nodes}
        for edge in self.edges:
            indegree[edge.child] += 1
        order: List[str] = []
        remaining = [n.name for n in self.nodes]
        while remaining:
            ready = [name for name in remaining if indegree[name] == 0]
            if not ready:
                raise ValueError("graph contains a cycle")
            name = ready[0]
            remaining.remove(name)
            order.append(name)
            for edge in self.edges:
                if edge.parent == name:
                    indegree[edge.child] -= 1
        return order

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [
                {"parent": e.parent, "child": e.child, "kinds": list(e.kinds)}
                for e in self.edges
            ],
            "providers": dict(sorted(self.providers.items())),
        }


@dataclass(frozen=True)
class Solution:
    """Outcome of a successful solve.

    ``optimal`` is False when the search budget ran out and ``graph`` is only
    the best incumbent found so far.
    """
    graph: ConcreteGraph
    score: Tuple[int, ...]
    iterations: int
    optimal: bool = True
    elapsed: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = self.graph.to_dict()
        data["score"] = list(self.score)
        data["optimal"] = self.optimal
        data["iterations"] = self.iterations
        return data


@dataclass
class InfeasibilityReport:
    """Why a request could not be satisfied.

    Attributes:
        primary: Family violated most often across the search (ties go to
            the one seen last).
        families: Violation count per family, in first-seen order.
        violations: Distinct violation messages, capped.
        core: Minimal set of request constraints that is still unsatisfiable,
            when an explanation was computed.
    """
    primary: Optional[ConstraintFamily]
    families: Dict[ConstraintFamily, int] = field(default_factory=dict)
    violations: List[str] = field(default_factory=list)
    iterations: int = 0
    core: Optional[List[str]] = None

    def summary(self) -> str:
        if self.primary is None:
            return "request is unsatisfiable"
        text = f"request is unsatisfiable ({self.primary.value} constraint violated)"
        first = next(
            (m for m in self.violations if m.startswith(f"[{self.primary.value}]")), None
        )
        if first:
            text += f": {first.split('] ', 1)[-1]}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "primary": self.primary.value if self.primary else None,
            "families": {f.value: c for f, c in self.families.items()},
            "violations": list(self.violations),
            "iterations": self.iterations,
        }
        if self.core is not None:
            data["core"] = list(self.core)
        return data
