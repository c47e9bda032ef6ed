"""Minimal unsatisfiable subsets of a request's explicit constraints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from ..catalog.models import Catalog
from ..config import SolverConfig
from ..errors import SearchBudgetExceeded, UnsatisfiableError
from ..request import Constraints, Request, RootRequest, describe_item
from .search import Solver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestItem:
    """One deletable assertion of a request.

    ``attribute`` None on a dependency item means "``package`` must be in
    the graph" (the ``^B`` form).
    """
    package: str
    dependency: bool
    attribute: Optional[str] = None
    key: Optional[str] = None
    value: Any = None

    def describe(self) -> str:
        prefix = f"^{self.package}" if self.dependency else self.package
        if self.attribute is None:
            return prefix
        if self.attribute == "version":
            return f"{prefix}@{self.value}"
        return f"{prefix} {describe_item(self.attribute, self.key, self.value)}"


def request_items(request: Request) -> List[RequestItem]:
    items: List[RequestItem] = []
    for root in request.roots:
        for attr, key, value in root.constraints.items():
            items.append(RequestItem(root.name, False, attr, key, value))
    for name, constraints in request.dependencies.items():
        items.append(RequestItem(name, True))
        for attr, key, value in constraints.items():
            items.append(RequestItem(name, True, attr, key, value))
    return items


def rebuild_request(request: Request, items: List[RequestItem]) -> Request:
    """The request keeping only ``items`` (roots themselves always stay)."""
    roots = []
    for root in request.roots:
        kept = [(i.attribute, i.key, i.value) for i in items
                if not i.dependency and i.package == root.name and i.attribute]
        roots.append(RootRequest(root.name, Constraints.from_items(kept)))
    present = {i.package for i in items if i.dependency and i.attribute is None}
    dependencies = {}
    for name in request.dependencies:
        if name in present:
            kept = [(i.attribute, i.key, i.value) for i in items
                    if i.dependency and i.package == name and i.attribute]
            dependencies[name] = Constraints.from_items(kept)
    return Request(roots=tuple(roots), dependencies=dependencies)


def explain_unsatisfiable(catalog: Catalog, request: Request, config: Optional[SolverConfig] = None,
                          max_iterations: Optional[int] = None) -> Optional[List[str]]:
    """Deletion-based minimal core of the request's explicit constraints.

    Each item is dropped in turn and kept out when the rest is still
    unsatisfiable. A sub-solve that runs out of budget counts as satisfiable
    so the item stays in the core.

    Returns:
        Descriptions of the core items (empty when the bare roots are already
        unsatisfiable), or None when the request is satisfiable.
    """
    solver = Solver(catalog, config)

    def unsatisfiable(items: List[RequestItem]) -> bool:
        try:
            solver.solve(rebuild_request(request, items), max_iterations=max_iterations)
        except UnsatisfiableError:
            return True
        except SearchBudgetExceeded:
            return False
        return False

    core = request_items(request)
    if not unsatisfiable(core):
        return None
    for item in list(core):
        if item not in core:
            continue
        trial = [i for i in core if i is not item]
        # Dropping ^B also drops every constraint on B
        if item.dependency and item.attribute is None:
            trial = [i for i in trial if not (i.dependency and i.package == item.package)]
        if unsatisfiable(trial):
            core = trial
    described = [i.describe() for i in core]
    logger.info("Minimal conflicting request constraints: %s", ", ".join(described) or "(roots only)")
    return described
