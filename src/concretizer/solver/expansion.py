"""Graph expansion: materialize dependencies of committed nodes up to a fixpoint."""

from __future__ import annotations

import logging
from typing import FrozenSet

from ..analysis.conditions import Truth, evaluate
from ..catalog.models import Catalog, DependencyTemplate
from ..constants import ConstraintFamily
from ..errors import Violation
from ..request import Constraints, Request
from .assignment import Assignment, NodeRecord, NodeState, WaitingEdge
from .attributes import AttributeEngine
from .providers import ProviderSelector

logger = logging.getLogger(__name__)


class GraphExpander:
    """Creates nodes and edges as dependency templates trigger.

    Only committed nodes fire their templates; a template is fired at most
    once per branch. Virtual dependencies are parked until the search binds a
    provider for them.
    """

    def __init__(self, catalog: Catalog, request: Request,
                 attributes: AttributeEngine, providers: ProviderSelector):
        self.catalog = catalog
        self.request = request
        self.attributes = attributes
        self.providers = providers

    def seed(self, state: Assignment) -> None:
        """Create the requested roots; virtual roots wait for a provider."""
        for root in self.request.roots:
            if self.catalog.is_virtual(root.name):
                state.add_waiting(root.name, WaitingEdge(consumer=None))
            else:
                self._create(state, root.name, root=True)

    def _create(self, state: Assignment, name: str, root: bool = False) -> NodeRecord:
        record = state.nodes.get(name)
        if record is None:
            record = state.add_node(name, root=root)
            explicit = self.request.explicit(name)
            if not explicit.is_empty:
                state.set(record, "explicit", (explicit,))
            logger.debug("New node %s%s", name, " (root)" if root else "")
        elif root and not record.root:
            state.set(record, "root", True)
        return record

    def bind(self, state: Assignment, virtual: str, provider: str) -> None:
        """Use ``provider`` for every edge waiting on ``virtual``.

        Raises:
            Violation: If an edge would close a cycle or a late constraint fails.
        """
        state.bind_provider(virtual, provider)
        waiting = state.take_waiting(virtual)
        record = self._create(state, provider, root=any(w.is_root for w in waiting))

        explicit = self.request.explicit(virtual)
        if not explicit.is_empty:
            state.set(record, "explicit", record.explicit + (explicit,))
            if record.committed:
                self.attributes.check_constraints(record, explicit, f"requested for {virtual}")

        for edge in waiting:
            if not edge.is_root:
                self._attach(state, edge.consumer, provider, edge.kinds, edge.imposes,
                             f"{edge.consumer} -> {virtual}")

    def propagate(self, state: Assignment) -> None:
        """Fire every template that now holds, until nothing changes.

        Raises:
            Violation: On cycles, triggered conflicts, failed impositions or
                provider inconsistencies.
        """
        while True:
            progressed = False
            for record in state.committed():
                if record.external is not None:
                    continue
                entry = self.catalog.package(record.name)
                for idx, template in enumerate(entry.dependencies):
                    key = (record.name, idx)
                    if key in state.fired:
                        continue
                    if evaluate(template.when, state) is Truth.TRUE:
                        state.mark_fired(key)
                        self._fire(state, record, template)
                        progressed = True
                self._check_conflicts(state, record)
            if not progressed:
                break
        self.check_providers(state, final=False)

    def _fire(self, state: Assignment, record: NodeRecord, template: DependencyTemplate) -> None:
        source = f"{record.name} -> {template.name}"
        if self.catalog.is_virtual(template.name):
            state.add_consumer(template.name, record.name)
            provider = state.providers.get(template.name)
            if provider is None:
                state.add_waiting(template.name, WaitingEdge(record.name, template.kinds, template.imposes))
                return
            self._attach(state, record.name, provider, template.kinds, template.imposes, source)
        else:
            self._attach(state, record.name, template.name, template.kinds, template.imposes, source)

    def _attach(self, state: Assignment, parent: str, child: str, kinds: FrozenSet[str],
                imposes: Constraints, source: str) -> None:
        if child == parent or (child in state.nodes and state.reaches(child, parent)):
            raise Violation(ConstraintFamily.GRAPH, f"dependency cycle through {parent} -> {child}", child)
        record = self._create(state, child)
        state.add_edge(parent, child, kinds)
        if not imposes.is_empty:
            self.impose(state, record, imposes, source)
        self.attributes.check_inherited_os(state, record, state.nodes[parent])

    def impose(self, state: Assignment, record: NodeRecord, constraints: Constraints, source: str) -> None:
        """Record an imposed constraint; check it at once if the node is already built."""
        state.set(record, "imposed", record.imposed + ((constraints, source),))
        if record.committed and record.external is None:
            self.attributes.check_constraints(record, constraints, source)

    def _check_conflicts(self, state: Assignment, record: NodeRecord) -> None:
        if record.external is not None:
            return
        for conflict in self.catalog.package(record.name).conflicts:
            if evaluate(conflict.when, state) is Truth.TRUE:
                detail = conflict.message or conflict.when.describe()
                raise Violation(ConstraintFamily.CONFLICT, f"{record.name} conflicts with {detail}", record.name)

    def check_providers(self, state: Assignment, final: bool) -> None:
        """A bound provider must provide its virtual; nobody else in the graph may.

        Before the fixpoint an UNKNOWN provider condition is tolerated; at the
        fixpoint it counts as false.
        """
        committed = state.committed()
        for virtual, provider in state.providers.items():
            truth = self.providers.provides(state, provider, virtual)
            if truth is Truth.FALSE or (final and truth is not Truth.TRUE):
                raise Violation(ConstraintFamily.PROVIDER,
                                f"{provider} does not provide {virtual} as configured", provider)
            for record in committed:
                if record.name != provider and self.providers.provides(state, record.name, virtual) is Truth.TRUE:
                    raise Violation(ConstraintFamily.PROVIDER,
                                    f"both {provider} and {record.name} would provide {virtual}", record.name)

    def finalize(self, state: Assignment) -> None:
        """Checks that only make sense once every node is committed.

        Raises:
            Violation: PROVIDER for unmet obligations, GRAPH for required
                dependencies that never appeared or unreachable nodes, OS for
                nodes off the operating system they inherit.
        """
        self.check_providers(state, final=True)
        for name in self.request.dependencies:
            if self.catalog.is_virtual(name):
                present = name in state.providers
            else:
                present = state.state_of(name) is not NodeState.UNSEEN
            if not present:
                raise Violation(ConstraintFamily.GRAPH, f"^{name} is not a dependency of any root", name)

        seen = set()
        stack = [r.name for r in state.nodes.values() if r.root]
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)
            stack.extend(state.children[name])
        unreachable = sorted(set(state.nodes) - seen)
        if unreachable:
            raise Violation(ConstraintFamily.GRAPH, f"nodes not reachable from a root: {', '.join(unreachable)}")
        self.attributes.check_os_inheritance(state)
