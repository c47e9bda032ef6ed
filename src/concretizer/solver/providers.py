"""Virtual provider candidates and provider preference weights."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Tuple

from ..analysis.conditions import Truth, evaluate
from ..catalog.models import Catalog
from ..config import SolverConfig
from ..constants import Constants
from .assignment import Assignment

logger = logging.getLogger(__name__)


class ProviderSelector:
    """Decides who may provide a virtual and what choosing them costs."""

    def __init__(self, catalog: Catalog, config: SolverConfig):
        self.catalog = catalog
        self.config = config
        self._static: Dict[Tuple[str, str], int] = {}

    def provides(self, state: Assignment, package: str, virtual: str) -> Truth:
        """Three-valued "``package`` provides ``virtual``" under the current assignment."""
        results = [
            evaluate(t.when, state)
            for t in self.catalog.provider_templates(virtual)
            if t.package == package
        ]
        if any(r is Truth.TRUE for r in results):
            return Truth.TRUE
        if all(r is Truth.FALSE for r in results):
            return Truth.FALSE
        return Truth.UNKNOWN

    def candidates(self, state: Assignment, virtual: str) -> List[str]:
        """Providers still viable for ``virtual``, cheapest first.

        A package that is already a node and definitely does not provide the
        virtual is dropped; ties keep catalog order.
        """
        consumers = [w.consumer for w in state.waiting.get(virtual, ()) if w.consumer]
        consumers.extend(state.consumers.get(virtual, ()))
        names = self.catalog.providers_of(virtual)
        viable = [n for n in names if self.provides(state, n, virtual) is not Truth.FALSE]
        return sorted(
            viable,
            key=lambda n: (
                self.weight_for(virtual, n, consumers, bool(self.config.externals(n))),
                names.index(n),
            ),
        )

    def weight_for(self, virtual: str, provider: str, consumers: Iterable[str], external: bool) -> int:
        """Preference weight of ``provider`` for ``virtual``.

        0 for an external provider, else the best position in a consuming
        package's provider list, else the position in the global list, else
        a fixed penalty.
        """
        if external:
            return 0
        ranks = []
        for consumer in consumers:
            listed = self.config.package(consumer).providers.get(virtual, ())
            if provider in listed:
                ranks.append(listed.index(provider))
        if ranks:
            return min(ranks)
        listed = self.config.providers.get(virtual, ())
        if provider in listed:
            return listed.index(provider)
        return Constants.UNRANKED_PROVIDER_WEIGHT

    def weight(self, state: Assignment, virtual: str, provider: str) -> int:
        record = state.nodes[provider]
        return self.weight_for(
            virtual, provider, state.consumers.get(virtual, ()), record.external is not None
        )

    def static_weight(self, virtual: str, provider: str) -> int:
        """Smallest weight ``provider`` could ever get for ``virtual``."""
        key = (virtual, provider)
        if key not in self._static:
            if self.config.externals(provider):
                best = 0
            else:
                ranks = [Constants.UNRANKED_PROVIDER_WEIGHT]
                global_list = self.config.providers.get(virtual, ())
                if provider in global_list:
                    ranks.append(global_list.index(provider))
                for prefs in self.config.packages.values():
                    listed = prefs.providers.get(virtual, ())
                    if provider in listed:
                        ranks.append(listed.index(provider))
                best = min(ranks)
            self._static[key] = best
        return self._static[key]

