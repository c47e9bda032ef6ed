"""Lexicographic objective: final scores, admissible bounds, pruning.

A score is a tuple compared lexicographically, every slot minimised
(maximised quantities are negated):

 0  version weight of roots
 1  non-default variant values on roots
 2  -multi-valued defaults kept on roots
 3  provider weight of root providers
 4  non-default variant values on other nodes
 5  provider weight of other providers
 6  -multi-valued defaults kept on other nodes
 7  node count minus nodes whose compiler matches their preference
 8  version weight of all nodes
 9  compiler weight of all nodes
10  -nodes whose target matches their preference
11  target weight of all nodes

A lower bound is valid for every slot at once over all completions of a
partial assignment, so comparing it lexicographically against the incumbent
decides whether the branch can still win.
"""

from __future__ import annotations

from typing import Dict, Set, Tuple

from ..catalog.models import Catalog
from ..request import Request
from .assignment import Assignment, NodeRecord
from .attributes import AttributeEngine
from .providers import ProviderSelector

Score = Tuple[int, ...]

TIERS = (
    "root version weight",
    "root non-default variants",
    "root multi-valued defaults kept",
    "root provider weight",
    "non-default variants",
    "provider weight",
    "multi-valued defaults kept",
    "node count minus compiler matches",
    "version weight",
    "compiler weight",
    "target matches",
    "target weight",
)


def can_improve(bound: Score, incumbent: Score) -> bool:
    """True when a branch bounded below by ``bound`` may still beat ``incumbent``."""
    return tuple(bound) < tuple(incumbent)


def describe_score(score: Score) -> Dict[str, int]:
    return dict(zip(TIERS, score))


class Objective:
    """Scores complete graphs and bounds partial ones."""

    def __init__(self, catalog: Catalog, request: Request,
                 attributes: AttributeEngine, providers: ProviderSelector):
        self.catalog = catalog
        self.request = request
        self.attributes = attributes
        self.providers = providers
        self._multi = {name: entry.multi_default_count for name, entry in catalog.packages.items()}
        self._exempt = {name: self._possible_explicit(name) for name in catalog.packages}

    def _possible_explicit(self, package: str) -> Dict[str, Set[str]]:
        """Variant values a user may have set on ``package``, directly or through a virtual."""
        sources = [self.request.explicit(package)]
        for virtual in self.catalog.virtuals:
            if package in self.catalog.providers_of(virtual):
                sources.append(self.request.explicit(virtual))
        return AttributeEngine.explicit_values(tuple(sources))

    def optimistic_exempt(self, package: str) -> Dict[str, Set[str]]:
        """Variant values the bound never charges on ``package``."""
        return self._exempt[package]

    def score(self, state: Assignment) -> Score:
        """Exact score of a fully committed assignment."""
        compiler_match, target_match = self.attributes.preference_matches(state)
        slots = [0] * len(TIERS)
        for record in state.nodes.values():
            penalty, retained = self.attributes.variant_cost(
                record, record.variants or {}, AttributeEngine.explicit_values(record.explicit)
            )
            if record.root:
                slots[0] += record.version_weight
                slots[1] += penalty
                slots[2] -= retained
            else:
                slots[4] += penalty
                slots[6] -= retained
            slots[8] += record.version_weight
            slots[9] += record.compiler_weight
            slots[11] += record.target_weight
        for virtual, provider in state.providers.items():
            weight = self.providers.weight(state, virtual, provider)
            slots[3 if state.nodes[provider].root else 5] += weight
        slots[7] = len(state.nodes) - sum(1 for v in compiler_match.values() if v)
        slots[10] = -sum(1 for v in target_match.values() if v)
        return tuple(slots)

    def lower_bound(self, state: Assignment) -> Score:
        """Componentwise lower bound over every completion of ``state``."""
        slots = [0] * len(TIERS)
        assigned: Set[str] = set()
        for record in state.nodes.values():
            if record.version is not None:
                slots[8] += record.version_weight
                if record.root:
                    slots[0] += record.version_weight
            if record.variants is not None:
                assigned.add(record.name)
                penalty, retained = self._optimistic_cost(record)
                if record.root:
                    slots[1] += penalty
                    slots[2] -= retained
                else:
                    slots[4] += penalty
                    slots[6] -= retained
            elif record.root:
                slots[2] -= self._multi[record.name]
            if record.committed:
                slots[9] += record.compiler_weight
                slots[11] += record.target_weight

        for virtual, edges in state.waiting.items():
            if any(e.is_root for e in edges):
                slots[2] -= max((self._multi[p] for p in self.catalog.providers_of(virtual)), default=0)

        roots = {name for name, r in state.nodes.items() if r.root}
        slots[6] -= sum(m for name, m in self._multi.items() if name not in assigned and name not in roots)

        for virtual, provider in state.providers.items():
            weight = self.providers.static_weight(virtual, provider)
            slots[3 if state.nodes[provider].root else 5] += weight

        slots[10] = -len(self.catalog.packages)
        return tuple(slots)

    def _optimistic_cost(self, record: NodeRecord) -> Tuple[int, int]:
        return self.attributes.variant_cost(record, record.variants or {}, self.optimistic_exempt(record.name))
