"""Depth-first branch-and-bound over the choice points of a concretization.

The search keeps an explicit stack of frames. A frame remembers the trail
checkpoint taken before its choice point and an iterator over the remaining
options; trying an option means rolling back to the checkpoint, applying the
option and propagating. Choice points are taken in a fixed order:

1. a virtual waiting for a provider (oldest first);
2. otherwise the pending node discovered first, attribute by attribute:
   version (platform and OS follow from it), variants, then target and
   compiler together, after which the node is committed.

Options are tried best-first and an incumbent is only replaced by a strictly
better score, so the result is deterministic.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..catalog.models import Catalog
from ..common.logging_utils import is_debug_enabled
from ..config import SolverConfig
from ..constants import Constants, ConstraintFamily
from ..errors import CatalogError, ConfigError, SearchBudgetExceeded, UnsatisfiableError, Violation
from ..request import Request
from ..versioning import parse_version, parse_version_constraint
from .assignment import Assignment, NodeRecord, NodeState
from .attributes import AttributeEngine
from .expansion import GraphExpander
from .objectives import Objective, Score, can_improve, describe_score
from .providers import ProviderSelector
from .result import ConcreteGraph, Edge, InfeasibilityReport, Node, Solution

logger = logging.getLogger(__name__)

_DONE = object()


@dataclass
class _Frame:
    """One open choice point on the search stack."""
    mark: int
    label: str
    options: Iterator[Any]
    apply: Callable[[Any], None]
    monotone: bool = False


class Solver:
    """Concretizes requests against one catalog and configuration.

    The catalog and configuration are shared read-only by every solve.
    """

    def __init__(self, catalog: Catalog, config: Optional[SolverConfig] = None):
        self.catalog = catalog
        self.config = config or SolverConfig()
        validate_config(self.catalog, self.config)

    def solve(self, request: Request, max_iterations: Optional[int] = None,
              time_limit: Optional[float] = None) -> Solution:
        """Find the optimal concrete graph for ``request``.

        Args:
            request: Roots and explicit constraints.
            max_iterations: Overrides the configured iteration budget.
            time_limit: Overrides the configured wall-clock budget (seconds).

        Returns:
            The best Solution; ``optimal`` is False when the budget ran out first.

        Raises:
            CatalogError: If the request names unknown things.
            UnsatisfiableError: If no assignment satisfies every hard constraint.
            SearchBudgetExceeded: If the budget ran out before any solution was found.
        """
        request.validate(self.catalog)
        run = _SearchRun(
            self.catalog,
            self.config,
            request,
            max_iterations if max_iterations is not None else self.config.max_iterations,
            time_limit if time_limit is not None else self.config.time_limit,
        )
        return run.execute()


def solve(catalog: Catalog, request: Request, config: Optional[SolverConfig] = None, **budget) -> Solution:
    """Convenience wrapper: ``Solver(catalog, config).solve(request, **budget)``."""
    return Solver(catalog, config).solve(request, **budget)


class _SearchRun:
    """State of a single solve."""

    def __init__(self, catalog: Catalog, config: SolverConfig, request: Request,
                 max_iterations: Optional[int], time_limit: Optional[float]):
        self.catalog = catalog
        self.request = request
        self.max_iterations = max_iterations
        self.time_limit = time_limit

        self.state = Assignment()
        self.attributes = AttributeEngine(catalog, config, request)
        self.providers = ProviderSelector(catalog, config)
        self.expander = GraphExpander(catalog, request, self.attributes, self.providers)
        self.objective = Objective(catalog, request, self.attributes, self.providers)

        self.best: Optional[Solution] = None
        self.best_score: Optional[Score] = None
        self.iterations = 0
        self.pruned = 0
        self.exhausted = False
        self._started = 0.0
        self._families: Dict[ConstraintFamily, int] = {}
        self._last_seen: Dict[ConstraintFamily, int] = {}
        self._messages: List[str] = []

    def execute(self) -> Solution:
        self._started = time.monotonic()
        logger.info("%s Concretizing %s", Constants.SOLVE, self.request)

        stack: List[_Frame] = []
        try:
            self.expander.seed(self.state)
        except Violation as violation:
            self._reject(violation)
        else:
            self._advance(stack)

        while stack:
            if self._out_of_budget():
                self.exhausted = True
                break
            frame = stack[-1]
            self.state.rollback(frame.mark)
            option = next(frame.options, _DONE)
            if option is _DONE:
                stack.pop()
                continue
            self.iterations += 1
            try:
                frame.apply(option)
            except Violation as violation:
                self._reject(violation)
                continue
            if self._advance(stack) and frame.monotone:
                # later options of this frame bound no lower
                stack.pop()

        elapsed = time.monotonic() - self._started
        if self.best is not None:
            solution = Solution(
                graph=self.best.graph,
                score=self.best.score,
                iterations=self.iterations,
                optimal=not self.exhausted,
                elapsed=elapsed,
            )
            logger.info(
                "%s Solved %s: %d nodes, %d iterations, %d pruned%s",
                Constants.SOLVE, self.request, len(solution.graph), self.iterations, self.pruned,
                "" if solution.optimal else " (budget exhausted, best effort)",
            )
            return solution

        if self.exhausted:
            logger.info("%s Budget exhausted after %d iterations without a solution",
                        Constants.SOLVE, self.iterations)
            raise SearchBudgetExceeded(self.iterations, elapsed)

        report = self.report()
        logger.info("%s %s", Constants.SOLVE, report.summary())
        raise UnsatisfiableError(report)

    # -- stepping ------------------------------------------------------------

    def _advance(self, stack: List[_Frame]) -> bool:
        """Propagate, bound, then open the next choice point or accept.

        Returns True when the branch was cut by the bound.
        """
        try:
            self.expander.propagate(self.state)
            if self.best_score is not None:
                if not can_improve(self.objective.lower_bound(self.state), self.best_score):
                    self.pruned += 1
                    return True
            frame = self._next_frame()
            if frame is None:
                self.expander.finalize(self.state)
                self._accept()
                return False
            stack.append(frame)
        except Violation as violation:
            self._reject(violation)
        return False

    def _next_frame(self) -> Optional[_Frame]:
        state = self.state
        mark = state.checkpoint()
        if state.waiting:
            virtual = next(iter(state.waiting))
            candidates = self.providers.candidates(state, virtual)
            if not candidates:
                raise Violation(ConstraintFamily.PROVIDER, f"no package can provide {virtual}")
            return _Frame(mark, f"provider of {virtual}", iter(candidates),
                          lambda p: self.expander.bind(state, virtual, p))

        record = state.focus()
        if record is None:
            return None
        if record.version is None:
            options = self.attributes.version_choices(state, record)
            return _Frame(mark, f"version of {record.name}", options,
                          lambda o: self.attributes.apply_version(state, record, o))
        if record.variants is None:
            options = self.attributes.variant_options(record, self.objective.optimistic_exempt(record.name))
            return _Frame(mark, f"variants of {record.name}", options,
                          lambda o: self.attributes.apply_variants(state, record, o), monotone=True)
        options = self.attributes.toolchain_options(state, record)
        return _Frame(mark, f"toolchain of {record.name}", iter(options),
                      lambda o: self._commit(record, o))

    def _commit(self, record: NodeRecord, option) -> None:
        self.attributes.apply_toolchain(self.state, record, option)
        for constraints in record.hard_constraints():
            self.attributes.check_constraints(record, constraints, "requested")
        self.state.set(record, "state", NodeState.COMMITTED)

    def _accept(self) -> None:
        score = self.objective.score(self.state)
        if self.best_score is not None and not score < self.best_score:
            return
        self.best_score = score
        self.best = Solution(graph=self._graph(), score=score, iterations=self.iterations)
        if is_debug_enabled(logger):
            logger.debug("New incumbent after %d iterations: %s", self.iterations, describe_score(score))

    def _reject(self, violation: Violation) -> None:
        family = violation.family
        self._families[family] = self._families.get(family, 0) + 1
        self._last_seen[family] = self.iterations
        message = f"[{family.value}] {violation.message}"
        if message not in self._messages and len(self._messages) < Constants.MAX_REPORTED_VIOLATIONS:
            self._messages.append(message)
        record = self.state.nodes.get(violation.package) if violation.package else None
        if record is not None and record.state is NodeState.PENDING:
            self.state.set(record, "state", NodeState.REJECTED)
        logger.debug("Rejected branch: %s", message)

    def _out_of_budget(self) -> bool:
        if self.max_iterations is not None and self.iterations >= self.max_iterations:
            return True
        if self.time_limit is not None and time.monotonic() - self._started >= self.time_limit:
            return True
        return False

    # -- results -------------------------------------------------------------

    def report(self) -> InfeasibilityReport:
        primary = None
        if self._families:
            primary = max(self._families, key=lambda f: (self._families[f], self._last_seen[f]))
        return InfeasibilityReport(
            primary=primary,
            families=dict(self._families),
            violations=list(self._messages),
            iterations=self.iterations,
        )

    def _graph(self) -> ConcreteGraph:
        state = self.state
        flags = self.attributes.resolve_flags(state)
        nodes = []
        for record in state.in_order():
            nodes.append(Node(
                name=record.name,
                version=record.version,
                variants=dict(sorted((record.variants or {}).items())),
                platform=record.platform,
                os=record.os,
                target=record.target,
                compiler=record.compiler,
                compiler_version=record.compiler_version,
                flags=flags.get(record.name, {}),
                external=record.external is not None,
                external_prefix=record.external.prefix if record.external else None,
                root=record.root,
            ))
        edges = tuple(
            Edge(parent, child, tuple(sorted(kinds)))
            for parent, child, kinds in sorted(
                state.iter_edges(), key=lambda e: (state.nodes[e[0]].order, state.nodes[e[1]].order)
            )
        )
        return ConcreteGraph(nodes=tuple(nodes), edges=edges, providers=dict(state.providers))


def validate_config(catalog: Catalog, config: SolverConfig) -> None:
    """Reject configuration that references things the catalog does not have.

    Raises:
        ConfigError: On the first inconsistency.
    """
    if config.default_platform and config.default_platform not in catalog.platforms:
        raise ConfigError(f"defaults.platform: unknown platform '{config.default_platform}'")
    if config.default_os and catalog.operating_system(config.default_os) is None:
        raise ConfigError(f"defaults.os: unknown operating system '{config.default_os}'")
    if config.default_target and catalog.target(config.default_target) is None:
        raise ConfigError(f"defaults.target: unknown target '{config.default_target}'")
    for target in config.targets:
        if catalog.target(target) is None:
            raise ConfigError(f"targets: unknown target '{target}'")
    for spec in config.compilers + config.allowed_compilers:
        if spec.name not in catalog.compiler_names():
            raise ConfigError(f"compilers: unknown compiler '{spec.name}'")
    for virtual, names in config.providers.items():
        _check_providers(catalog, virtual, names, "providers")

    for name, prefs in config.packages.items():
        where = f"packages.{name}"
        if not catalog.is_package(name):
            logger.warning("Configuration for unknown package '%s' is ignored", name)
            continue
        entry = catalog.package(name)
        for text in prefs.version:
            try:
                parse_version_constraint(text)
            except ValueError as exc:
                raise ConfigError(f"{where}.version: {exc}") from exc
        for variant, values in prefs.variants.items():
            vdef = entry.variants.get(variant)
            if vdef is None:
                raise ConfigError(f"{where}.variants: '{name}' has no variant '{variant}'")
            bad = [v for v in values if not vdef.allows(v)]
            if bad or (not vdef.multi and len(values) != 1):
                raise ConfigError(f"{where}.variants.{variant}: invalid default {','.join(values)}")
        for spec in prefs.compiler:
            if spec.name not in catalog.compiler_names():
                raise ConfigError(f"{where}.compiler: unknown compiler '{spec.name}'")
        for target in prefs.target:
            if catalog.target(target) is None:
                raise ConfigError(f"{where}.target: unknown target '{target}'")
        for virtual, names in prefs.providers.items():
            _check_providers(catalog, virtual, names, f"{where}.providers")
        for ext in prefs.externals:
            try:
                parse_version(ext.version)
                ext_constraints = ext.constraints
                if ext_constraints.target is not None and catalog.target(ext_constraints.target) is None:
                    raise CatalogError(f"unknown target '{ext_constraints.target}'")
                if ext_constraints.os is not None and catalog.operating_system(ext_constraints.os) is None:
                    raise CatalogError(f"unknown operating system '{ext_constraints.os}'")
                if ext_constraints.platform is not None and ext_constraints.platform not in catalog.platforms:
                    raise CatalogError(f"unknown platform '{ext_constraints.platform}'")
            except ValueError as exc:
                raise ConfigError(f"{where}.externals[{ext.index}]: {exc}") from exc


def _check_providers(catalog: Catalog, virtual: str, names, where: str) -> None:
    if not catalog.is_virtual(virtual):
        raise ConfigError(f"{where}: '{virtual}' is not a virtual")
    for name in names:
        if name not in catalog.providers_of(virtual):
            raise ConfigError(f"{where}.{virtual}: '{name}' does not provide {virtual}")
