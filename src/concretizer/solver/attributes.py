"""Per-node attribute options and the structural inheritance passes.

Option generators return feasible values in preference order (best first) and
raise ``Violation`` when an attribute has no feasible value at all. Flags and
compiler/target match preferences are resolved over the finished graph since
a committed node can still gain parents later in the search.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from ..catalog.models import Catalog, CompilerEntry, DeclaredVersion, PackageEntry, VariantDef
from ..config import ExternalSpec, PackagePreferences, SolverConfig, preference_index
from ..constants import Constants, ConstraintFamily
from ..errors import Violation
from ..request import Constraints, Request
from ..versioning import parse_version_constraint
from .assignment import Assignment, NodeRecord

logger = logging.getLogger(__name__)

VariantValues = Dict[str, Tuple[str, ...]]
Cost = Tuple[int, ...]

_END = object()


@dataclass(frozen=True)
class VersionOption:
    version: str
    weight: int
    external: Optional[ExternalSpec] = None
    os: Optional[str] = None


@dataclass(frozen=True)
class VariantOption:
    values: VariantValues
    penalty: int
    retained: int


@dataclass(frozen=True)
class ToolchainOption:
    target: str
    compiler: str
    compiler_version: str
    compiler_weight: int = 0
    target_weight: int = 0


def _union(first: Tuple[str, ...], second: Tuple[str, ...]) -> Tuple[str, ...]:
    return first + tuple(f for f in second if f not in first)


class _Stream:
    """Memoizing view over an iterator so its items can be revisited by index."""

    def __init__(self, items: Iterable[Any]):
        self._source = iter(items)
        self._seen: List[Any] = []

    def get(self, index: int) -> Any:
        while len(self._seen) <= index:
            item = next(self._source, _END)
            if item is _END:
                return None
            self._seen.append(item)
        return self._seen[index]


def _best_first(streams: Sequence[Iterable[Tuple[Cost, Any]]],
                tie: Callable[[Tuple[Any, ...]], Any]) -> Iterator[Tuple[Cost, Tuple[Any, ...]]]:
    """Pick one item per stream, cheapest combination first.

    Every stream yields ``(cost, payload)`` pairs with nondecreasing cost
    tuples of one common length; a combination costs the elementwise sum.
    Combinations are produced lazily, so only the prefix the caller consumes
    is ever built. ``tie`` orders combinations of equal cost by payloads.
    """
    lanes = [_Stream(s) for s in streams]
    first = tuple(lane.get(0) for lane in lanes)
    if any(item is None for item in first):
        return
    heap: List[Tuple[Cost, Any, Tuple[int, ...], Tuple[Any, ...]]] = []
    seen: Set[Tuple[int, ...]] = set()

    def push(indices: Tuple[int, ...], items: Tuple[Any, ...]) -> None:
        if indices in seen:
            return
        seen.add(indices)
        cost = tuple(map(sum, zip(*(c for c, _ in items))))
        heapq.heappush(heap, (cost, tie(tuple(p for _, p in items)), indices, items))

    push(tuple(0 for _ in lanes), first)
    while heap:
        cost, _, indices, items = heapq.heappop(heap)
        yield cost, tuple(p for _, p in items)
        for pos, lane in enumerate(lanes):
            following = lane.get(indices[pos] + 1)
            if following is not None:
                push(indices[:pos] + (indices[pos] + 1,) + indices[pos + 1:],
                     items[:pos] + (following,) + items[pos + 1:])


class AttributeEngine:
    """Generates and checks attribute values for one node at a time."""

    def __init__(self, catalog: Catalog, config: SolverConfig, request: Optional[Request] = None):
        self.catalog = catalog
        self.config = config
        self.default_platform = config.default_platform or (catalog.platforms[0] if catalog.platforms else None)
        self.os_candidates = self._os_candidates(request)
        self._compiler_rank: Dict[Tuple[str, str], int] = {}

    def _os_candidates(self, request: Optional[Request]) -> List[str]:
        """Operating systems some node could pin and hand down to its dependencies."""
        named: Set[str] = set()
        if request is not None:
            named.update(r.constraints.os for r in request.roots if r.constraints.os)
            named.update(c.os for c in request.dependencies.values() if c.os)
        for entry in self.catalog.packages.values():
            named.update(t.imposes.os for t in entry.dependencies if t.imposes.os)
        for prefs in self.config.packages.values():
            named.update(e.constraints.os for e in prefs.externals if e.constraints.os)
        return [entry.name for entry in self.catalog.operating_systems if entry.name in named]

    # -- version -------------------------------------------------------------

    def version_options(self, record: NodeRecord) -> List[VersionOption]:
        """Externals first (in configuration order), then buildable versions by weight.

        Raises:
            Violation: When no version satisfies the node's constraints.
        """
        entry = self.catalog.package(record.name)
        prefs = self.config.package(record.name)
        externals = self.config.externals(record.name)

        options: List[VersionOption] = []
        for ext in externals:
            if self._external_compatible(ext, record.explicit):
                options.append(VersionOption(ext.version, len(options), ext))

        if prefs.buildable:
            built = []
            constraints = record.hard_constraints()
            for declared in entry.versions:
                if not all(c.version is None or c.version.satisfied_by(declared.version) for c in constraints):
                    continue
                if declared.deprecated and not self.config.allow_deprecated and not _pinned(declared, record.explicit):
                    continue
                built.append(VersionOption(declared.version, len(externals) + self._version_rank(prefs, declared)))
            options.extend(sorted(built, key=lambda o: o.weight))

        if not options:
            wanted = " ".join(str(c.version) for c in record.hard_constraints() if c.version is not None)
            reason = f"satisfies @{wanted}" if wanted else "is available"
            if not prefs.buildable:
                detail = "no externals configured" if not externals else "no configured external matches"
                raise Violation(ConstraintFamily.EXTERNAL,
                                f"no version of {record.name} {reason} (not buildable, {detail})", record.name)
            raise Violation(ConstraintFamily.VERSION, f"no version of {record.name} {reason}", record.name)
        return options

    @staticmethod
    def _version_rank(prefs: PackagePreferences, declared: DeclaredVersion) -> int:
        idx = preference_index(
            list(prefs.version),
            lambda p: parse_version_constraint(p).satisfied_by(declared.version),
        )
        if idx is not None:
            return idx
        return len(prefs.version) + declared.weight

    def _external_compatible(self, ext: ExternalSpec, explicit: Tuple[Constraints, ...]) -> bool:
        fixed = ext.constraints
        for constraints in explicit:
            if constraints.version is not None and not constraints.version.satisfied_by(ext.version):
                return False
            for name, values in constraints.variants.items():
                have = fixed.variants.get(name)
                if have is not None and not set(values) <= set(have):
                    return False
            for attr in ("platform", "os", "target"):
                mine, theirs = getattr(constraints, attr), getattr(fixed, attr)
                if mine and theirs and mine != theirs:
                    return False
            if constraints.compiler and fixed.compiler:
                if constraints.compiler.name != fixed.compiler.name:
                    return False
                if fixed.compiler.versions.raw and not constraints.compiler.versions.satisfied_by(
                        fixed.compiler.versions.raw):
                    return False
        return True

    def apply_version(self, state: Assignment, record: NodeRecord, option: VersionOption) -> None:
        """Set the version, then the platform and OS which follow deterministically."""
        state.set(record, "version", option.version)
        state.set(record, "version_weight", option.weight)
        state.set(record, "external", option.external)
        self._assign_platform_and_os(state, record, option.os)

    def version_choices(self, state: Assignment, record: NodeRecord) -> Iterator[VersionOption]:
        """``version_options`` interleaved with anticipated operating systems.

        A node with no pinned OS and no parent to inherit one from may still
        gain such a parent later in the search; each version is then offered
        once more per other OS that could reach it that way.

        Raises:
            Violation: When no version satisfies the node's constraints.
        """
        options = self.version_options(record)
        platform = self._platform(record)
        anticipated: List[str] = []
        if not self.pins_os(record) and not self.inherited_oses(state, record):
            default = self._default_os(record, platform)
            anticipated = [name for name in self.os_candidates
                           if name != default and self._os_valid(name, platform)]
        return self._interleave(options, anticipated)

    @staticmethod
    def _interleave(options: List[VersionOption], anticipated: List[str]) -> Iterator[VersionOption]:
        for option in options:
            yield option
            if option.external is not None and option.external.constraints.os:
                continue
            for os_name in anticipated:
                yield replace(option, os=os_name)

    # -- platform / os -------------------------------------------------------

    def _platform(self, record: NodeRecord) -> Optional[str]:
        platforms = {c.platform for c in record.hard_constraints() if c.platform}
        if record.external is not None and record.external.constraints.platform:
            platforms.add(record.external.constraints.platform)
        if len(platforms) > 1:
            raise Violation(ConstraintFamily.PLATFORM,
                            f"{record.name} is constrained to several platforms {sorted(platforms)}",
                            record.name)
        return platforms.pop() if platforms else self.default_platform

    def _pinned_oses(self, record: NodeRecord) -> Set[str]:
        oses = {c.os for c in record.hard_constraints() if c.os}
        if record.external is not None and record.external.constraints.os:
            oses.add(record.external.constraints.os)
        return oses

    def pins_os(self, record: NodeRecord) -> bool:
        """True when the node's own constraints (or its external) name an OS."""
        return bool(self._pinned_oses(record))

    def propagates_os(self, record: NodeRecord) -> bool:
        """Pinned and inherited operating systems flow on to dependencies; defaults do not."""
        return record.os is not None and (record.os_source == "inherited" or self.pins_os(record))

    def inherited_oses(self, state: Assignment, record: NodeRecord) -> Set[str]:
        return {state.nodes[p].os for p in state.parents[record.name] if self.propagates_os(state.nodes[p])}

    def _os_valid(self, os_name: str, platform: Optional[str]) -> bool:
        entry = self.catalog.operating_system(os_name)
        return entry is not None and entry.platform in (None, platform)

    def _assign_platform_and_os(self, state: Assignment, record: NodeRecord,
                                anticipated: Optional[str] = None) -> None:
        platform = self._platform(record)

        oses = self._pinned_oses(record)
        if len(oses) > 1:
            raise Violation(ConstraintFamily.OS,
                            f"{record.name} is constrained to several operating systems {sorted(oses)}",
                            record.name)
        if oses:
            os_name = oses.pop()
            source = "external" if record.external is not None else "explicit"
        else:
            inherited = self.inherited_oses(state, record)
            if len(inherited) > 1:
                raise Violation(ConstraintFamily.OS,
                                f"{record.name} inherits conflicting operating systems {sorted(inherited)}",
                                record.name)
            if inherited:
                os_name, source = inherited.pop(), "inherited"
            elif anticipated:
                os_name, source = anticipated, "anticipated"
            else:
                os_name, source = self._default_os(record, platform), "default"

        if not self._os_valid(os_name, platform):
            raise Violation(ConstraintFamily.OS,
                            f"operating system {os_name} of {record.name} is not valid on platform {platform}",
                            record.name)
        state.set(record, "platform", platform)
        state.set(record, "os", os_name)
        state.set(record, "os_source", source)

    def _default_os(self, record: NodeRecord, platform: Optional[str]) -> str:
        if self.config.default_os:
            return self.config.default_os
        for entry in self.catalog.operating_systems:
            if entry.platform in (None, platform):
                return entry.name
        raise Violation(ConstraintFamily.OS, f"no operating system is available on platform {platform}",
                        record.name)

    def check_inherited_os(self, state: Assignment, child: NodeRecord, parent: NodeRecord) -> None:
        """A new parent that propagates its OS must agree with the child's.

        A child whose OS was a default or an anticipation becomes inherited
        once such a parent arrives, and from then on propagates it in turn.

        Raises:
            Violation: When the OSes differ.
        """
        if child.os is None or not self.propagates_os(parent):
            return
        if self.pins_os(child):
            if child.os_source not in ("explicit", "external"):
                state.set(child, "os_source", "explicit")
            return
        if parent.os != child.os:
            raise Violation(ConstraintFamily.OS,
                            f"{child.name} runs on {child.os} but its dependent {parent.name} runs on {parent.os}",
                            child.name)
        state.set(child, "os_source", "inherited")

    def check_os_inheritance(self, state: Assignment) -> None:
        """Recompute every OS over the finished graph.

        A node without an OS of its own takes the OS of the parents that
        propagate one, or the default when none does.

        Raises:
            Violation: On conflicting parents or a node on any other OS.
        """
        propagates: Dict[str, bool] = {}
        for name in state.topological_order():
            record = state.nodes[name]
            if self.pins_os(record):
                propagates[name] = True
                continue
            inherited = {state.nodes[p].os for p in state.parents[name] if propagates[p]}
            if len(inherited) > 1:
                raise Violation(ConstraintFamily.OS,
                                f"{name} inherits conflicting operating systems {sorted(inherited)}", name)
            expected = next(iter(inherited)) if inherited else self._default_os(record, record.platform)
            if record.os != expected:
                raise Violation(ConstraintFamily.OS,
                                f"{name} runs on {record.os} but nothing propagates it there (expected {expected})",
                                name)
            propagates[name] = bool(inherited)

    # -- variants ------------------------------------------------------------

    def variant_defaults(self, package: str, variant: VariantDef) -> Tuple[str, ...]:
        return self.config.package(package).variants.get(variant.name) or variant.default

    def variant_cost(self, record: NodeRecord, values: VariantValues,
                     exempt: Dict[str, Set[str]]) -> Tuple[int, int]:
        """(values not at their default, multi-valued defaults retained) for ``values``."""
        entry = self.catalog.package(record.name)
        penalty = retained = 0
        for name, chosen in values.items():
            vdef = entry.variants.get(name)
            if vdef is None:
                continue
            defaults = self.variant_defaults(record.name, vdef)
            if vdef.multi:
                retained += len(set(defaults) & set(chosen))
            if record.external is None:
                penalty += sum(1 for v in chosen if v not in defaults and v not in exempt.get(name, ()))
        return penalty, retained

    @staticmethod
    def explicit_values(constraints: Tuple[Constraints, ...]) -> Dict[str, Set[str]]:
        out: Dict[str, Set[str]] = {}
        for c in constraints:
            for name, values in c.variants.items():
                out.setdefault(name, set()).update(values)
        return out

    def variant_options(self, record: NodeRecord,
                        optimistic: Optional[Dict[str, Set[str]]] = None) -> Iterator[VariantOption]:
        """Consistent combinations of variant values, cheapest first.

        Combinations are ordered by their penalty against ``optimistic`` (the
        values the bound treats as free), then by retained multi-valued
        defaults, then by the actual penalty. They are produced lazily so a
        caller that stops early never pays for the rest of the product.

        Raises:
            Violation: On unknown variants, values outside the domain,
                contradictory requirements or "none" mixed with other values.
        """
        entry = self.catalog.package(record.name)
        required: Dict[str, List[str]] = {}
        for c in record.hard_constraints():
            for name, values in c.variants.items():
                bucket = required.setdefault(name, [])
                bucket.extend(v for v in values if v not in bucket)

        if record.external is not None:
            return iter([self._external_variants(record, entry, required)])

        exempt = self.explicit_values(record.explicit)
        optimistic = exempt if optimistic is None else optimistic
        names: List[str] = []
        streams = []
        for name in sorted(set(entry.variants) | set(required)):
            vdef = entry.variants.get(name)
            wanted = required.get(name, [])
            if vdef is None:
                if name not in Constants.AD_HOC_VARIANTS:
                    raise Violation(ConstraintFamily.VARIANT, f"{record.name} has no variant '{name}'", record.name)
                streams.append([((0, 0, 0), (tuple(wanted), ()))])
            else:
                streams.append(self._variant_choices(record, vdef, wanted, exempt, optimistic))
            names.append(name)
        return self._combine(record, names, streams, exempt)

    def _combine(self, record: NodeRecord, names: List[str], streams: List[Iterable[Tuple[Cost, Any]]],
                 exempt: Dict[str, Set[str]]) -> Iterator[VariantOption]:
        for _, picks in _best_first(streams, lambda payloads: tuple(key for _, key in payloads)):
            values = {name: chosen for name, (chosen, _) in zip(names, picks)}
            penalty, retained = self.variant_cost(record, values, exempt)
            yield VariantOption(values, penalty, retained)

    def _variant_choices(self, record: NodeRecord, vdef: VariantDef, wanted: List[str],
                         exempt: Dict[str, Set[str]],
                         optimistic: Dict[str, Set[str]]) -> Iterable[Tuple[Cost, Any]]:
        """``((optimistic penalty, -retained, penalty), (values, tie))`` per choice, cheapest first."""
        for value in wanted:
            if not vdef.allows(value):
                raise Violation(ConstraintFamily.VARIANT,
                                f"'{value}' is not a valid value of {record.name} variant {vdef.name}",
                                record.name)
        defaults = self.variant_defaults(record.name, vdef)
        none = Constants.NONE_VARIANT_VALUE
        free = optimistic.get(vdef.name, ())
        allowed = exempt.get(vdef.name, ())

        def cost(chosen: Tuple[str, ...]) -> Cost:
            return (
                sum(1 for v in chosen if v not in defaults and v not in free),
                -len(set(defaults) & set(chosen)) if vdef.multi else 0,
                sum(1 for v in chosen if v not in defaults and v not in allowed),
            )

        if not vdef.multi:
            if len(wanted) > 1:
                raise Violation(ConstraintFamily.VARIANT,
                                f"{record.name} variant {vdef.name} cannot be both {' and '.join(wanted)}",
                                record.name)
            if wanted:
                return [(cost((wanted[0],)), ((wanted[0],), ()))]
            ranked = sorted(vdef.values, key=lambda v: (cost((v,)), v not in defaults, vdef.values.index(v)))
            return [(cost((v,)), ((v,), (v not in defaults, vdef.values.index(v)))) for v in ranked]

        if none in wanted and len(wanted) > 1:
            raise Violation(ConstraintFamily.VARIANT,
                            f"{record.name} variant {vdef.name}: '{none}' cannot be combined with other values",
                            record.name)
        return self._subsets(vdef, wanted, cost)

    @staticmethod
    def _subsets(vdef: VariantDef, wanted: List[str],
                 cost: Callable[[Tuple[str, ...]], Cost]) -> Iterator[Tuple[Cost, Any]]:
        """Value sets of a multi-valued variant that keep ``wanted``, cheapest first."""
        none = Constants.NONE_VARIANT_VALUE
        rest = [v for v in vdef.values if v not in wanted]
        lanes = []
        for value in rest:
            lanes.append(sorted([((0, 0, 0, 0), False), (cost((value,)) + (1,), True)]))
        for _, picks in _best_first(lanes, lambda flags: tuple(i for i, on in enumerate(flags) if on)):
            extra = {v for v, on in zip(rest, picks) if on}
            chosen = tuple(v for v in vdef.values if v in wanted or v in extra)
            if not chosen or (none in chosen and len(chosen) > 1):
                continue
            yield cost(chosen), (chosen, (len(chosen), tuple(vdef.values.index(v) for v in chosen)))

    def _external_variants(self, record: NodeRecord, entry: PackageEntry,
                           required: Dict[str, List[str]]) -> VariantOption:
        fixed = record.external.constraints.variants
        values: VariantValues = {}
        for name in sorted(set(entry.variants) | set(fixed) | set(required)):
            if name in fixed:
                values[name] = fixed[name]
            elif name in required:
                values[name] = tuple(required[name])
            elif name in entry.variants:
                values[name] = self.variant_defaults(record.name, entry.variants[name])
        penalty, retained = self.variant_cost(record, values, {})
        return VariantOption(values, penalty, retained)

    def apply_variants(self, state: Assignment, record: NodeRecord, option: VariantOption) -> None:
        state.set(record, "variants", dict(option.values))
        state.set(record, "variant_penalty", option.penalty)
        state.set(record, "variant_retained", option.retained)

    # -- target / compiler ---------------------------------------------------

    def toolchain_options(self, state: Assignment, record: NodeRecord) -> List[ToolchainOption]:
        """Feasible (target, compiler) pairs, preferred first.

        Raises:
            Violation: TARGET, COMPILER, COMPILER_OS or COMPILER_TARGET when a
                family has no feasible value.
        """
        if record.external is not None:
            return [self._external_toolchain(record)]

        constraints = record.hard_constraints()
        targets = self._targets(record, constraints)

        specs = [c.compiler for c in constraints if c.compiler is not None]
        compilers = [c for c in self.catalog.compilers if all(s.matches(c.name, c.version) for s in specs)]
        if not compilers:
            raise Violation(ConstraintFamily.COMPILER,
                            f"no compiler satisfies {', '.join(str(s) for s in specs)} for {record.name}",
                            record.name)

        on_os = [c for c in compilers if c.supports_os(record.os) or self.is_allowed(c)]
        if not on_os:
            names = ", ".join(str(c) for c in compilers)
            raise Violation(ConstraintFamily.COMPILER_OS,
                            f"none of {names} is supported on {record.os} (needed by {record.name})",
                            record.name)

        pairs = [(t, c) for c in on_os for t in targets if c.supports_target(t)]
        if not pairs:
            names = ", ".join(str(c) for c in on_os)
            raise Violation(ConstraintFamily.COMPILER_TARGET,
                            f"none of {names} can build {record.name} for target {', '.join(targets)}",
                            record.name)

        compiler_pref = self.preference(state, record.name, "compiler")
        target_pref = self.preference(state, record.name, "target")
        options = []
        for target, compiler in pairs:
            options.append((
                (compiler.name not in compiler_pref if compiler_pref else False),
                target not in target_pref if target_pref else False,
                ToolchainOption(
                    target=target,
                    compiler=compiler.name,
                    compiler_version=compiler.version,
                    compiler_weight=self.compiler_weight(record.name, compiler),
                    target_weight=self.target_weight(record.name, target),
                ),
            ))
        options.sort(key=lambda o: (o[0], o[2].compiler_weight, o[1], o[2].target_weight))
        return [o[2] for o in options]

    def _targets(self, record: NodeRecord, constraints: List[Constraints]) -> List[str]:
        fixed = {c.target for c in constraints if c.target}
        if len(fixed) > 1:
            raise Violation(ConstraintFamily.TARGET,
                            f"{record.name} is constrained to several targets {sorted(fixed)}", record.name)
        if fixed:
            name = fixed.pop()
            entry = self.catalog.target(name)
            if entry is None or (entry.platform and entry.platform != record.platform):
                raise Violation(ConstraintFamily.TARGET,
                                f"target {name} of {record.name} is not valid on platform {record.platform}",
                                record.name)
            return [name]
        targets = [t.name for t in self.catalog.targets if t.platform in (None, record.platform)]
        if not targets:
            raise Violation(ConstraintFamily.TARGET, f"no target is available on platform {record.platform}",
                            record.name)
        return targets

    def is_allowed(self, compiler: CompilerEntry) -> bool:
        """Allow-listed compilers may be used on an OS they do not declare."""
        if self.catalog.is_allowed_compiler(compiler.name, compiler.version):
            return True
        return any(s.matches(compiler.name, compiler.version) for s in self.config.allowed_compilers)

    def _external_toolchain(self, record: NodeRecord) -> ToolchainOption:
        fixed = record.external.constraints
        explicit = list(record.explicit)

        target = fixed.target or next((c.target for c in explicit if c.target), None)
        if target is None:
            candidates = [t.name for t in self.catalog.targets if t.platform in (None, record.platform)]
            candidates = candidates or list(self.catalog.target_names())
            target = min(candidates, key=lambda t: self.target_weight(record.name, t))

        spec = fixed.compiler or next((c.compiler for c in explicit if c.compiler), None)
        matching = list(self.catalog.find_compilers(spec)) if spec else list(self.catalog.compilers)
        if matching:
            best = min(matching, key=lambda c: self.compiler_weight(record.name, c))
            return ToolchainOption(target, best.name, best.version)
        if fixed.compiler is not None:
            # Pre-built with a compiler this catalog does not know
            return ToolchainOption(target, fixed.compiler.name, fixed.compiler.versions.raw or "")
        raise Violation(ConstraintFamily.COMPILER, f"no compiler satisfies {spec} for {record.name}", record.name)

    def apply_toolchain(self, state: Assignment, record: NodeRecord, option: ToolchainOption) -> None:
        state.set(record, "target", option.target)
        state.set(record, "target_weight", option.target_weight)
        state.set(record, "compiler", option.compiler)
        state.set(record, "compiler_version", option.compiler_version)
        state.set(record, "compiler_weight", option.compiler_weight)

    def compiler_weight(self, package: str, compiler: CompilerEntry) -> int:
        prefs = self.config.package(package).compiler
        idx = preference_index(list(prefs), lambda s: s.matches(compiler.name, compiler.version))
        if idx is not None:
            return idx
        return len(prefs) + self._global_compiler_rank(compiler)

    def _global_compiler_rank(self, compiler: CompilerEntry) -> int:
        key = (compiler.name, compiler.version)
        if key not in self._compiler_rank:
            idx = preference_index(list(self.config.compilers),
                                   lambda s: s.matches(compiler.name, compiler.version))
            if idx is None:
                idx = len(self.config.compilers) + self.catalog.compilers.index(compiler)
            self._compiler_rank[key] = idx
        return self._compiler_rank[key]

    def target_weight(self, package: str, target: str) -> int:
        prefs = self.config.package(package).target
        if target in prefs:
            return prefs.index(target)
        order = list(self.config.targets)
        if self.config.default_target and self.config.default_target not in order:
            order.insert(0, self.config.default_target)
        if target in order:
            return len(prefs) + order.index(target)
        names = self.catalog.target_names()
        return len(prefs) + len(order) + (names.index(target) if target in names else len(names))

    # -- constraint checks ---------------------------------------------------

    def check_constraints(self, record: NodeRecord, constraints: Constraints, source: str) -> None:
        """Verify ``constraints`` against an already assigned node.

        Raises:
            Violation: Naming the first attribute that disagrees.
        """
        name = record.name
        if constraints.version is not None and not constraints.version.satisfied_by(record.version):
            raise Violation(ConstraintFamily.VERSION,
                            f"{name}@{record.version} does not satisfy @{constraints.version} ({source})", name)
        entry = self.catalog.package(name)
        for variant, values in constraints.variants.items():
            have = (record.variants or {}).get(variant)
            if have is None:
                raise Violation(ConstraintFamily.VARIANT, f"{name} has no variant '{variant}' ({source})", name)
            vdef = entry.variants.get(variant)
            multi = vdef.multi if vdef is not None else variant == Constants.PATCHES_VARIANT
            ok = set(values) <= set(have) if multi else set(values) == set(have)
            if not ok:
                raise Violation(ConstraintFamily.VARIANT,
                                f"{name} has {variant}={','.join(have)}, needs {','.join(values)} ({source})", name)
        for attr, family in (("platform", ConstraintFamily.PLATFORM),
                             ("os", ConstraintFamily.OS),
                             ("target", ConstraintFamily.TARGET)):
            wanted = getattr(constraints, attr)
            if wanted and getattr(record, attr) != wanted:
                raise Violation(family, f"{name} has {attr}={getattr(record, attr)}, needs {wanted} ({source})", name)
        if constraints.compiler is not None and not constraints.compiler.matches(
                record.compiler, record.compiler_version):
            raise Violation(ConstraintFamily.COMPILER,
                            f"{name} is built with {record.compiler}@{record.compiler_version}, "
                            f"needs %{constraints.compiler} ({source})", name)

    # -- structural passes over the finished graph ---------------------------

    def preference(self, state: Assignment, name: str, attribute: str,
                   memo: Optional[Dict[str, Set[str]]] = None) -> Set[str]:
        """Compiler names or targets ``name`` prefers.

        A node's own hard constraint wins; otherwise it inherits the union of
        its parents' preferences; a node with no parents prefers its own value.
        """
        memo = {} if memo is None else memo
        if name in memo:
            return memo[name]
        record = state.nodes[name]
        if attribute == "compiler":
            own = {c.compiler.name for c in record.hard_constraints() if c.compiler is not None}
        else:
            own = {c.target for c in record.hard_constraints() if c.target}
        if not own:
            for parent in state.parents[name]:
                own |= self.preference(state, parent, attribute, memo)
        if not own and not state.parents[name] and getattr(record, attribute):
            own = {getattr(record, attribute)}
        memo[name] = own
        return own

    def preference_matches(self, state: Assignment) -> Tuple[Dict[str, bool], Dict[str, bool]]:
        """Per node: does its compiler (resp. target) match what it prefers?"""
        compiler_memo: Dict[str, Set[str]] = {}
        target_memo: Dict[str, Set[str]] = {}
        compilers, targets = {}, {}
        for name in state.topological_order():
            record = state.nodes[name]
            compilers[name] = record.compiler in self.preference(state, name, "compiler", compiler_memo)
            targets[name] = record.target in self.preference(state, name, "target", target_memo)
        return compilers, targets

    def resolve_flags(self, state: Assignment) -> Dict[str, Dict[str, Tuple[str, ...]]]:
        """Flags per node: explicit, else inherited from same-compiler parents, else compiler defaults.

        Parents count as same-compiler by compiler name; a version change
        alone does not stop flags from propagating.
        """
        resolved: Dict[str, Dict[str, Tuple[str, ...]]] = {}
        propagated: Dict[str, Dict[str, Tuple[str, ...]]] = {}
        for name in state.topological_order():
            record = state.nodes[name]
            own: Dict[str, Tuple[str, ...]] = {}
            sources = list(record.hard_constraints())
            if record.external is not None:
                sources.insert(0, record.external.constraints)
            for c in sources:
                for flag_type, flags in c.flags.items():
                    own[flag_type] = _union(own.get(flag_type, ()), flags)

            compiler = self.catalog.compiler(record.compiler, record.compiler_version)
            flags_out: Dict[str, Tuple[str, ...]] = {}
            carried: Dict[str, Tuple[str, ...]] = {}
            for flag_type in Constants.FLAG_TYPES:
                if own.get(flag_type):
                    flags_out[flag_type] = carried[flag_type] = own[flag_type]
                    continue
                if record.external is not None:
                    continue
                inherited: Tuple[str, ...] = ()
                for parent in state.parents[name]:
                    prec = state.nodes[parent]
                    if prec.compiler == record.compiler:
                        inherited = _union(inherited, propagated[parent].get(flag_type, ()))
                if inherited:
                    flags_out[flag_type] = carried[flag_type] = inherited
                elif compiler is not None and compiler.flags.get(flag_type):
                    flags_out[flag_type] = compiler.flags[flag_type]
            resolved[name] = flags_out
            propagated[name] = carried if record.external is None else {}
        return resolved


def _pinned(declared: DeclaredVersion, explicit: Tuple[Constraints, ...]) -> bool:
    """An explicit ``==`` on exactly this version lets a deprecated version through."""
    exact = f"=={declared.parsed}"
    return any(c.version is not None and c.version.normalized == exact for c in explicit)
