"""Trigger conditions and their three-valued evaluation.

A condition is a conjunction of predicates, each bound to a package slot.
Evaluation is monotone: a predicate over a node that is absent or whose
attributes are not yet committed is UNKNOWN, and once a predicate is TRUE or
FALSE it stays so for every extension of the assignment. At the fixpoint the
caller treats UNKNOWN as false.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from ..errors import CatalogError
from ..request import normalize_variant_value
from ..versioning import CompilerSpec, VersionConstraint, parse_compiler_spec, parse_version_constraint

logger = logging.getLogger(__name__)


class Truth(Enum):
    """Three-valued result of evaluating a condition."""
    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"


class NodeView(Protocol):
    """Read-only view of a committed node (see solver.assignment.NodeRecord)."""
    name: str
    version: Optional[str]
    variants: Dict[str, Tuple[str, ...]]
    platform: Optional[str]
    os: Optional[str]
    target: Optional[str]
    compiler: Optional[str]
    compiler_version: Optional[str]


class AssignmentView(Protocol):
    """What a condition needs from the evolving graph."""

    def lookup(self, slot: str) -> Optional[NodeView]:
        """Committed node bound to ``slot`` (virtuals resolve through providers), else None."""


@dataclass(frozen=True)
class Predicate:
    """Base class for atomic predicates."""
    package: str

    kind = "node"

    def describe(self) -> str:
        return f"^{self.package}"


@dataclass(frozen=True)
class NodePredicate(Predicate):
    """The slot is a node in the graph."""


@dataclass(frozen=True)
class VersionPredicate(Predicate):
    constraint: VersionConstraint = parse_version_constraint(None)

    kind = "version"

    def describe(self) -> str:
        return f"{self.package}@{self.constraint}"


@dataclass(frozen=True)
class VariantPredicate(Predicate):
    variant: str = ""
    value: str = ""

    kind = "variant"

    def describe(self) -> str:
        return f"{self.package} {self.variant}={self.value}"


@dataclass(frozen=True)
class PlatformPredicate(Predicate):
    value: str = ""

    kind = "platform"

    def describe(self) -> str:
        return f"{self.package} platform={self.value}"


@dataclass(frozen=True)
class OSPredicate(Predicate):
    value: str = ""

    kind = "os"

    def describe(self) -> str:
        return f"{self.package} os={self.value}"


@dataclass(frozen=True)
class TargetPredicate(Predicate):
    value: str = ""

    kind = "target"

    def describe(self) -> str:
        return f"{self.package} target={self.value}"


@dataclass(frozen=True)
class CompilerPredicate(Predicate):
    spec: Optional[CompilerSpec] = None

    kind = "compiler"

    def describe(self) -> str:
        return f"{self.package}%{self.spec}"


@dataclass(frozen=True)
class Condition:
    """Conjunction of predicates; ``never`` marks a trigger that cannot hold."""
    predicates: Tuple[Predicate, ...] = ()
    never: bool = False

    @classmethod
    def never_holds(cls) -> "Condition":
        return cls(predicates=(), never=True)

    @property
    def slots(self) -> Tuple[str, ...]:
        seen = []
        for predicate in self.predicates:
            if predicate.package not in seen:
                seen.append(predicate.package)
        return tuple(seen)

    def describe(self) -> str:
        if self.never:
            return "never"
        return ", ".join(p.describe() for p in self.predicates)


class PredicateEvaluator:
    """Base class for predicate evaluators."""

    def evaluate(self, predicate: Predicate, node: NodeView) -> bool:
        """Decide ``predicate`` against a committed node.

        Args:
            predicate: The predicate to test.
            node: The committed node bound to the predicate's slot.

        Returns:
            True when the predicate holds.
        """
        raise NotImplementedError


class NodeEvaluator(PredicateEvaluator):
    """A committed node trivially exists."""

    def evaluate(self, predicate: Predicate, node: NodeView) -> bool:
        return True


class VersionEvaluator(PredicateEvaluator):
    def evaluate(self, predicate: Predicate, node: NodeView) -> bool:
        return node.version is not None and predicate.constraint.satisfied_by(node.version)


class VariantEvaluator(PredicateEvaluator):
    def evaluate(self, predicate: Predicate, node: NodeView) -> bool:
        return predicate.value in node.variants.get(predicate.variant, ())


class AttributeEvaluator(PredicateEvaluator):
    """Equality on a single-valued attribute."""

    def __init__(self, attribute: str):
        self._attribute = attribute

    def evaluate(self, predicate: Predicate, node: NodeView) -> bool:
        return getattr(node, self._attribute) == predicate.value


class CompilerEvaluator(PredicateEvaluator):
    def evaluate(self, predicate: Predicate, node: NodeView) -> bool:
        if node.compiler is None:
            return False
        return predicate.spec.matches(node.compiler, node.compiler_version)


class PredicateEvaluatorRegistry:
    """Registry for predicate evaluators, keyed by predicate kind."""

    def __init__(self):
        """Initialize the registry with the built-in evaluators."""
        self._evaluators: Dict[str, PredicateEvaluator] = {
            "node": NodeEvaluator(),
            "version": VersionEvaluator(),
            "variant": VariantEvaluator(),
            "platform": AttributeEvaluator("platform"),
            "os": AttributeEvaluator("os"),
            "target": AttributeEvaluator("target"),
            "compiler": CompilerEvaluator(),
        }

    def get_evaluator(self, kind: str) -> PredicateEvaluator:
        """Get a predicate evaluator by kind.

        Raises:
            ValueError: If no evaluator is registered for ``kind``.
        """
        if kind not in self._evaluators:
            raise ValueError(f"Unknown predicate kind: {kind}")
        return self._evaluators[kind]

    def register_evaluator(self, kind: str, evaluator: PredicateEvaluator) -> None:
        """Register (or replace) the evaluator for ``kind``."""
        self._evaluators[kind] = evaluator


# Global registry instance
predicate_evaluator_registry = PredicateEvaluatorRegistry()


def evaluate(condition: Condition, view: AssignmentView) -> Truth:
    """Three-valued evaluation of ``condition`` against the current assignment."""
    if condition.never:
        return Truth.FALSE
    result = Truth.TRUE
    for predicate in condition.predicates:
        node = view.lookup(predicate.package)
        if node is None:
            result = Truth.UNKNOWN
            continue
        evaluator = predicate_evaluator_registry.get_evaluator(predicate.kind)
        if not evaluator.evaluate(predicate, node):
            return Truth.FALSE
    return result


def holds(condition: Condition, view: AssignmentView) -> bool:
    """True only when ``condition`` definitely holds under ``view``."""
    return evaluate(condition, view) is Truth.TRUE


_ATTRIBUTE_KEYS = ("version", "variants", "platform", "os", "target", "compiler")


def _predicates_for(package: str, body: Mapping[str, Any], where: str) -> Tuple[Predicate, ...]:
    if body is None:
        body = {}
    if not isinstance(body, Mapping):
        raise CatalogError(f"{where}: condition on '{package}' must be a mapping")
    unknown = set(body) - set(_ATTRIBUTE_KEYS)
    if unknown:
        raise CatalogError(f"{where}: unknown condition keys {sorted(unknown)}")

    predicates = [NodePredicate(package)]
    try:
        if body.get("version") is not None:
            predicates.append(VersionPredicate(package, parse_version_constraint(str(body["version"]))))
        if body.get("compiler"):
            predicates.append(CompilerPredicate(package, parse_compiler_spec(str(body["compiler"]))))
    except ValueError as exc:
        raise CatalogError(f"{where}: {exc}") from exc
    variants = body.get("variants") or {}
    if not isinstance(variants, Mapping):
        raise CatalogError(f"{where}: variants must be a mapping")
    for name, value in variants.items():
        for v in normalize_variant_value(value):
            predicates.append(VariantPredicate(package, str(name), v))
    if body.get("platform"):
        predicates.append(PlatformPredicate(package, str(body["platform"])))
    if body.get("os"):
        predicates.append(OSPredicate(package, str(body["os"])))
    if body.get("target"):
        predicates.append(TargetPredicate(package, str(body["target"])))
    return tuple(predicates)


def parse_condition(owner: str, data: Any, where: str = "condition") -> Condition:
    """Build a Condition from its catalog mapping form.

    Plain attribute keys constrain ``owner``; ``^NAME`` keys constrain another
    package or virtual. ``False`` yields a condition that never holds and a
    missing condition holds as soon as ``owner`` is a node.

    Raises:
        CatalogError: On malformed input.
    """
    if data is False:
        return Condition.never_holds()
    if data is None or data is True:
        return Condition(predicates=(NodePredicate(owner),))
    if not isinstance(data, Mapping):
        raise CatalogError(f"{where}: condition must be a mapping, true or false")

    own = {k: v for k, v in data.items() if not str(k).startswith("^")}
    predicates = list(_predicates_for(owner, own, where))
    for key, body in data.items():
        key = str(key)
        if key.startswith("^"):
            other = key[1:].strip()
            if not other:
                raise CatalogError(f"{where}: empty package reference '^'")
            predicates.extend(_predicates_for(other, body, where))
    return Condition(predicates=tuple(predicates))
