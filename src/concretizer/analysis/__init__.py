"""Condition evaluation over partial assignments."""

from .conditions import (
    Condition,
    CompilerPredicate,
    NodePredicate,
    OSPredicate,
    PlatformPredicate,
    Predicate,
    TargetPredicate,
    Truth,
    VariantPredicate,
    VersionPredicate,
    evaluate,
    holds,
    parse_condition,
    predicate_evaluator_registry,
)

__all__ = [
    "Condition",
    "CompilerPredicate",
    "NodePredicate",
    "OSPredicate",
    "PlatformPredicate",
    "Predicate",
    "TargetPredicate",
    "Truth",
    "VariantPredicate",
    "VersionPredicate",
    "evaluate",
    "holds",
    "parse_condition",
    "predicate_evaluator_registry",
]
