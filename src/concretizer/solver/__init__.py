"""Search for the optimal concrete graph of a request."""

from .explain import explain_unsatisfiable
from .objectives import TIERS, can_improve
from .result import ConcreteGraph, Edge, InfeasibilityReport, Node, Solution
from .search import Solver, solve, validate_config

__all__ = [
    "TIERS",
    "ConcreteGraph",
    "Edge",
    "InfeasibilityReport",
    "Node",
    "Solution",
    "Solver",
    "can_improve",
    "explain_unsatisfiable",
    "solve",
    "validate_config",
]
