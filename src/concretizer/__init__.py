"""Concretizer: turn abstract package requests into optimal concrete dependency graphs."""

from .catalog import Catalog, catalog_from_dict, load_catalog
from .config import SolverConfig, load_config
from .errors import (
    CatalogError,
    ConcretizationError,
    ConfigError,
    SearchBudgetExceeded,
    UnsatisfiableError,
)
from .request import Constraints, Request, RootRequest, load_request
from .solver import ConcreteGraph, InfeasibilityReport, Solution, Solver, explain_unsatisfiable, solve

__version__ = "0.1.0"

__all__ = [
    "Catalog",
    "CatalogError",
    "ConcreteGraph",
    "ConcretizationError",
    "ConfigError",
    "Constraints",
    "InfeasibilityReport",
    "Request",
    "RootRequest",
    "SearchBudgetExceeded",
    "Solution",
    "Solver",
    "SolverConfig",
    "UnsatisfiableError",
    "catalog_from_dict",
    "explain_unsatisfiable",
    "load_catalog",
    "load_config",
    "load_request",
    "solve",
]
