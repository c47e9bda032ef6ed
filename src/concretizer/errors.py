"""Error taxonomy for concretization."""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

from .constants import ConstraintFamily

if TYPE_CHECKING:  # pragma: no cover
    from .solver.result import InfeasibilityReport


class ConcretizationError(Exception):
    """Base class for every error raised by the concretizer."""


class CatalogError(ConcretizationError, ValueError):
    """The catalog (or a request against it) references something inconsistent."""


class ConfigError(CatalogError):
    """Malformed solver configuration."""


class Violation(ConcretizationError):
    """A hard constraint failed on the current search branch.

    Raised inside the search and turned into backtracking; never escapes
    ``solve``.
    """

    def __init__(self, family: ConstraintFamily, message: str, package: Optional[str] = None):
        super().__init__(message)
        self.family = family
        self.message = message
        self.package = package

    def __repr__(self) -> str:
        return f"Violation({self.family.value}, {self.message!r})"


class UnsatisfiableError(ConcretizationError):
    """Every branch of the search violated a hard constraint."""

    def __init__(self, report: "InfeasibilityReport"):
        super().__init__(report.summary())
        self.report = report


class SearchBudgetExceeded(ConcretizationError):
    """The search budget ran out before any feasible graph was found."""

    def __init__(self, iterations: int, elapsed: float):
        super().__init__(
            f"no solution found within budget ({iterations} iterations, {elapsed:.2f}s)"
        )
        self.iterations = iterations
        self.elapsed = elapsed
