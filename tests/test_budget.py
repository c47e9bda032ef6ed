import pytest

from concretizer import Request, SolverConfig, solve
from concretizer.errors import SearchBudgetExceeded
from concretizer.solver import Solver

from conftest import build_catalog


def _catalog():
    return build_catalog({
        "A": {"versions": ["1.0"], "dependencies": ["B"]},
        "B": {"versions": ["1.0"]},
    })


def test_budget_exhausted_without_solution():
    with pytest.raises(SearchBudgetExceeded) as excinfo:
        solve(_catalog(), Request.of("A"), max_iterations=1)
    assert excinfo.value.iterations == 1
    assert "no solution found within budget" in str(excinfo.value)


def test_budget_exhausted_after_first_solution_is_best_effort():
    # Six choice points (version, variants, toolchain for A and B) reach the first graph
    solution = solve(_catalog(), Request.of("A"), max_iterations=6)
    assert not solution.optimal
    assert solution.graph.names == ("A", "B")
    assert solution.to_dict()["optimal"] is False


def test_zero_time_limit():
    with pytest.raises(SearchBudgetExceeded):
        solve(_catalog(), Request.of("A"), time_limit=0)


def test_budget_from_config():
    config = SolverConfig.from_dict({"concretizer": {"max_iterations": 1}})
    with pytest.raises(SearchBudgetExceeded):
        Solver(_catalog(), config).solve(Request.of("A"))


def test_call_budget_overrides_config():
    config = SolverConfig.from_dict({"concretizer": {"max_iterations": 1}})
    solution = Solver(_catalog(), config).solve(Request.of("A"), max_iterations=1000)
    assert solution.optimal


def test_unbounded_search():
    config = SolverConfig.from_dict({"concretizer": {"max_iterations": None}})
    solution = Solver(_catalog(), config).solve(Request.of("A"))
    assert solution.optimal
    assert solution.iterations > 0
