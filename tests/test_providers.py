import pytest

from concretizer import Request, SolverConfig, solve
from concretizer.constants import ConstraintFamily
from concretizer.errors import UnsatisfiableError
from concretizer.solver.assignment import Assignment
from concretizer.solver.providers import ProviderSelector

from conftest import build_catalog


def _mpi_catalog(y_provides=("mpi",), a_deps=("mpi",), y_versions=("1.0",)):
    return build_catalog({
        "A": {"versions": ["1.0"], "dependencies": list(a_deps)},
        "X": {"versions": ["1.0"], "provides": ["mpi"]},
        "Y": {"versions": list(y_versions), "provides": list(y_provides)},
    })


class TestWeights:
    def test_order_of_preference(self):
        catalog = _mpi_catalog()
        config = SolverConfig.from_dict({
            "providers": {"mpi": ["Y"]},
            "packages": {"A": {"providers": {"mpi": ["X", "Y"]}}},
        })
        selector = ProviderSelector(catalog, config)
        assert selector.weight_for("mpi", "X", ["A"], external=False) == 0
        assert selector.weight_for("mpi", "Y", ["A"], external=False) == 1
        assert selector.weight_for("mpi", "Y", [], external=False) == 0
        assert selector.weight_for("mpi", "X", [], external=False) == 100
        assert selector.weight_for("mpi", "X", [], external=True) == 0

    def test_static_weight_is_the_best_possible(self):
        config = SolverConfig.from_dict({
            "providers": {"mpi": ["Y", "X"]},
            "packages": {"A": {"providers": {"mpi": ["X"]}}},
        })
        selector = ProviderSelector(_mpi_catalog(), config)
        assert selector.static_weight("mpi", "X") == 0
        assert selector.static_weight("mpi", "Y") == 0

    def test_candidates_sorted_by_weight_then_catalog_order(self):
        config = SolverConfig.from_dict({"providers": {"mpi": ["Y"]}})
        selector = ProviderSelector(_mpi_catalog(), config)
        assert selector.candidates(Assignment(), "mpi") == ["Y", "X"]
        plain = ProviderSelector(_mpi_catalog(), SolverConfig())
        assert plain.candidates(Assignment(), "mpi") == ["X", "Y"]


class TestResolution:
    def test_unranked_providers_fall_back_to_catalog_order(self):
        graph = solve(_mpi_catalog(), Request.of("A")).graph
        assert graph.providers == {"mpi": "X"}

    def test_consumer_preference(self):
        config = SolverConfig.from_dict({"packages": {"A": {"providers": {"mpi": ["Y"]}}}})
        graph = solve(_mpi_catalog(), Request.of("A"), config).graph
        assert graph.providers == {"mpi": "Y"}
        assert "X" not in graph

    def test_provider_already_in_graph_is_reused(self):
        """Y is needed directly, so it must also be the mpi provider."""
        config = SolverConfig.from_dict({"providers": {"mpi": ["X", "Y"]}})
        graph = solve(_mpi_catalog(a_deps=("mpi", "Y")), Request.of("A"), config).graph
        assert graph.providers == {"mpi": "Y"}
        assert graph.names == ("A", "Y")

    def test_conditional_provider(self):
        catalog = _mpi_catalog(
            y_provides=({"name": "mpi", "when": {"version": ">=2.0"}},),
            y_versions=("2.0", "1.0"),
        )
        config = SolverConfig.from_dict({
            "providers": {"mpi": ["Y", "X"]},
            "packages": {"Y": {"version": ["1.0"]}},
        })
        graph = solve(catalog, Request.of("A"), config).graph
        assert graph.providers == {"mpi": "Y"}
        assert graph.node("Y").version == "2.0"

    def test_no_provider_can_satisfy(self):
        catalog = build_catalog({
            "A": {"versions": ["1.0"], "dependencies": ["mpi"]},
            "Y": {"versions": ["1.0"], "provides": [{"name": "mpi", "when": {"version": ">=2.0"}}]},
        })
        with pytest.raises(UnsatisfiableError) as excinfo:
            solve(catalog, Request.of("A"))
        assert excinfo.value.report.primary is ConstraintFamily.PROVIDER

    def test_virtual_root(self):
        graph = solve(_mpi_catalog(), Request.of("mpi")).graph
        assert graph.providers == {"mpi": "X"}
        assert graph.node("mpi").root
        assert [n.name for n in graph.roots] == ["X"]

    def test_virtual_root_uses_root_tier(self):
        config = SolverConfig.from_dict({"providers": {"mpi": ["Y", "X"]}})
        solution = solve(_mpi_catalog(), Request.of("mpi"), config)
        assert solution.graph.providers == {"mpi": "Y"}
        assert solution.score[3] == 0
        assert solution.score[5] == 0

    def test_unranked_provider_weight(self):
        solution = solve(_mpi_catalog(), Request.of("A"))
        assert solution.score[5] == 100
