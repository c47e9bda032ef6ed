"""End-to-end concretizations of small catalogs."""

import pytest

from concretizer import Constraints, Request, RootRequest, SolverConfig, solve
from concretizer.constants import ConstraintFamily
from concretizer.errors import UnsatisfiableError
from concretizer.solver import Edge

from conftest import build_catalog


def test_chain_resolves_to_defaults():
    """A -> B with one version each resolves to one node per package."""
    catalog = build_catalog({
        "A": {"versions": ["1.0"], "dependencies": ["B"]},
        "B": {"versions": ["1.0"]},
    })
    solution = solve(catalog, Request.of("A"))

    graph = solution.graph
    assert solution.optimal
    assert graph.names == ("A", "B")
    assert graph.edges == (Edge("A", "B", ("build", "link")),)
    assert [n.name for n in graph.roots] == ["A"]
    for node in graph.nodes:
        assert node.version == "1.0"
        assert node.platform == "linux"
        assert node.os == "ubuntu22.04"
        assert node.target == "x86_64_v3"
        assert (node.compiler, node.compiler_version) == ("gcc", "12.2.0")


def test_conflict_makes_request_unsatisfiable():
    """A@1.0 conflicts with B being in the graph, and ^B is required."""
    catalog = build_catalog({
        "A": {
            "versions": ["1.0", "2.0"],
            "dependencies": ["B"],
            "conflicts": [{"when": {"version": "<2.0", "^B": {}}, "message": "B breaks old A"}],
        },
        "B": {"versions": ["1.0"]},
    })
    request = Request(
        roots=(RootRequest("A", Constraints.from_dict({"version": "1.0"})),),
        dependencies={"B": Constraints()},
    )
    with pytest.raises(UnsatisfiableError) as excinfo:
        solve(catalog, request)

    report = excinfo.value.report
    assert report.primary is ConstraintFamily.CONFLICT
    assert "B breaks old A" in str(excinfo.value)
    assert report.violations == ["[conflict] A conflicts with B breaks old A"]


def test_conflict_is_avoided_when_a_newer_version_exists():
    catalog = build_catalog({
        "A": {
            "versions": ["1.0", "2.0"],
            "dependencies": ["B"],
            "conflicts": [{"when": {"version": "<2.0", "^B": {}}}],
        },
        "B": {"versions": ["1.0"]},
    })
    assert solve(catalog, Request.of("A")).graph.node("A").version == "2.0"


def test_provider_preference_selects_virtual_provider():
    catalog = build_catalog({
        "A": {"versions": ["1.0"], "dependencies": ["mpi"]},
        "X": {"versions": ["1.0"], "provides": ["mpi"]},
        "Y": {"versions": ["1.0"], "provides": ["mpi"]},
    })
    config = SolverConfig.from_dict({"providers": {"mpi": ["Y", "X"]}})
    graph = solve(catalog, Request.of("A"), config).graph

    assert graph.providers == {"mpi": "Y"}
    assert "X" not in graph
    assert graph.node("mpi").name == "Y"
    assert graph.edges == (Edge("A", "Y", ("build", "link")),)


def test_variant_default_is_kept():
    catalog = build_catalog({"A": {"versions": ["1.0"], "variants": {"shared": {"default": True}}}})
    solution = solve(catalog, Request.of("A"))
    assert solution.graph.node("A").variants == {"shared": ("true",)}
    assert solution.score[1] == 0


def test_target_unsupported_by_only_compiler():
    catalog = build_catalog(
        {"A": {"versions": ["1.0"]}},
        targets=[
            {"name": "x86_64_v4", "platform": "linux"},
            {"name": "x86_64", "platform": "linux"},
        ],
        compilers=[{
            "name": "gcc",
            "version": "9.4.0",
            "operating_systems": ["ubuntu22.04", "rhel8"],
            "targets": ["x86_64"],
        }],
    )
    request = Request(roots=(RootRequest("A", Constraints.from_dict({"target": "x86_64_v4"})),))
    with pytest.raises(UnsatisfiableError) as excinfo:
        solve(catalog, request)
    assert excinfo.value.report.primary is ConstraintFamily.COMPILER_TARGET
    assert "compiler_target" in excinfo.value.report.summary()


def test_multiple_roots_share_dependencies(chain_catalog):
    graph = solve(chain_catalog, Request.of("A", "C")).graph
    assert graph.names == ("A", "C", "B")
    assert {n.name for n in graph.roots} == {"A", "C"}
    assert [n.name for n in graph.dependents("C")] == ["B"]


def test_dependency_cycle_is_rejected():
    catalog = build_catalog({
        "A": {"versions": ["1.0"], "dependencies": ["B"]},
        "B": {"versions": ["1.0"], "dependencies": ["A"]},
    })
    with pytest.raises(UnsatisfiableError) as excinfo:
        solve(catalog, Request.of("A"))
    assert excinfo.value.report.primary is ConstraintFamily.GRAPH


def test_conditional_dependency_follows_chosen_version():
    catalog = build_catalog({
        "A": {
            "versions": ["2.0", "1.0"],
            "dependencies": [{"name": "B", "when": {"version": "1.0"}}, {"name": "C", "type": "run"}],
        },
        "B": {"versions": ["1.0"]},
        "C": {"versions": ["1.0"]},
    })
    graph = solve(catalog, Request.of("A")).graph
    assert graph.names == ("A", "C")
    assert graph.edges == (Edge("A", "C", ("run",)),)

    pinned = Request(roots=(RootRequest("A", Constraints.from_dict({"version": "1.0"})),))
    assert solve(catalog, pinned).graph.names == ("A", "B", "C")


def test_requested_dependency_constraints_apply():
    catalog = build_catalog({
        "A": {"versions": ["1.0"], "dependencies": ["B"]},
        "B": {"versions": ["2.0", "1.0"]},
    })
    request = Request(roots=(RootRequest("A"),), dependencies={"B": Constraints.from_dict({"version": "1.0"})})
    assert solve(catalog, request).graph.node("B").version == "1.0"


def test_requested_dependency_must_appear():
    catalog = build_catalog({
        "A": {"versions": ["1.0"]},
        "B": {"versions": ["1.0"]},
    })
    request = Request(roots=(RootRequest("A"),), dependencies={"B": Constraints()})
    with pytest.raises(UnsatisfiableError) as excinfo:
        solve(catalog, request)
    assert excinfo.value.report.primary is ConstraintFamily.GRAPH


def test_four_part_versions_pick_the_newest():
    catalog = build_catalog({"A": {"versions": ["1.2.3.4", "1.2.3.5"]}})
    assert solve(catalog, Request.of("A")).graph.node("A").version == "1.2.3.5"

    request = Request(roots=(RootRequest("A", Constraints.from_dict({"version": "==1.2.3.4"})),))
    assert solve(catalog, request).graph.node("A").version == "1.2.3.4"
