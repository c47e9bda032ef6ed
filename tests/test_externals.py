import pytest

from concretizer import Constraints, Request, RootRequest, SolverConfig, solve
from concretizer.constants import ConstraintFamily
from concretizer.errors import ConfigError, UnsatisfiableError
from concretizer.solver import Solver

from conftest import build_catalog


def _catalog():
    return build_catalog({
        "A": {"versions": ["1.0"], "dependencies": [{"name": "B", "imposes": {"variants": {"shared": False}}}]},
        "B": {
            "versions": ["1.0", "0.9"],
            "variants": {"shared": {"default": True}},
            "dependencies": ["C"],
            "conflicts": [{"when": {"^C": {}}, "message": "never built here"}],
        },
        "C": {"versions": ["1.0"]},
    })


def _config(buildable=True, **external):
    body = {"version": "1.5", "prefix": "/opt/b"}
    body.update(external)
    return SolverConfig.from_dict({"packages": {"B": {"buildable": buildable, "externals": [body]}}})


def test_external_is_preferred_over_building():
    graph = solve(_catalog(), Request.of("A"), _config()).graph
    b = graph.node("B")
    assert b.external
    assert b.version == "1.5"
    assert b.external_prefix == "/opt/b"
    assert graph.to_dict()["nodes"][1]["prefix"] == "/opt/b"


def test_external_does_not_expand_dependencies_or_conflicts():
    graph = solve(_catalog(), Request.of("A"), _config(buildable=False)).graph
    assert graph.names == ("A", "B")


def test_external_ignores_impositions_and_keeps_its_own_variants():
    config = _config(variants={"shared": True})
    graph = solve(_catalog(), Request.of("A"), config).graph
    assert graph.node("B").variants == {"shared": ("true",)}


def test_external_fixed_attributes():
    config = _config(os="rhel8", target="x86_64", compiler="gcc@12.2.0")
    b = solve(_catalog(), Request.of("A"), config).graph.node("B")
    assert (b.os, b.target, b.compiler, b.compiler_version) == ("rhel8", "x86_64", "gcc", "12.2.0")


def test_external_with_unknown_compiler():
    b = solve(_catalog(), Request.of("A"), _config(compiler="intel@2021.1")).graph.node("B")
    assert (b.compiler, b.compiler_version) == ("intel", "2021.1")


def test_explicit_version_skips_incompatible_external():
    request = Request(roots=(RootRequest("A"),), dependencies={"B": Constraints.from_dict({"version": "0.9"})})
    catalog = build_catalog({
        "A": {"versions": ["1.0"], "dependencies": ["B"]},
        "B": {"versions": ["1.0", "0.9"]},
    })
    b = solve(catalog, request, _config()).graph.node("B")
    assert not b.external
    assert b.version == "0.9"


def test_not_buildable_without_matching_external_is_an_external_failure():
    request = Request(roots=(RootRequest("A"),), dependencies={"B": Constraints.from_dict({"version": "0.9"})})
    with pytest.raises(UnsatisfiableError) as excinfo:
        solve(_catalog(), request, _config(buildable=False))
    assert excinfo.value.report.primary is ConstraintFamily.EXTERNAL


def test_not_buildable_and_no_externals():
    config = SolverConfig.from_dict({"packages": {"B": {"buildable": False}}})
    with pytest.raises(UnsatisfiableError) as excinfo:
        solve(_catalog(), Request.of("A"), config)
    report = excinfo.value.report
    assert report.primary is ConstraintFamily.EXTERNAL
    assert any("no externals configured" in v for v in report.violations)


def test_external_provider_has_zero_weight():
    catalog = build_catalog({
        "A": {"versions": ["1.0"], "dependencies": ["mpi"]},
        "Y": {"versions": ["1.0"], "provides": ["mpi"]},
        "X": {"versions": ["1.0"], "provides": ["mpi"]},
    })
    config = SolverConfig.from_dict({"packages": {"X": {"externals": [{"version": "1.0", "prefix": "/usr"}]}}})
    solution = solve(catalog, Request.of("A"), config)
    assert solution.graph.providers == {"mpi": "X"}
    assert solution.graph.node("X").external
    assert solution.score[5] == 0


def test_external_with_unknown_os_is_a_config_error():
    with pytest.raises(ConfigError, match="unknown operating system"):
        Solver(_catalog(), _config(os="plan9"))
