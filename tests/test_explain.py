from concretizer import Constraints, Request, RootRequest, explain_unsatisfiable
from concretizer.solver.explain import RequestItem, rebuild_request, request_items

from conftest import build_catalog


def _catalog():
    return build_catalog({
        "A": {
            "versions": ["1.0", "2.0"],
            "variants": {"shared": {"default": False}},
            "dependencies": [{"name": "B", "when": {"variants": {"shared": True}}}],
            "conflicts": [{"when": {"version": "<2.0", "variants": {"shared": True}}}],
        },
        "B": {"versions": ["1.0"]},
    })


def _request(a=None, b=None):
    dependencies = {"B": Constraints.from_dict(b)} if b is not None else {}
    return Request(roots=(RootRequest("A", Constraints.from_dict(a or {})),), dependencies=dependencies)


def test_items_and_rebuild():
    request = _request({"version": "1.0", "variants": {"shared": True}}, {"version": "1.0"})
    items = request_items(request)
    assert [i.describe() for i in items] == ["A@1.0", "A shared=true", "^B", "^B@1.0"]

    without_b = rebuild_request(request, [i for i in items if not i.dependency])
    assert without_b.dependencies == {}
    assert without_b.explicit("A") == request.explicit("A")

    only_root = rebuild_request(request, [])
    assert only_root.explicit("A").is_empty
    assert only_root.root_names == ("A",)


def test_request_item_description():
    assert RequestItem("B", True).describe() == "^B"
    assert RequestItem("A", False, "compiler", None, "gcc").describe() == "A %gcc"


def test_satisfiable_request_has_no_explanation():
    assert explain_unsatisfiable(_catalog(), _request({"version": "1.0"})) is None


def test_two_constraints_form_the_core():
    request = _request({"version": "1.0", "variants": {"shared": True}, "target": "x86_64"})
    assert explain_unsatisfiable(_catalog(), request) == ["A@1.0", "A shared=true"]


def test_required_dependency_in_core():
    """^B forces shared=true, which clashes with A@1.0."""
    request = _request({"version": "1.0", "compiler": "gcc"}, {"version": "1.0"})
    assert explain_unsatisfiable(_catalog(), request) == ["A@1.0", "^B"]
