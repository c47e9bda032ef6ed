import pytest

from concretizer.errors import CatalogError
from concretizer.request import Constraints, Request, RootRequest, load_request

from conftest import build_catalog


def _catalog():
    return build_catalog({
        "A": {"versions": ["1.0"], "dependencies": ["B"]},
        "B": {"versions": ["1.0"], "variants": {"shared": {"default": True}}},
    })


class TestConstraints:
    def test_from_dict(self):
        c = Constraints.from_dict({
            "version": "1.2",
            "variants": {"shared": False, "langs": "c,cxx"},
            "compiler": "gcc@12",
            "target": "x86_64",
            "flags": {"cflags": "-O3 -g"},
        })
        assert c.version.normalized == ">=1.2.0,<1.3.0"
        assert c.variants == {"shared": ("false",), "langs": ("c", "cxx")}
        assert c.compiler.name == "gcc"
        assert c.flags == {"cflags": ("-O3", "-g")}
        assert not c.is_empty

    def test_empty(self):
        assert Constraints.from_dict(None).is_empty
        assert Constraints.from_dict({}).is_empty

    def test_unknown_key(self):
        with pytest.raises(CatalogError, match="unknown constraint keys"):
            Constraints.from_dict({"colour": "blue"})

    def test_unknown_flag_type(self):
        with pytest.raises(CatalogError, match="unknown flag type"):
            Constraints.from_dict({"flags": {"rustflags": "-C opt-level=3"}})

    def test_items_round_trip_through_from_items(self):
        c = Constraints.from_dict({"version": "2.0", "variants": {"shared": True}, "os": "rhel8"})
        rebuilt = Constraints.from_items(c.items())
        assert rebuilt == c

    def test_describe(self):
        c = Constraints.from_dict({"version": "2.0", "variants": {"shared": True}, "compiler": "gcc"})
        assert c.describe() == "@2.0 shared=true %gcc"


class TestRequest:
    def test_of(self):
        request = Request.of("A", "B")
        assert request.root_names == ("A", "B")
        assert request.explicit("A").is_empty

    def test_from_dict(self):
        request = Request.from_dict({
            "roots": ["A", {"name": "B", "variants": {"shared": False}}],
            "dependencies": {"C": {"version": "1.0"}},
        })
        assert request.root_names == ("A", "B")
        assert request.explicit("B").variants == {"shared": ("false",)}
        assert str(request.explicit("C").version) == "1.0"
        assert request.explicit("D").is_empty

    def test_from_dict_requires_roots(self):
        with pytest.raises(CatalogError, match="at least one root"):
            Request.from_dict({"roots": []})

    def test_validate_unknown_root(self):
        with pytest.raises(CatalogError, match="unknown package 'Z'"):
            Request.of("Z").validate(_catalog())

    def test_validate_duplicate_root(self):
        with pytest.raises(CatalogError, match="twice"):
            Request.of("A", "A").validate(_catalog())

    def test_validate_unknown_compiler(self):
        request = Request(roots=(RootRequest("A", Constraints.from_dict({"compiler": "icc"})),))
        with pytest.raises(CatalogError, match="unknown compiler"):
            request.validate(_catalog())

    def test_str(self):
        request = Request.from_dict({
            "roots": [{"name": "A", "version": "1.0"}],
            "dependencies": {"B": {"variants": {"shared": False}}},
        })
        assert str(request) == "A @1.0 ^B shared=false"


def test_load_request_yaml(tmp_path):
    path = tmp_path / "request.yml"
    path.write_text("roots:\n  - name: A\n    version: '1.0'\ndependencies:\n  B: {}\n")
    request = load_request(str(path))
    assert request.root_names == ("A",)
    assert "B" in request.dependencies


def test_load_request_bad_json(tmp_path):
    path = tmp_path / "request.json"
    path.write_text("{not json")
    with pytest.raises(CatalogError, match="Failed to parse request"):
        load_request(str(path))
