import pytest

from concretizer.config import SolverConfig, collect_overrides, deep_merge, load_config, resolve_config_path
from concretizer.constants import Constants
from concretizer.errors import ConfigError
from concretizer.solver import Solver, validate_config

from conftest import build_catalog


def _catalog():
    return build_catalog({
        "A": {"versions": ["1.0"], "variants": {"shared": {"default": True}}, "dependencies": ["mpi"]},
        "X": {"versions": ["1.0"], "provides": ["mpi"]},
    })


class TestFromDict:
    def test_defaults(self):
        config = SolverConfig.from_dict(None)
        assert config.max_iterations == Constants.DEFAULT_MAX_ITERATIONS
        assert config.time_limit is None
        assert not config.allow_deprecated
        assert config.package("anything").buildable

    def test_full_document(self):
        config = SolverConfig.from_dict({
            "concretizer": {"max_iterations": 50, "time_limit": 2, "allow_deprecated": True},
            "defaults": {"os": "rhel8", "target": "x86_64", "platform": "linux"},
            "compilers": ["gcc@12", "clang"],
            "providers": {"mpi": ["X"]},
            "packages": {
                "A": {
                    "version": ["1.0"],
                    "variants": {"shared": False},
                    "compiler": ["clang"],
                    "target": ["x86_64"],
                    "externals": [{"version": "1.0", "prefix": "/usr", "os": "rhel8"}],
                    "buildable": False,
                },
            },
        })
        assert config.max_iterations == 50
        assert config.time_limit == 2.0
        assert config.allow_deprecated
        assert (config.default_os, config.default_target, config.default_platform) == ("rhel8", "x86_64", "linux")
        assert [str(c) for c in config.compilers] == ["gcc@12", "clang"]
        prefs = config.package("A")
        assert prefs.variants == {"shared": ("false",)}
        assert not prefs.buildable
        ext = config.externals("A")[0]
        assert (ext.version, ext.prefix, ext.constraints.os) == ("1.0", "/usr", "rhel8")
        assert ext.identity == "A@1.0#0"

    def test_packages_all_supplies_global_preferences(self):
        config = SolverConfig.from_dict({
            "packages": {"all": {"providers": {"mpi": ["X"]}, "compiler": ["clang"], "target": ["x86_64"]}},
        })
        assert config.providers == {"mpi": ("X",)}
        assert [c.name for c in config.compilers] == ["clang"]
        assert config.targets == ("x86_64",)
        assert "all" not in config.packages

    def test_external_without_version(self):
        with pytest.raises(ConfigError, match="at least a version"):
            SolverConfig.from_dict({"packages": {"A": {"externals": [{"prefix": "/usr"}]}}})

    def test_bad_budget(self):
        with pytest.raises(ConfigError):
            SolverConfig.from_dict({"concretizer": {"max_iterations": "lots"}})


class TestOverrides:
    def test_collect_overrides(self):
        overrides = collect_overrides(["concretizer.max_iterations=10", "defaults.os=rhel8", "x.flag=true"])
        assert overrides == {
            "concretizer": {"max_iterations": 10},
            "defaults": {"os": "rhel8"},
            "x": {"flag": True},
        }

    def test_invalid_override(self):
        with pytest.raises(ConfigError, match="KEY=VALUE"):
            collect_overrides(["nonsense"])

    def test_deep_merge(self):
        dest = {"a": {"b": 1, "c": 2}, "d": 1}
        deep_merge(dest, {"a": {"c": 3}, "e": 4})
        assert dest == {"a": {"b": 1, "c": 3}, "d": 1, "e": 4}


class TestLoadConfig:
    def test_explicit_path_with_overrides(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("concretizer:\n  max_iterations: 20\ndefaults:\n  os: rhel8\n")
        config = load_config(str(path), ["concretizer.max_iterations=5"])
        assert config.max_iterations == 5
        assert config.default_os == "rhel8"

    def test_environment_variable(self, tmp_path, monkeypatch):
        path = tmp_path / "env.json"
        path.write_text('{"targets": ["x86_64"]}')
        monkeypatch.setenv(Constants.ENV_CONFIG, str(path))
        monkeypatch.setenv("HOME", str(tmp_path))
        assert resolve_config_path() == str(path)
        assert load_config().targets == ("x86_64",)

    def test_no_config_anywhere(self, tmp_path, monkeypatch):
        monkeypatch.delenv(Constants.ENV_CONFIG, raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert resolve_config_path() is None
        assert load_config() == SolverConfig.from_dict(None)

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "absent.yml"))

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("packages: [oops\n")
        with pytest.raises(ConfigError, match="Failed to parse config"):
            load_config(str(path))

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_config(str(path))


class TestValidateConfig:
    @pytest.mark.parametrize(
        "data,message",
        [
            ({"defaults": {"os": "plan9"}}, "unknown operating system"),
            ({"defaults": {"target": "riscv"}}, "unknown target"),
            ({"defaults": {"platform": "darwin"}}, "unknown platform"),
            ({"compilers": ["icc"]}, "unknown compiler"),
            ({"providers": {"blas": ["X"]}}, "not a virtual"),
            ({"providers": {"mpi": ["A"]}}, "does not provide"),
            ({"packages": {"A": {"variants": {"shared": "maybe"}}}}, "invalid default"),
            ({"packages": {"A": {"variants": {"cuda": True}}}}, "no variant"),
            ({"packages": {"A": {"version": [">=banana"]}}}, "packages.A.version"),
        ],
    )
    def test_rejects(self, data, message):
        with pytest.raises(ConfigError, match=message):
            validate_config(_catalog(), SolverConfig.from_dict(data))

    def test_unknown_package_only_warns(self, caplog):
        config = SolverConfig.from_dict({"packages": {"ghost": {"version": ["1.0"]}}})
        with caplog.at_level("WARNING"):
            Solver(_catalog(), config)
        assert "ghost" in caplog.text
