import copy

import pytest

from concretizer.catalog import catalog_from_dict
from concretizer.config import SolverConfig


BASE_CATALOG = {
    "platforms": ["linux"],
    "operating_systems": [
        {"name": "ubuntu22.04", "platform": "linux"},
        {"name": "rhel8", "platform": "linux"},
    ],
    "targets": [
        {"name": "x86_64_v3", "platform": "linux"},
        {"name": "x86_64", "platform": "linux"},
    ],
    "compilers": [
        {
            "name": "gcc",
            "version": "12.2.0",
            "operating_systems": ["ubuntu22.04", "rhel8"],
            "flags": {"cflags": "-O2"},
        },
        {"name": "clang", "version": "15.0.0", "operating_systems": ["ubuntu22.04"]},
    ],
}


def build_catalog(packages, **overrides):
    """Base platform/OS/target/compiler universe plus ``packages``."""
    data = copy.deepcopy(BASE_CATALOG)
    data.update(copy.deepcopy(overrides))
    data["packages"] = copy.deepcopy(packages)
    return catalog_from_dict(data)


@pytest.fixture
def make_catalog():
    return build_catalog


@pytest.fixture
def make_config():
    def _make(data=None):
        return SolverConfig.from_dict(data or {})
    return _make


@pytest.fixture
def chain_catalog():
    """A -> B -> C, one version each."""
    return build_catalog({
        "A": {"versions": ["1.0"], "dependencies": ["B"]},
        "B": {"versions": ["1.0"], "dependencies": ["C"]},
        "C": {"versions": ["1.0"]},
    })
