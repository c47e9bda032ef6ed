import json
import logging

import pytest
import yaml

from concretizer.args import parse_args
from concretizer.cli import main, run
from concretizer.constants import ExitCodes

from conftest import BASE_CATALOG


PACKAGES = {
    "A": {
        "versions": ["1.0", "2.0"],
        "dependencies": ["B"],
        "conflicts": [{"when": {"version": "<2.0", "^B": {}}, "message": "B breaks old A"}],
    },
    "B": {"versions": ["1.0"]},
}


@pytest.fixture(autouse=True)
def _reset_root_logger():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def catalog_file(tmp_path):
    data = dict(BASE_CATALOG, packages=PACKAGES)
    path = tmp_path / "catalog.yml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


def _run(*argv):
    return run(parse_args(list(argv)))


def _read(path):
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


class TestArgs:
    def test_packages_and_defaults(self):
        args = parse_args(["-c", "cat.yml", "-p", "A", "-p", "B", "--loglevel", "debug"])
        assert args.CATALOG == "cat.yml"
        assert args.PACKAGES == ["A", "B"]
        assert args.REQUEST is None
        assert args.LOG_LEVEL == "DEBUG"
        assert args.CONFIG_SET == []
        assert not args.EXPLAIN

    def test_packages_and_request_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse_args(["-c", "cat.yml", "-p", "A", "-r", "req.yml"])

    def test_catalog_is_required(self):
        with pytest.raises(SystemExit):
            parse_args(["-p", "A"])


class TestRun:
    def test_success_writes_graph(self, catalog_file, tmp_path):
        out = tmp_path / "out.json"
        assert _run("-c", catalog_file, "-p", "A", "-o", str(out)) == ExitCodes.SUCCESS.value
        data = _read(out)
        assert data["status"] == "ok"
        assert [n["name"] for n in data["nodes"]] == ["A", "B"]
        assert data["nodes"][0]["version"] == "2.0"

    def test_success_to_stdout(self, catalog_file, capsys):
        assert _run("-c", catalog_file, "-p", "B") == ExitCodes.SUCCESS.value
        data = json.loads(capsys.readouterr().out)
        assert data["nodes"][0]["name"] == "B"

    def test_request_file_unsatisfiable_with_explanation(self, catalog_file, tmp_path):
        request = tmp_path / "request.yml"
        request.write_text(yaml.safe_dump({"roots": [{"name": "A", "version": "1.0"}]}))
        out = tmp_path / "out.json"
        code = _run("-c", catalog_file, "-r", str(request), "--explain", "-o", str(out))
        assert code == ExitCodes.UNSATISFIABLE.value
        data = _read(out)
        assert data["status"] == "unsatisfiable"
        assert data["primary"] == "conflict"
        assert data["core"] == ["A@1.0"]

    def test_budget_exceeded(self, catalog_file, tmp_path):
        out = tmp_path / "out.json"
        code = _run("-c", catalog_file, "-p", "A", "--time-limit", "0", "-o", str(out))
        assert code == ExitCodes.BUDGET_EXCEEDED.value
        assert _read(out)["status"] == "budget_exceeded"

    def test_config_override(self, catalog_file, tmp_path):
        out = tmp_path / "out.json"
        code = _run("-c", catalog_file, "-p", "A", "--set", "concretizer.max_iterations=1", "-o", str(out))
        assert code == ExitCodes.BUDGET_EXCEEDED.value

    def test_missing_catalog(self, tmp_path):
        assert _run("-c", str(tmp_path / "absent.yml"), "-p", "A") == ExitCodes.FILE_ERROR.value

    def test_invalid_catalog(self, tmp_path):
        path = tmp_path / "catalog.yml"
        path.write_text(yaml.safe_dump({"packages": {"A": {"versions": ["1.0"]}}}))
        assert _run("-c", str(path), "-p", "A") == ExitCodes.CONFIG_ERROR.value

    def test_unknown_root(self, catalog_file):
        assert _run("-c", catalog_file, "-p", "Z") == ExitCodes.CONFIG_ERROR.value

    def test_invalid_config(self, catalog_file, tmp_path):
        config = tmp_path / "config.yml"
        config.write_text(yaml.safe_dump({"defaults": {"os": "plan9"}}))
        assert _run("-c", catalog_file, "-p", "A", "--config", str(config)) == ExitCodes.CONFIG_ERROR.value

    def test_log_file(self, catalog_file, tmp_path):
        log = tmp_path / "run.log"
        out = tmp_path / "out.json"
        assert _run("-c", catalog_file, "-p", "A", "--logfile", str(log), "-o", str(out)) == 0
        assert "Concretizing A" in log.read_text()


def test_main_exits_with_code(catalog_file, tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["-c", catalog_file, "-p", "A", "-o", str(tmp_path / "out.json")])
    assert excinfo.value.code == 0
