import logging

import pytest

from concretizer.common.logging_utils import add_file_handler, configure_logging, is_debug_enabled
from concretizer.constants import Constants


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def _console_handlers():
    return [h for h in logging.getLogger().handlers if h.get_name() == "concretizer-console"]


def test_configure_logging_is_idempotent():
    configure_logging("DEBUG")
    configure_logging("WARNING")
    assert len(_console_handlers()) == 1
    assert logging.getLogger().level == logging.WARNING


def test_level_from_environment(monkeypatch):
    monkeypatch.setenv(Constants.ENV_LOG_LEVEL, "error")
    configure_logging()
    assert logging.getLogger().level == logging.ERROR


def test_invalid_level():
    with pytest.raises(ValueError, match="Invalid log level"):
        configure_logging("LOUD")


def test_file_handler(tmp_path):
    path = tmp_path / "out.log"
    configure_logging("INFO")
    add_file_handler(str(path))
    logging.getLogger("concretizer.test").info("hello file")
    assert "hello file" in path.read_text()


def test_is_debug_enabled():
    logger = logging.getLogger("concretizer.debug-check")
    logger.setLevel(logging.DEBUG)
    assert is_debug_enabled(logger)
    logger.setLevel(logging.INFO)
    assert not is_debug_enabled(logger)
