"""Logging helpers shared by the CLI and the library."""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..constants import Constants

_HANDLER_NAME = "concretizer-console"


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    value = getattr(logging, name, None)
    if not isinstance(value, int):
        raise ValueError(f"Invalid log level: {name}")
    return value


def configure_logging(level: Optional[str] = None) -> None:
    """Install the console handler on the root logger.

    Safe to call more than once; later calls only adjust the level.

    Args:
        level: Level name; falls back to $CONCRETIZER_LOG_LEVEL, then INFO.
    """
    root = logging.getLogger()
    value = _resolve_level(level)
    if not any(getattr(h, "name", None) == _HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(value)


def add_file_handler(path: str) -> logging.Handler:
    """Mirror log output into ``path``."""
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logging.getLogger().addHandler(handler)
    return handler


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when ``logger`` would emit DEBUG records."""
    return logger.isEnabledFor(logging.DEBUG)
