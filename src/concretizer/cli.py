"""Command line entry point: concretize a request and print the graph as JSON."""

import json
import logging
import sys

from .args import parse_args
from .catalog import load_catalog
from .common.logging_utils import add_file_handler, configure_logging
from .config import load_config
from .constants import ExitCodes
from .errors import CatalogError, SearchBudgetExceeded, UnsatisfiableError
from .request import Request, load_request
from .solver import Solver, explain_unsatisfiable

logger = logging.getLogger(__name__)


def _setup_logging(args):
    """Configure console logging and the optional log file from CLI args."""
    configure_logging(args.LOG_LEVEL)
    if args.LOG_FILE:
        add_file_handler(args.LOG_FILE)
        logger.info("Logging to file: %s", args.LOG_FILE)


def _write(data, path):
    """Write ``data`` as JSON to ``path`` or stdout.

    Returns:
        bool: False when the output file could not be written.
    """
    text = json.dumps(data, ensure_ascii=False, indent=4)
    if not path:
        sys.stdout.write(text + "\n")
        return True
    try:
        with open(path, "w", encoding="utf-8") as file:
            file.write(text + "\n")
        logger.info("JSON file has been successfully exported at: %s", path)
    except OSError as e:
        logger.error("JSON file couldn't be written to disk: %s", e)
        return False
    return True


def run(args):
    """Run one concretization for parsed ``args``.

    Returns:
        int: The process exit code.
    """
    _setup_logging(args)

    try:
        catalog = load_catalog(args.CATALOG)
        config = load_config(args.CONFIG, args.CONFIG_SET)
        request = load_request(args.REQUEST) if args.REQUEST else Request.of(*args.PACKAGES)
    except FileNotFoundError as e:
        logger.error("File not found: %s, aborting", e)
        return ExitCodes.FILE_ERROR.value
    except CatalogError as e:
        logger.error("%s", e)
        return ExitCodes.CONFIG_ERROR.value
    except OSError as e:
        logger.error("IO error: %s, aborting", e)
        return ExitCodes.FILE_ERROR.value

    try:
        solution = Solver(catalog, config).solve(
            request, max_iterations=args.MAX_ITERATIONS, time_limit=args.TIME_LIMIT
        )
    except CatalogError as e:
        logger.error("%s", e)
        return ExitCodes.CONFIG_ERROR.value
    except UnsatisfiableError as e:
        report = e.report
        if args.EXPLAIN:
            report.core = explain_unsatisfiable(catalog, request, config, max_iterations=args.MAX_ITERATIONS)
        logger.error("%s", report.summary())
        data = {"status": "unsatisfiable"}
        data.update(report.to_dict())
        _write(data, args.OUTPUT)
        return ExitCodes.UNSATISFIABLE.value
    except SearchBudgetExceeded as e:
        logger.error("%s", e)
        _write({"status": "budget_exceeded", "iterations": e.iterations}, args.OUTPUT)
        return ExitCodes.BUDGET_EXCEEDED.value

    if not solution.optimal:
        logger.warning("Search budget exhausted; the graph is the best found, not proven optimal")
    data = {"status": "ok" if solution.optimal else "best_effort"}
    data.update(solution.to_dict())
    if not _write(data, args.OUTPUT):
        return ExitCodes.FILE_ERROR.value
    return ExitCodes.SUCCESS.value


def main(argv=None):
    """Main function of the program."""
    sys.exit(run(parse_args(argv)))


if __name__ == "__main__":
    main()
