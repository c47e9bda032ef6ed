"""Argument parsing for the concretize command."""

import argparse

from .constants import Constants


def build_parser():
    """Builds the argument parser for the program."""
    parser = argparse.ArgumentParser(
        prog="concretize",
        description=(
            "Concretizer - resolve abstract package requests into a concrete dependency graph"
        ),
        add_help=True,
    )

    parser.add_argument("-c", "--catalog",
                        dest="CATALOG",
                        help="Path to the package catalog (YAML or JSON)",
                        action="store", type=str,
                        required=True)

    input_group = parser.add_mutually_exclusive_group(required=True)
    input_group.add_argument("-p", "--package",
                             dest="PACKAGES",
                             help="Name a root package (repeat for several roots).",
                             action="append", type=str)
    input_group.add_argument("-r", "--request",
                             dest="REQUEST",
                             help="Load roots and explicit constraints from a request file",
                             action="store", type=str)

    parser.add_argument("--config",
                        dest="CONFIG",
                        help="Path to solver configuration file (YAML, YML, or JSON)",
                        action="store",
                        type=str)
    parser.add_argument("--set",
                        dest="CONFIG_SET",
                        help="Set configuration override (KEY=VALUE format, can be used multiple times)",
                        action="append",
                        type=str,
                        default=[])
    parser.add_argument("--max-iterations",
                        dest="MAX_ITERATIONS",
                        help=f"Search budget in choice-point iterations (default: {Constants.DEFAULT_MAX_ITERATIONS})",
                        action="store",
                        type=int)
    parser.add_argument("--time-limit",
                        dest="TIME_LIMIT",
                        help="Search budget in seconds",
                        action="store",
                        type=float)
    parser.add_argument("--explain",
                        dest="EXPLAIN",
                        help="On failure, compute the minimal set of conflicting request constraints.",
                        action="store_true")

    parser.add_argument("-o", "--output",
                        dest="OUTPUT",
                        help="Path to output file (JSON); defaults to stdout",
                        action="store",
                        type=str)
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str.upper,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)
