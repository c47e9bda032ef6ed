"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    UNSATISFIABLE = 2
    BUDGET_EXCEEDED = 3
    CONFIG_ERROR = 4


class ConstraintFamily(Enum):
    """Families of hard constraints a branch can violate.

    Args:
        Enum (string): Family identifiers used in infeasibility reports.
    """

    VERSION = "version"
    VARIANT = "variant"
    CONFLICT = "conflict"
    PROVIDER = "provider"
    COMPILER = "compiler"
    COMPILER_OS = "compiler_os"
    COMPILER_TARGET = "compiler_target"
    TARGET = "target"
    OS = "os"
    PLATFORM = "platform"
    GRAPH = "graph"
    EXTERNAL = "external"


class DependencyKind(Enum):
    """Kinds of dependency edges.

    Args:
        Enum (string): Dependency kinds as written in catalogs.
    """

    BUILD = "build"
    LINK = "link"
    RUN = "run"
    TEST = "test"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    FLAG_TYPES = ("cflags", "cxxflags", "fflags", "cppflags", "ldflags", "ldlibs")
    DEFAULT_DEPENDENCY_KINDS = ("build", "link")
    NONE_VARIANT_VALUE = "none"
    DEV_PATH_VARIANT = "dev_path"
    PATCHES_VARIANT = "patches"
    AD_HOC_VARIANTS = (DEV_PATH_VARIANT, PATCHES_VARIANT)
    UNRANKED_PROVIDER_WEIGHT = 100
    DEFAULT_MAX_ITERATIONS = 200000
    MAX_REPORTED_VIOLATIONS = 20
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    SOLVE = "[SOLVE]"

    ENV_CONFIG = "CONCRETIZER_CONFIG"
    ENV_LOG_LEVEL = "CONCRETIZER_LOG_LEVEL"
    USER_CONFIG = "~/.config/concretizer/config.yml"
