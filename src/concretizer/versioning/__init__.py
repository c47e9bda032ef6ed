"""Version parsing and version-range matching."""

from .models import CompilerSpec, VersionConstraint
from .parser import parse_compiler_spec, parse_version, parse_version_constraint, version_key

__all__ = [
    "CompilerSpec",
    "VersionConstraint",
    "parse_compiler_spec",
    "parse_version",
    "parse_version_constraint",
    "version_key",
]
