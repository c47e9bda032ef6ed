"""Data models for version constraints."""

import operator
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple, Union

import semantic_version

_COMPARE = {
    "==": operator.eq,
    "!=": operator.ne,
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
}


@dataclass(frozen=True)
class VersionConstraint:
    """Normalized version range.

    ``normalized`` is the clause text after partial versions were expanded;
    an empty ``normalized`` matches every version. ``clauses`` holds
    ``(operator, version_key)`` pairs, all of which must hold.
    """
    raw: str
    normalized: str
    clauses: Tuple[Tuple[str, Any], ...] = field(default=(), compare=False, repr=False)

    @classmethod
    def parse(cls, text: Optional[str]) -> "VersionConstraint":
        from .parser import parse_version_constraint  # pylint: disable=import-outside-toplevel
        return parse_version_constraint(text)

    @property
    def is_any(self) -> bool:
        return not self.clauses

    def satisfied_by(self, version: Union[str, semantic_version.Version]) -> bool:
        """Return True when ``version`` lies inside this range."""
        if not self.clauses:
            return True
        from .parser import version_key  # pylint: disable=import-outside-toplevel
        key = version_key(version)
        return all(_COMPARE[op](key, bound) for op, bound in self.clauses)

    def __str__(self) -> str:
        return self.raw or "*"


@dataclass(frozen=True)
class CompilerSpec:
    """Compiler name with an optional version range (``gcc@>=12``)."""
    name: str
    versions: VersionConstraint

    @classmethod
    def parse(cls, text: str) -> "CompilerSpec":
        from .parser import parse_compiler_spec  # pylint: disable=import-outside-toplevel
        return parse_compiler_spec(text)

    def matches(self, name: str, version: str) -> bool:
        return name == self.name and self.versions.satisfied_by(version)

    def __str__(self) -> str:
        if self.versions.is_any:
            return self.name
        return f"{self.name}@{self.versions}"
