"""Parsing utilities for versions, version ranges and compiler specs."""

import re
from functools import lru_cache
from typing import List, Optional, Tuple, Union

import semantic_version

from .models import CompilerSpec, VersionConstraint

_OPERATORS = ("==", "!=", ">=", "<=", ">", "<")
_PARTIAL = re.compile(r"^\d+(\.\d+)?$")

VersionKey = Tuple[semantic_version.Version, Tuple[Tuple[int, int, str], ...]]


@lru_cache(maxsize=4096)
def parse_version(text: str) -> semantic_version.Version:
    """Parse a catalog version string into a comparable Version.

    Raises:
        ValueError: If the text is not a version.
    """
    if text is None or not str(text).strip():
        raise ValueError("Empty version string")
    return semantic_version.Version.coerce(str(text).strip())


def version_key(version: Union[str, semantic_version.Version]) -> VersionKey:
    """Sort key giving every catalog version a total order.

    ``Version.coerce`` keeps components past the third as build metadata,
    which semantic_version ignores for precedence; the key compares them as
    a trailing tuple so that 1.2.3.5 sorts above 1.2.3.4 and above 1.2.3.
    """
    if not isinstance(version, semantic_version.Version):
        version = parse_version(version)
    tail = tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in version.build)
    return version.truncate("prerelease"), tail


def _expand_clause(clause: str) -> List[Tuple[str, semantic_version.Version]]:
    """Turn one clause into (operator, version) pairs with full versions."""
    for op in _OPERATORS:
        if clause.startswith(op):
            return [(op, parse_version(clause[len(op):].strip()))]

    # Bare version: exact for full versions, whole series for partial ones
    if _PARTIAL.match(clause):
        lower = parse_version(clause)
        upper = lower.next_major() if "." not in clause else lower.next_minor()
        return [(">=", lower), ("<", upper)]
    return [("==", parse_version(clause))]


@lru_cache(maxsize=4096)
def parse_version_constraint(text: Optional[str]) -> VersionConstraint:
    """Parse a version range such as ``1.2``, ``>=1.0,<2.0`` or ``==1.4.1``.

    Raises:
        ValueError: If any clause is malformed.
    """
    raw = "" if text is None else str(text).strip()
    if raw in ("", "*", ":"):
        return VersionConstraint(raw=raw, normalized="")

    pairs = []
    try:
        for clause in (c.strip() for c in raw.split(",") if c.strip()):
            pairs.extend(_expand_clause(clause))
    except ValueError as exc:
        raise ValueError(f"Invalid version constraint '{raw}': {exc}") from exc
    return VersionConstraint(
        raw=raw,
        normalized=",".join(f"{op}{version}" for op, version in pairs),
        clauses=tuple((op, version_key(version)) for op, version in pairs),
    )


def parse_compiler_spec(text: str) -> CompilerSpec:
    """Parse ``name`` or ``name@range`` into a CompilerSpec."""
    s = (text or "").strip()
    if not s:
        raise ValueError("Empty compiler spec")
    name, _, versions = s.partition("@")
    if not name.strip():
        raise ValueError(f"Compiler spec '{text}' has no name")
    return CompilerSpec(name=name.strip(), versions=parse_version_constraint(versions or None))
