"""Root requests and the constraint sets they (and the catalog) impose on nodes."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, TYPE_CHECKING

import yaml

from .constants import Constants
from .errors import CatalogError
from .versioning import CompilerSpec, VersionConstraint, parse_compiler_spec, parse_version_constraint

if TYPE_CHECKING:  # pragma: no cover
    from .catalog.models import Catalog

logger = logging.getLogger(__name__)

CONSTRAINT_KEYS = ("version", "variants", "platform", "os", "target", "compiler", "flags")


def normalize_variant_value(value: Any) -> Tuple[str, ...]:
    """Normalize a variant value (bool, str, comma list or sequence) to a tuple of strings."""
    if isinstance(value, bool):
        return ("true" if value else "false",)
    if value is None:
        return (Constants.NONE_VARIANT_VALUE,)
    if isinstance(value, (list, tuple, set, frozenset)):
        out: List[str] = []
        for item in value:
            for v in normalize_variant_value(item):
                if v not in out:
                    out.append(v)
        return tuple(out)
    text = str(value).strip()
    if "," in text:
        return normalize_variant_value([p for p in text.split(",") if p.strip()])
    return (text,)


def _normalize_flags(value: Any, where: str) -> Dict[str, Tuple[str, ...]]:
    if not value:
        return {}
    if not isinstance(value, Mapping):
        raise CatalogError(f"{where}: flags must be a mapping of flag type to flags")
    flags: Dict[str, Tuple[str, ...]] = {}
    for flag_type, flag_value in value.items():
        if flag_type not in Constants.FLAG_TYPES:
            raise CatalogError(f"{where}: unknown flag type '{flag_type}'")
        if isinstance(flag_value, str):
            flags[flag_type] = tuple(flag_value.split())
        else:
            flags[flag_type] = tuple(str(f) for f in flag_value or ())
    return flags


@dataclass(frozen=True)
class Constraints:
    """A conjunction of attribute assertions about a single node.

    Shared by explicit request constraints, constraints imposed by dependency
    templates and the fixed attributes of external specs.
    """
    version: Optional[VersionConstraint] = None
    variants: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    platform: Optional[str] = None
    os: Optional[str] = None
    target: Optional[str] = None
    compiler: Optional[CompilerSpec] = None
    flags: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], where: str = "constraints") -> "Constraints":
        """Build constraints from their mapping form.

        Raises:
            CatalogError: On unknown keys or malformed values.
        """
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise CatalogError(f"{where}: expected a mapping, got {type(data).__name__}")
        unknown = set(data) - set(CONSTRAINT_KEYS)
        if unknown:
            raise CatalogError(f"{where}: unknown constraint keys {sorted(unknown)}")

        try:
            version = parse_version_constraint(str(data["version"])) if data.get("version") is not None else None
            compiler = parse_compiler_spec(str(data["compiler"])) if data.get("compiler") else None
        except ValueError as exc:
            raise CatalogError(f"{where}: {exc}") from exc

        variants_raw = data.get("variants") or {}
        if not isinstance(variants_raw, Mapping):
            raise CatalogError(f"{where}: variants must be a mapping")
        variants = {str(k): normalize_variant_value(v) for k, v in variants_raw.items()}

        return cls(
            version=version,
            variants=variants,
            platform=data.get("platform"),
            os=data.get("os"),
            target=data.get("target"),
            compiler=compiler,
            flags=_normalize_flags(data.get("flags"), where),
        )

    @property
    def is_empty(self) -> bool:
        return not (
            self.version or self.variants or self.platform or self.os
            or self.target or self.compiler or self.flags
        )

    def items(self) -> List[Tuple[str, Optional[str], Any]]:
        """Flatten into (attribute, key, value) items, one per assertion."""
        out: List[Tuple[str, Optional[str], Any]] = []
        if self.version is not None:
            out.append(("version", None, self.version))
        for name, values in self.variants.items():
            out.append(("variants", name, values))
        for attr in ("platform", "os", "target", "compiler"):
            value = getattr(self, attr)
            if value is not None:
                out.append((attr, None, value))
        for flag_type, flags in self.flags.items():
            out.append(("flags", flag_type, flags))
        return out

    @classmethod
    def from_items(cls, items: List[Tuple[str, Optional[str], Any]]) -> "Constraints":
        result = cls()
        variants: Dict[str, Tuple[str, ...]] = {}
        flags: Dict[str, Tuple[str, ...]] = {}
        for attr, key, value in items:
            if attr == "variants":
                variants[key] = value
            elif attr == "flags":
                flags[key] = value
            else:
                result = replace(result, **{attr: value})
        return replace(result, variants=variants, flags=flags)

    def describe(self) -> str:
        parts = []
        for attr, key, value in self.items():
            parts.append(describe_item(attr, key, value))
        return " ".join(parts)

    def validate(self, catalog: "Catalog", where: str) -> None:
        """Check that referenced compilers, targets, OSes and platforms exist.

        Raises:
            CatalogError: On the first unknown reference.
        """
        if self.compiler is not None and self.compiler.name not in catalog.compiler_names():
            raise CatalogError(f"{where}: unknown compiler '{self.compiler.name}'")
        if self.target is not None and catalog.target(self.target) is None:
            raise CatalogError(f"{where}: unknown target '{self.target}'")
        if self.os is not None and catalog.operating_system(self.os) is None:
            raise CatalogError(f"{where}: unknown operating system '{self.os}'")
        if self.platform is not None and self.platform not in catalog.platforms:
            raise CatalogError(f"{where}: unknown platform '{self.platform}'")


def describe_item(attr: str, key: Optional[str], value: Any) -> str:
    if attr == "version":
        return f"@{value}"
    if attr == "variants":
        return f"{key}={','.join(value)}"
    if attr == "compiler":
        return f"%{value}"
    if attr == "flags":
        return f"{key}=\"{' '.join(value)}\""
    return f"{attr}={value}"


@dataclass(frozen=True)
class RootRequest:
    """One requested root; ``name`` may be a virtual."""
    name: str
    constraints: Constraints = field(default_factory=Constraints)

    def __str__(self) -> str:
        described = self.constraints.describe()
        return f"{self.name} {described}".strip()


@dataclass(frozen=True)
class Request:
    """The partial specification handed to the solver.

    ``dependencies`` holds explicit constraints for non-root packages; each
    such package must appear in the solved graph.
    """
    roots: Tuple[RootRequest, ...]
    dependencies: Dict[str, Constraints] = field(default_factory=dict)

    @classmethod
    def of(cls, *names: str) -> "Request":
        return cls(roots=tuple(RootRequest(n) for n in names))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Request":
        """Build a request from its mapping form.

        Raises:
            CatalogError: On malformed input.
        """
        if not isinstance(data, Mapping):
            raise CatalogError("request: expected a mapping")
        roots: List[RootRequest] = []
        for idx, item in enumerate(data.get("roots") or []):
            if isinstance(item, str):
                roots.append(RootRequest(item))
                continue
            if not isinstance(item, Mapping) or not item.get("name"):
                raise CatalogError(f"request.roots[{idx}]: each root needs a name")
            body = {k: v for k, v in item.items() if k != "name"}
            roots.append(RootRequest(str(item["name"]), Constraints.from_dict(body, f"request.roots[{idx}]")))
        if not roots:
            raise CatalogError("request: at least one root is required")

        dependencies = {
            str(name): Constraints.from_dict(body, f"request.dependencies.{name}")
            for name, body in (data.get("dependencies") or {}).items()
        }
        return cls(roots=tuple(roots), dependencies=dependencies)

    @property
    def root_names(self) -> Tuple[str, ...]:
        return tuple(r.name for r in self.roots)

    def explicit(self, name: str) -> Constraints:
        """Explicit constraints the user placed on ``name`` (root or dependency)."""
        for root in self.roots:
            if root.name == name:
                return root.constraints
        return self.dependencies.get(name, Constraints())

    def validate(self, catalog: "Catalog") -> None:
        """Reject requests naming things the catalog does not know.

        Raises:
            CatalogError: For unknown packages, compilers, targets, OSes or platforms.
        """
        seen = set()
        for root in self.roots:
            if root.name in seen:
                raise CatalogError(f"request: root '{root.name}' requested twice")
            seen.add(root.name)
            if not catalog.is_package(root.name) and not catalog.is_virtual(root.name):
                raise CatalogError(f"request: unknown package '{root.name}'")
            root.constraints.validate(catalog, f"request.{root.name}")
        for name, constraints in self.dependencies.items():
            if not catalog.is_package(name) and not catalog.is_virtual(name):
                raise CatalogError(f"request: unknown dependency '{name}'")
            constraints.validate(catalog, f"request.^{name}")

    def __str__(self) -> str:
        parts = [str(r) for r in self.roots]
        for name, constraints in self.dependencies.items():
            parts.append(f"^{name} {constraints.describe()}".strip())
        return " ".join(parts)


def load_request(path: str) -> Request:
    """Load a request from a YAML or JSON file.

    Raises:
        CatalogError: If the file cannot be parsed or is malformed.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            if path.lower().endswith(".json"):
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
    except (yaml.YAMLError, ValueError) as exc:
        raise CatalogError(f"Failed to parse request {path}: {exc}") from exc
    logger.debug("Loaded request from %s", path)
    return Request.from_dict(data or {})
