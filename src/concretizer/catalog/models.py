"""Data models for the package catalog.

Every model here is immutable once loaded; the catalog is shared read-only by
every search branch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple, TYPE_CHECKING

import semantic_version

from ..constants import Constants
from ..versioning import CompilerSpec, parse_version

if TYPE_CHECKING:  # pragma: no cover
    from ..analysis.conditions import Condition
    from ..request import Constraints


@dataclass(frozen=True)
class DeclaredVersion:
    """A version a package can be built at; lower weight is preferred."""
    version: str
    weight: int
    deprecated: bool = False

    @property
    def parsed(self) -> semantic_version.Version:
        return parse_version(self.version)


@dataclass(frozen=True)
class VariantDef:
    """A declared build option."""
    name: str
    values: Tuple[str, ...]
    default: Tuple[str, ...]
    multi: bool = False

    def allows(self, value: str) -> bool:
        return value in self.values


@dataclass(frozen=True)
class DependencyTemplate:
    """``depender`` needs ``name`` of the given kinds whenever ``when`` holds."""
    depender: str
    name: str
    kinds: FrozenSet[str]
    when: "Condition"
    imposes: "Constraints"


@dataclass(frozen=True)
class ConflictTemplate:
    """Any assignment where ``when`` holds is rejected (unless ``package`` is external)."""
    package: str
    when: "Condition"
    message: str = ""


@dataclass(frozen=True)
class ProviderTemplate:
    """``package`` provides ``virtual`` whenever ``when`` holds."""
    package: str
    virtual: str
    when: "Condition"


@dataclass(frozen=True)
class PackageEntry:
    """Catalog entry for one concrete package."""
    name: str
    versions: Tuple[DeclaredVersion, ...]
    variants: Dict[str, VariantDef] = field(default_factory=dict)
    dependencies: Tuple[DependencyTemplate, ...] = ()
    conflicts: Tuple[ConflictTemplate, ...] = ()
    provides: Tuple[ProviderTemplate, ...] = ()

    def version(self, version: str) -> Optional[DeclaredVersion]:
        for declared in self.versions:
            if declared.version == version:
                return declared
        return None

    @property
    def multi_default_count(self) -> int:
        """Upper bound on retained multi-valued defaults for this package."""
        return sum(len(v.default) for v in self.variants.values() if v.multi)


@dataclass(frozen=True)
class CompilerEntry:
    """One installed compiler at one version."""
    name: str
    version: str
    operating_systems: Tuple[str, ...]
    targets: Tuple[str, ...] = ()
    flags: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def supports_os(self, os_name: str) -> bool:
        return os_name in self.operating_systems

    def supports_target(self, target: str) -> bool:
        return not self.targets or target in self.targets

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass(frozen=True)
class TargetEntry:
    """A microarchitecture; ``platform`` None means valid everywhere."""
    name: str
    platform: Optional[str] = None


@dataclass(frozen=True)
class OSEntry:
    """An operating system; ``platform`` None means valid everywhere."""
    name: str
    platform: Optional[str] = None


@dataclass(frozen=True)
class Catalog:
    """The static universe the solver searches over."""
    packages: Dict[str, PackageEntry]
    compilers: Tuple[CompilerEntry, ...] = ()
    targets: Tuple[TargetEntry, ...] = ()
    operating_systems: Tuple[OSEntry, ...] = ()
    platforms: Tuple[str, ...] = ()
    allowed_compilers: FrozenSet[Tuple[str, str]] = frozenset()
    _providers: Dict[str, Tuple[ProviderTemplate, ...]] = field(
        default_factory=dict, compare=False, repr=False
    )

    def __post_init__(self):
        index: Dict[str, List[ProviderTemplate]] = {}
        for entry in self.packages.values():
            for template in entry.provides:
                index.setdefault(template.virtual, []).append(template)
        self._providers.clear()
        self._providers.update({k: tuple(v) for k, v in index.items()})

    def package(self, name: str) -> PackageEntry:
        return self.packages[name]

    def is_package(self, name: str) -> bool:
        return name in self.packages

    def is_virtual(self, name: str) -> bool:
        return name not in self.packages and name in self._providers

    @property
    def virtuals(self) -> Tuple[str, ...]:
        return tuple(sorted(self._providers))

    def provider_templates(self, virtual: str) -> Tuple[ProviderTemplate, ...]:
        return self._providers.get(virtual, ())

    def providers_of(self, virtual: str) -> Tuple[str, ...]:
        """Names of packages that may provide ``virtual``, in catalog order."""
        seen: List[str] = []
        for template in self.provider_templates(virtual):
            if template.package not in seen:
                seen.append(template.package)
        return tuple(seen)

    def compiler_names(self) -> Tuple[str, ...]:
        names: List[str] = []
        for entry in self.compilers:
            if entry.name not in names:
                names.append(entry.name)
        return tuple(names)

    def compiler_versions(self, name: str) -> Tuple[str, ...]:
        return tuple(c.version for c in self.compilers if c.name == name)

    def find_compilers(self, spec: Optional[CompilerSpec] = None) -> Tuple[CompilerEntry, ...]:
        if spec is None:
            return self.compilers
        return tuple(c for c in self.compilers if spec.matches(c.name, c.version))

    def compiler(self, name: str, version: str) -> Optional[CompilerEntry]:
        for entry in self.compilers:
            if entry.name == name and entry.version == version:
                return entry
        return None

    def target_names(self) -> Tuple[str, ...]:
        return tuple(t.name for t in self.targets)

    def os_names(self) -> Tuple[str, ...]:
        return tuple(o.name for o in self.operating_systems)

    def target(self, name: str) -> Optional[TargetEntry]:
        for entry in self.targets:
            if entry.name == name:
                return entry
        return None

    def operating_system(self, name: str) -> Optional[OSEntry]:
        for entry in self.operating_systems:
            if entry.name == name:
                return entry
        return None

    def is_allowed_compiler(self, name: str, version: str) -> bool:
        return (name, version) in self.allowed_compilers

    @staticmethod
    def flag_types() -> Tuple[str, ...]:
        return Constants.FLAG_TYPES
