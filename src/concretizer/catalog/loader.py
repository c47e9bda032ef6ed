"""Load and validate a normalized catalog from its mapping form (YAML/JSON).

The mapping form is what the external package-definition loader produces:

    platforms: [linux]
    operating_systems: [{name: ubuntu22.04, platform: linux}]
    targets: [x86_64_v3, x86_64]
    compilers:
      - {name: gcc, version: "12.2.0", operating_systems: [ubuntu22.04]}
    packages:
      zlib:
        versions: ["1.3", "1.2.13"]
        variants: {shared: {default: true}}
        dependencies: [{name: cmake, type: build}]
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from ..analysis.conditions import Condition, parse_condition
from ..constants import Constants, DependencyKind
from ..errors import CatalogError
from ..request import Constraints, normalize_variant_value
from ..versioning import parse_compiler_spec, parse_version, version_key
from .models import (
    Catalog,
    CompilerEntry,
    ConflictTemplate,
    DeclaredVersion,
    DependencyTemplate,
    OSEntry,
    PackageEntry,
    ProviderTemplate,
    TargetEntry,
    VariantDef,
)

logger = logging.getLogger(__name__)

_DEPENDENCY_KINDS = {k.value for k in DependencyKind}


def load_catalog(path: str) -> Catalog:
    """Read a catalog file (YAML or JSON) and validate it.

    Raises:
        CatalogError: If the file does not describe a consistent catalog.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            if path.lower().endswith(".json"):
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
    except (yaml.YAMLError, ValueError) as exc:
        raise CatalogError(f"Failed to parse catalog {path}: {exc}") from exc
    catalog = catalog_from_dict(data or {})
    logger.info("Loaded catalog from %s: %d packages", path, len(catalog.packages))
    return catalog


def _named_entries(items: Iterable[Any], where: str) -> List[Tuple[str, Optional[str]]]:
    out = []
    for item in items or ():
        if isinstance(item, str):
            out.append((item, None))
        elif isinstance(item, Mapping) and item.get("name"):
            out.append((str(item["name"]), item.get("platform")))
        else:
            raise CatalogError(f"{where}: entries must be names or mappings with a name")
    return out


def _versions(name: str, items: Any) -> Tuple[DeclaredVersion, ...]:
    where = f"packages.{name}.versions"
    if not items:
        raise CatalogError(f"{where}: a package needs at least one version")
    rows = []
    for item in items:
        body = item if isinstance(item, Mapping) else {"version": item}
        if body.get("version") is None:
            raise CatalogError(f"{where}: entry without a version")
        text = str(body["version"])
        try:
            parsed = parse_version(text)
        except ValueError as exc:
            raise CatalogError(f"{where}: invalid version '{text}'") from exc
        rows.append((text, parsed, bool(body.get("preferred", False)),
                     bool(body.get("deprecated", False)), body.get("weight")))

    # Preferred versions first, then newest to oldest
    ordered = sorted(rows, key=lambda r: version_key(r[1]), reverse=True)
    ordered = sorted(ordered, key=lambda r: not r[2])
    seen = set()
    declared = []
    for position, (text, _, _, deprecated, weight) in enumerate(ordered):
        if text in seen:
            raise CatalogError(f"{where}: duplicate version '{text}'")
        seen.add(text)
        declared.append(DeclaredVersion(
            version=text,
            weight=int(weight) if weight is not None else position,
            deprecated=deprecated,
        ))
    return tuple(declared)


def _variant(package: str, name: str, body: Any) -> VariantDef:
    where = f"packages.{package}.variants.{name}"
    if name in Constants.AD_HOC_VARIANTS:
        raise CatalogError(f"{where}: '{name}' is reserved")
    if not isinstance(body, Mapping):
        body = {"default": body}
    multi = bool(body.get("multi", False))
    if body.get("values") is None:
        default = normalize_variant_value(body.get("default", False))
        if default not in (("true",), ("false",)):
            raise CatalogError(f"{where}: variants without values must be boolean")
        values: Tuple[str, ...] = ("true", "false")
    else:
        values = normalize_variant_value(list(body["values"]))
        default = normalize_variant_value(body["default"]) if "default" in body else values[:1]
    if not values:
        raise CatalogError(f"{where}: empty value domain")
    for value in default:
        if value not in values:
            raise CatalogError(f"{where}: default '{value}' is not one of {list(values)}")
    if not multi and len(default) != 1:
        raise CatalogError(f"{where}: single-valued variant needs exactly one default")
    if Constants.NONE_VARIANT_VALUE in default and len(default) > 1:
        raise CatalogError(f"{where}: 'none' cannot be combined with other defaults")
    return VariantDef(name=name, values=values, default=default, multi=multi)


def _dependency_items(data: Any, where: str) -> List[Mapping[str, Any]]:
    if not data:
        return []
    if isinstance(data, Mapping):
        items = []
        for dep_name, body in data.items():
            body = dict(body or {})
            body["name"] = dep_name
            items.append(body)
        return items
    items = []
    for item in data:
        if isinstance(item, str):
            items.append({"name": item})
        elif isinstance(item, Mapping) and item.get("name"):
            items.append(item)
        else:
            raise CatalogError(f"{where}: each entry needs a name")
    return items


def _kinds(value: Any, where: str) -> frozenset:
    if value is None:
        kinds = Constants.DEFAULT_DEPENDENCY_KINDS
    elif isinstance(value, str):
        kinds = tuple(v.strip() for v in value.split(",") if v.strip())
    else:
        kinds = tuple(str(v) for v in value)
    unknown = set(kinds) - _DEPENDENCY_KINDS
    if unknown or not kinds:
        raise CatalogError(f"{where}: invalid dependency type(s) {sorted(unknown) or kinds}")
    return frozenset(kinds)


def _package(name: str, body: Mapping[str, Any]) -> PackageEntry:
    where = f"packages.{name}"
    if not isinstance(body, Mapping):
        raise CatalogError(f"{where}: expected a mapping")

    variants = {
        str(v): _variant(name, str(v), vbody)
        for v, vbody in (body.get("variants") or {}).items()
    }

    dependencies = []
    for idx, item in enumerate(_dependency_items(body.get("dependencies"), f"{where}.dependencies")):
        dwhere = f"{where}.dependencies[{idx}]"
        dependencies.append(DependencyTemplate(
            depender=name,
            name=str(item["name"]),
            kinds=_kinds(item.get("type"), dwhere),
            when=parse_condition(name, item.get("when"), dwhere),
            imposes=Constraints.from_dict(item.get("imposes"), f"{dwhere}.imposes"),
        ))

    conflicts = []
    for idx, item in enumerate(body.get("conflicts") or []):
        cwhere = f"{where}.conflicts[{idx}]"
        if not isinstance(item, Mapping) or "when" not in item:
            raise CatalogError(f"{cwhere}: conflicts need a 'when' condition")
        conflicts.append(ConflictTemplate(
            package=name,
            when=parse_condition(name, item.get("when"), cwhere),
            message=str(item.get("message") or ""),
        ))

    provides = []
    for idx, item in enumerate(body.get("provides") or []):
        pwhere = f"{where}.provides[{idx}]"
        item = {"name": item} if isinstance(item, str) else item
        if not isinstance(item, Mapping) or not item.get("name"):
            raise CatalogError(f"{pwhere}: provides entries need a virtual name")
        provides.append(ProviderTemplate(
            package=name,
            virtual=str(item["name"]),
            when=parse_condition(name, item.get("when"), pwhere),
        ))

    return PackageEntry(
        name=name,
        versions=_versions(name, body.get("versions")),
        variants=variants,
        dependencies=tuple(dependencies),
        conflicts=tuple(conflicts),
        provides=tuple(provides),
    )


def _compilers(items: Any) -> Tuple[CompilerEntry, ...]:
    compilers = []
    for idx, item in enumerate(items or ()):
        where = f"compilers[{idx}]"
        if not isinstance(item, Mapping) or not item.get("name") or item.get("version") is None:
            raise CatalogError(f"{where}: compilers need a name and a version")
        oses = item.get("operating_systems", item.get("os"))
        if isinstance(oses, str):
            oses = [oses]
        compilers.append(CompilerEntry(
            name=str(item["name"]),
            version=str(item["version"]),
            operating_systems=tuple(str(o) for o in oses or ()),
            targets=tuple(str(t) for t in item.get("targets") or ()),
            flags=Constraints.from_dict({"flags": item.get("flags")}, where).flags,
        ))
    return tuple(compilers)


def catalog_from_dict(data: Mapping[str, Any]) -> Catalog:
    """Build a validated Catalog from its mapping form.

    Raises:
        CatalogError: On any inconsistency; the catalog is never partially accepted.
    """
    if not isinstance(data, Mapping):
        raise CatalogError("catalog: expected a mapping")

    oses = [OSEntry(n, p) for n, p in _named_entries(data.get("operating_systems"), "operating_systems")]
    targets = [TargetEntry(n, p) for n, p in _named_entries(data.get("targets"), "targets")]
    platforms = [str(p) for p in data.get("platforms") or ()]
    if not platforms:
        platforms = sorted({e.platform for e in (*oses, *targets) if e.platform})
    compilers = _compilers(data.get("compilers"))

    packages: Dict[str, PackageEntry] = {}
    for name, body in (data.get("packages") or {}).items():
        packages[str(name)] = _package(str(name), body)

    allowed = set()
    for item in data.get("allow_compilers") or ():
        try:
            spec = parse_compiler_spec(str(item))
        except ValueError as exc:
            raise CatalogError(f"allow_compilers: {exc}") from exc
        for entry in compilers:
            if spec.matches(entry.name, entry.version):
                allowed.add((entry.name, entry.version))

    catalog = Catalog(
        packages=packages,
        compilers=compilers,
        targets=tuple(targets),
        operating_systems=tuple(oses),
        platforms=tuple(platforms),
        allowed_compilers=frozenset(allowed),
    )
    validate_catalog(catalog)
    return catalog


def _check_condition(catalog: Catalog, condition: Condition, where: str) -> None:
    for slot in condition.slots:
        if not catalog.is_package(slot) and not catalog.is_virtual(slot):
            raise CatalogError(f"{where}: condition references unknown package '{slot}'")
    for predicate in condition.predicates:
        slot = predicate.package
        if predicate.kind == "variant" and catalog.is_package(slot):
            entry = catalog.package(slot)
            if predicate.variant not in entry.variants and predicate.variant not in Constants.AD_HOC_VARIANTS:
                raise CatalogError(f"{where}: '{slot}' has no variant '{predicate.variant}'")
        elif predicate.kind == "compiler" and predicate.spec.name not in catalog.compiler_names():
            raise CatalogError(f"{where}: unknown compiler '{predicate.spec.name}'")
        elif predicate.kind == "target" and catalog.target(predicate.value) is None:
            raise CatalogError(f"{where}: unknown target '{predicate.value}'")
        elif predicate.kind == "os" and catalog.operating_system(predicate.value) is None:
            raise CatalogError(f"{where}: unknown operating system '{predicate.value}'")
        elif predicate.kind == "platform" and predicate.value not in catalog.platforms:
            raise CatalogError(f"{where}: unknown platform '{predicate.value}'")


def validate_catalog(catalog: Catalog) -> None:
    """Cross-reference check of a freshly built catalog.

    Raises:
        CatalogError: On the first inconsistency found.
    """
    if not catalog.operating_systems:
        raise CatalogError("catalog: no operating systems declared")
    if not catalog.targets:
        raise CatalogError("catalog: no targets declared")
    if not catalog.compilers:
        raise CatalogError("catalog: no compilers declared")
    if not catalog.platforms:
        raise CatalogError("catalog: no platforms declared")

    for entry in (*catalog.operating_systems, *catalog.targets):
        if entry.platform is not None and entry.platform not in catalog.platforms:
            raise CatalogError(f"catalog: '{entry.name}' names unknown platform '{entry.platform}'")

    for compiler in catalog.compilers:
        try:
            parse_version(compiler.version)
        except ValueError as exc:
            raise CatalogError(f"compiler {compiler}: invalid version") from exc
        for os_name in compiler.operating_systems:
            if catalog.operating_system(os_name) is None:
                raise CatalogError(f"compiler {compiler}: unknown operating system '{os_name}'")
        for target in compiler.targets:
            if catalog.target(target) is None:
                raise CatalogError(f"compiler {compiler}: unknown target '{target}'")

    for entry in catalog.packages.values():
        where = f"packages.{entry.name}"
        for template in entry.dependencies:
            dwhere = f"{where} -> {template.name}"
            if template.name == entry.name:
                raise CatalogError(f"{dwhere}: a package cannot depend on itself")
            if not catalog.is_package(template.name) and not catalog.is_virtual(template.name):
                raise CatalogError(f"{dwhere}: unknown dependency '{template.name}'")
            _check_condition(catalog, template.when, dwhere)
            template.imposes.validate(catalog, f"{dwhere} imposes")
            if catalog.is_package(template.name):
                target_entry = catalog.package(template.name)
                for variant in template.imposes.variants:
                    if variant not in target_entry.variants and variant not in Constants.AD_HOC_VARIANTS:
                        raise CatalogError(f"{dwhere}: '{template.name}' has no variant '{variant}'")
        for conflict in entry.conflicts:
            _check_condition(catalog, conflict.when, f"{where} conflict")
        for provided in entry.provides:
            if catalog.is_package(provided.virtual):
                raise CatalogError(f"{where}: virtual '{provided.virtual}' clashes with a package name")
            _check_condition(catalog, provided.when, f"{where} provides {provided.virtual}")
