"""Solver configuration: preferences, externals and search budget.

Configuration is loaded from YAML (or JSON) with the following precedence:
- explicit path (``--config``)
- ``$CONCRETIZER_CONFIG``
- ``~/.config/concretizer/config.yml``
- built-in defaults

``--set KEY=VALUE`` overrides are deep-merged on top of whichever source won.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from .constants import Constants
from .errors import ConfigError
from .request import Constraints, normalize_variant_value
from .versioning import CompilerSpec, parse_compiler_spec

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "concretizer": {
        "max_iterations": Constants.DEFAULT_MAX_ITERATIONS,
        "time_limit": None,
        "allow_deprecated": False,
    },
    "defaults": {},
    "compilers": [],
    "targets": [],
    "providers": {},
    "allow_compilers": [],
    "packages": {},
}


@dataclass(frozen=True)
class ExternalSpec:
    """A pre-built instance of ``package`` that can only be selected whole."""
    package: str
    version: str
    constraints: Constraints = field(default_factory=Constraints)
    prefix: Optional[str] = None
    index: int = 0

    @property
    def identity(self) -> str:
        return f"{self.package}@{self.version}#{self.index}"


@dataclass(frozen=True)
class PackagePreferences:
    """Per-package preferences; each list is in preference order."""
    version: Tuple[str, ...] = ()
    variants: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    compiler: Tuple[CompilerSpec, ...] = ()
    target: Tuple[str, ...] = ()
    providers: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    buildable: bool = True
    externals: Tuple[ExternalSpec, ...] = ()


@dataclass(frozen=True)
class SolverConfig:
    """Everything the solver reads besides the catalog and the request."""
    max_iterations: Optional[int] = Constants.DEFAULT_MAX_ITERATIONS
    time_limit: Optional[float] = None
    allow_deprecated: bool = False
    default_platform: Optional[str] = None
    default_os: Optional[str] = None
    default_target: Optional[str] = None
    compilers: Tuple[CompilerSpec, ...] = ()
    targets: Tuple[str, ...] = ()
    providers: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    allowed_compilers: Tuple[CompilerSpec, ...] = ()
    packages: Dict[str, PackagePreferences] = field(default_factory=dict)

    def package(self, name: str) -> PackagePreferences:
        return self.packages.get(name) or _EMPTY_PREFERENCES

    def externals(self, name: str) -> Tuple[ExternalSpec, ...]:
        return self.package(name).externals

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SolverConfig":
        """Build a config from its mapping form (defaults fill the gaps).

        Raises:
            ConfigError: On malformed input.
        """
        merged = copy.deepcopy(DEFAULTS)
        if data:
            if not isinstance(data, Mapping):
                raise ConfigError("config: expected a mapping")
            deep_merge(merged, dict(data))

        solver = merged.get("concretizer") or {}
        defaults = merged.get("defaults") or {}
        packages_raw = dict(merged.get("packages") or {})
        everything = packages_raw.pop("all", None) or {}

        compilers = _compiler_list(merged.get("compilers") or everything.get("compiler") or [], "compilers")
        targets = tuple(str(t) for t in (merged.get("targets") or everything.get("target") or []))
        providers = _providers(everything.get("providers") or {}, "packages.all.providers")
        providers.update(_providers(merged.get("providers") or {}, "providers"))

        packages = {
            str(name): _package_preferences(str(name), body)
            for name, body in packages_raw.items()
        }

        max_iterations = solver.get("max_iterations")
        time_limit = solver.get("time_limit")
        try:
            return cls(
                max_iterations=int(max_iterations) if max_iterations is not None else None,
                time_limit=float(time_limit) if time_limit is not None else None,
                allow_deprecated=bool(solver.get("allow_deprecated", False)),
                default_platform=defaults.get("platform"),
                default_os=defaults.get("os"),
                default_target=defaults.get("target"),
                compilers=compilers,
                targets=targets,
                providers=providers,
                allowed_compilers=_compiler_list(merged.get("allow_compilers") or [], "allow_compilers"),
                packages=packages,
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"config: {exc}") from exc


_EMPTY_PREFERENCES = PackagePreferences()


def _compiler_list(items: Iterable[Any], where: str) -> Tuple[CompilerSpec, ...]:
    try:
        return tuple(parse_compiler_spec(str(item)) for item in items)
    except ValueError as exc:
        raise ConfigError(f"{where}: {exc}") from exc


def _providers(data: Mapping[str, Any], where: str) -> Dict[str, Tuple[str, ...]]:
    if not isinstance(data, Mapping):
        raise ConfigError(f"{where}: expected a mapping of virtual to provider list")
    return {str(virtual): tuple(str(p) for p in names or ()) for virtual, names in data.items()}


def _package_preferences(name: str, body: Any) -> PackagePreferences:
    where = f"packages.{name}"
    if body is None:
        return PackagePreferences()
    if not isinstance(body, Mapping):
        raise ConfigError(f"{where}: expected a mapping")

    variants_raw = body.get("variants") or {}
    if not isinstance(variants_raw, Mapping):
        raise ConfigError(f"{where}.variants: expected a mapping")

    externals = []
    for idx, ext in enumerate(body.get("externals") or []):
        externals.append(_external(name, idx, ext))

    return PackagePreferences(
        version=tuple(str(v) for v in body.get("version") or ()),
        variants={str(k): normalize_variant_value(v) for k, v in variants_raw.items()},
        compiler=_compiler_list(body.get("compiler") or [], f"{where}.compiler"),
        target=tuple(str(t) for t in body.get("target") or ()),
        providers=_providers(body.get("providers") or {}, f"{where}.providers"),
        buildable=bool(body.get("buildable", True)),
        externals=tuple(externals),
    )


def _external(name: str, idx: int, data: Any) -> ExternalSpec:
    where = f"packages.{name}.externals[{idx}]"
    if not isinstance(data, Mapping) or data.get("version") is None:
        raise ConfigError(f"{where}: externals need at least a version")
    body = {k: v for k, v in data.items() if k not in ("version", "prefix")}
    try:
        constraints = Constraints.from_dict(body, where)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return ExternalSpec(
        package=name,
        version=str(data["version"]),
        constraints=constraints,
        prefix=data.get("prefix"),
        index=idx,
    )


def deep_merge(dest: Dict[str, Any], src: Mapping[str, Any]) -> None:
    """Deep-merge src into dest in-place."""
    for k, v in src.items():
        if isinstance(v, Mapping) and isinstance(dest.get(k), dict):
            deep_merge(dest[k], v)
        else:
            dest[k] = copy.deepcopy(v)


def _coerce_value(text: str) -> Any:
    """Best-effort convert string to JSON/number/bool, else raw string."""
    s = str(text).strip()
    try:
        return json.loads(s)
    except ValueError:
        sl = s.lower()
        if sl == "true":
            return True
        if sl == "false":
            return False
        if sl in ("none", "null"):
            return None
        return s


def _apply_dot_path(dct: Dict[str, Any], dot_path: str, value: Any) -> None:
    parts = [p for p in dot_path.split(".") if p]
    if not parts:
        raise ConfigError(f"Invalid override key: '{dot_path}'")
    cur = dct
    for key in parts[:-1]:
        if key not in cur or not isinstance(cur.get(key), dict):
            cur[key] = {}
        cur = cur[key]
    cur[parts[-1]] = value


def collect_overrides(pairs: Optional[Iterable[str]]) -> Dict[str, Any]:
    """Turn ``KEY=VALUE`` strings into a nested override mapping.

    Raises:
        ConfigError: When an item is not of the ``KEY=VALUE`` form.
    """
    overrides: Dict[str, Any] = {}
    for item in pairs or ():
        if not isinstance(item, str) or "=" not in item:
            raise ConfigError(f"Invalid override '{item}', expected KEY=VALUE")
        key, val = item.split("=", 1)
        _apply_dot_path(overrides, key.strip(), _coerce_value(val.strip()))
    return overrides


def _load_from(path: str) -> Dict[str, Any]:
    """Read one YAML/JSON config file.

    Raises:
        ConfigError: If the file cannot be parsed or is not a mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            if path.lower().endswith(".json"):
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
    except (yaml.YAMLError, ValueError) as exc:
        raise ConfigError(f"Failed to parse config {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must contain a mapping")
    return data


def resolve_config_path(path: Optional[str] = None) -> Optional[str]:
    """Pick the config file to read following the documented precedence."""
    if path:
        if not os.path.isfile(path):
            raise ConfigError(f"Config file not found: {path}")
        return path
    env_path = os.environ.get(Constants.ENV_CONFIG)
    if env_path and os.path.isfile(env_path):
        return env_path
    user_path = os.path.expanduser(Constants.USER_CONFIG)
    if os.path.isfile(user_path):
        return user_path
    return None


def load_config(path: Optional[str] = None, overrides: Optional[Iterable[str]] = None) -> SolverConfig:
    """Load the solver configuration.

    Args:
        path: Explicit config file; wins over the environment and user config.
        overrides: ``KEY=VALUE`` strings deep-merged last.

    Returns:
        The resolved SolverConfig.
    """
    data: Dict[str, Any] = {}
    source = resolve_config_path(path)
    if source:
        data = _load_from(source)
        logger.info("Loaded solver config from: %s", source)
    else:
        logger.debug("No solver config file found; using defaults")

    extra = collect_overrides(overrides)
    if extra:
        deep_merge(data, extra)
        logger.debug("Applied %d config override(s)", len(list(overrides or ())))
    return SolverConfig.from_dict(data)


def preference_index(items: List[Any], match) -> Optional[int]:
    """Index of the first item accepted by ``match``, or None."""
    for idx, item in enumerate(items):
        if match(item):
            return idx
    return None
