"""Static catalog of packages, compilers, targets and operating systems."""

from .loader import catalog_from_dict, load_catalog
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

__all__ = [
    "Catalog",
    "CompilerEntry",
    "ConflictTemplate",
    "DeclaredVersion",
    "DependencyTemplate",
    "OSEntry",
    "PackageEntry",
    "ProviderTemplate",
    "TargetEntry",
    "VariantDef",
    "catalog_from_dict",
    "load_catalog",
]
