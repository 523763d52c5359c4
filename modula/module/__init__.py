"""
Modula module system - manifests, resolution, gating and lifecycle.
"""

from modula.module.catalog import ManifestCatalog, load_catalog
from modula.module.errors import (
    BlockedModuleError,
    ConfigurationError,
    CycleError,
    LoaderError,
    ModuleError,
    NotActiveError,
    SetupFailure,
    TeardownFailure,
    UnresolvedDependencyError,
)
from modula.module.gate import FeatureGate, is_eligible
from modula.module.loader import FactoryArena, ModuleImplementation
from modula.module.manager import (
    ActivationReport,
    ModuleContext,
    ModulePhase,
    ModuleRegistry,
    ModuleState,
)
from modula.module.manifest import (
    ActivationKind,
    ActivationRule,
    ModuleManifest,
    migrate_activation,
    migrate_manifest_data,
    parse_manifest,
    parse_manifest_data,
)
from modula.module.resolver import DependencyResolver, ResolutionResult, resolve

__all__ = [
    "ActivationKind",
    "ActivationReport",
    "ActivationRule",
    "BlockedModuleError",
    "ConfigurationError",
    "CycleError",
    "DependencyResolver",
    "FactoryArena",
    "FeatureGate",
    "LoaderError",
    "ManifestCatalog",
    "ModuleContext",
    "ModuleError",
    "ModuleImplementation",
    "ModuleManifest",
    "ModulePhase",
    "ModuleRegistry",
    "ModuleState",
    "NotActiveError",
    "ResolutionResult",
    "SetupFailure",
    "TeardownFailure",
    "UnresolvedDependencyError",
    "is_eligible",
    "load_catalog",
    "migrate_activation",
    "migrate_manifest_data",
    "parse_manifest",
    "parse_manifest_data",
    "resolve",
]
