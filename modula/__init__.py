"""
Modula - feature-gated module kernel for business-management hosts.

This is the main package that exports the public API: manifests, the module
registry, the hook registry and the event bus.
"""

__version__ = "0.1.0"

from modula.config import KernelConfig, load_config
from modula.core import EventBus, HookRegistry
from modula.module import (
    ActivationReport,
    ActivationRule,
    ConfigurationError,
    ModuleContext,
    ModuleError,
    ModuleManifest,
    ModulePhase,
    ModuleRegistry,
    NotActiveError,
)

__all__ = [
    "__version__",
    "ActivationReport",
    "ActivationRule",
    "ConfigurationError",
    "EventBus",
    "HookRegistry",
    "KernelConfig",
    "ModuleContext",
    "ModuleError",
    "ModuleManifest",
    "ModulePhase",
    "ModuleRegistry",
    "NotActiveError",
    "load_config",
]
