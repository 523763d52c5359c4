"""
Module Kernel Errors.

Every failure the kernel can report derives from ModuleError. Only
ConfigurationError and NotActiveError are raised to callers; the rest are
collected as diagnostics so an activation pass always completes.
"""


class ModuleError(Exception):
    """Base exception for module kernel errors."""

    def __init__(self, message: str, module_id: str | None = None):
        super().__init__(message)
        self.module_id = module_id


class ConfigurationError(ModuleError):
    """Raised for a duplicate id or a malformed manifest."""

    pass


class CycleError(ModuleError):
    """A dependency cycle; every module on it stays ineligible."""

    def __init__(self, cycle: list[str]):
        super().__init__(
            f"Circular dependency detected: {' -> '.join(cycle)}",
            module_id=cycle[0] if cycle else None,
        )
        self.cycle = list(cycle)


class UnresolvedDependencyError(ModuleError):
    """A dependsOn entry that names no known manifest."""

    def __init__(self, module_id: str, missing: str):
        super().__init__(
            f"Module '{module_id}' depends on unknown module '{missing}'",
            module_id=module_id,
        )
        self.missing = missing


class BlockedModuleError(ModuleError):
    """A module that depends on a module excluded by a cycle."""

    pass


class SetupFailure(ModuleError):
    """Raised (and captured) when a module's setup fails."""

    pass


class TeardownFailure(ModuleError):
    """Raised (and captured) when a module's teardown fails."""

    pass


class NotActiveError(ModuleError):
    """Raised when exports are requested from a module that is not active."""

    pass


class LoaderError(ModuleError):
    """Raised when a module implementation cannot be resolved."""

    pass
