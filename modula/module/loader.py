"""
Module Implementation Loader.

This module resolves module code lazily, on first activation.

Key features:
- Arena of factories keyed by module id
- importlib resolution of "package.module:attribute" entry points
- Resolution caching (a module's code is loaded once)
"""

import importlib
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from modula.module.errors import LoaderError


@dataclass
class ModuleImplementation:
    """
    Lifecycle callables and exports of a loaded module.

    Attributes:
        setup: Called with the module context on activation
        teardown: Called with no arguments on deactivation
        exports: Capability map; None means "use the manifest's exports"
    """

    setup: Callable[[Any], Any] | None = None
    teardown: Callable[[], Any] | None = None
    exports: dict[str, Any] | None = field(default=None)


def _has_lifecycle(obj: Any) -> bool:
    return hasattr(obj, "setup") or hasattr(obj, "teardown")


def as_implementation(obj: Any, module_id: str) -> ModuleImplementation:
    """
    Adapt a loaded object (module, class instance, implementation) to a
    ModuleImplementation.

    Raises:
        LoaderError: If the object exposes neither setup nor teardown
    """
    if isinstance(obj, ModuleImplementation):
        return obj
    if not _has_lifecycle(obj):
        raise LoaderError(
            f"Implementation of '{module_id}' defines neither setup nor teardown",
            module_id=module_id,
        )
    exports = getattr(obj, "exports", None)
    if exports is not None and not isinstance(exports, dict):
        raise LoaderError(
            f"exports of '{module_id}' must be a dict", module_id=module_id
        )
    return ModuleImplementation(
        setup=getattr(obj, "setup", None),
        teardown=getattr(obj, "teardown", None),
        exports=exports,
    )


def import_entry(entry: str, module_id: str | None = None) -> Any:
    """
    Import the object named by a "package.module:attribute" entry point.

    Raises:
        LoaderError: If the module or attribute cannot be found
    """
    module_name, _, attribute = entry.partition(":")
    if not module_name or not attribute:
        raise LoaderError(
            f"Invalid entry point: {entry!r}. Expected 'package.module:attribute'",
            module_id=module_id,
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise LoaderError(
            f"Failed to import '{module_name}': {e}", module_id=module_id
        ) from e
    try:
        return getattr(module, attribute)
    except AttributeError as e:
        raise LoaderError(
            f"Module '{module_name}' has no attribute '{attribute}'",
            module_id=module_id,
        ) from e


class FactoryArena:
    """
    Factories keyed by module id, resolved on first use.

    A factory is either a zero-argument callable returning the implementation
    or an entry-point string. Entry points naming a class, or a callable
    without setup or teardown attributes, are treated as factories and called
    once.
    """

    def __init__(self):
        self._factories: dict[str, Callable[[], Any] | str] = {}
        self._cache: dict[str, ModuleImplementation] = {}
        self._lock = threading.Lock()

    def register(self, module_id: str, factory: Callable[[], Any] | str) -> None:
        """
        Register a factory for a module id.

        Raises:
            LoaderError: If a factory is already registered for the id
        """
        if not callable(factory) and not isinstance(factory, str):
            raise LoaderError(
                f"Factory for '{module_id}' must be callable or an entry point",
                module_id=module_id,
            )
        with self._lock:
            if module_id in self._factories:
                raise LoaderError(
                    f"Factory for '{module_id}' already registered", module_id=module_id
                )
            self._factories[module_id] = factory

    def __contains__(self, module_id: object) -> bool:
        with self._lock:
            return module_id in self._factories

    def is_resolved(self, module_id: str) -> bool:
        with self._lock:
            return module_id in self._cache

    def resolve(self, module_id: str, entry: str | None = None) -> ModuleImplementation:
        """
        Resolve (and cache) the implementation of a module.

        Args:
            module_id: Module identifier
            entry: Fallback entry point when no factory is registered

        Returns:
            ModuleImplementation

        Raises:
            LoaderError: If nothing can be resolved for the module
        """
        with self._lock:
            cached = self._cache.get(module_id)
            factory = self._factories.get(module_id, entry)
        if cached is not None:
            return cached
        if factory is None:
            raise LoaderError(
                f"No implementation registered for '{module_id}'", module_id=module_id
            )

        try:
            if isinstance(factory, str):
                obj = import_entry(factory, module_id)
                if isinstance(obj, type) or (callable(obj) and not _has_lifecycle(obj)):
                    obj = obj()
            else:
                obj = factory()
        except LoaderError:
            raise
        except Exception as e:
            raise LoaderError(
                f"Factory for '{module_id}' failed: {e}", module_id=module_id
            ) from e

        implementation = as_implementation(obj, module_id)
        with self._lock:
            # Another thread may have won the race; keep the first result
            implementation = self._cache.setdefault(module_id, implementation)
        return implementation

    def forget(self, module_id: str) -> None:
        """Drop the cached implementation so the next resolve() reloads it."""
        with self._lock:
            self._cache.pop(module_id, None)

    def clear(self) -> None:
        """Drop every cached implementation."""
        with self._lock:
            self._cache.clear()
