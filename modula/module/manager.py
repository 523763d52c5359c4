"""
Module Registry.

This module provides module lifecycle management.

Key features:
- Registry and per-module state tracking (ModuleState / ModulePhase)
- Activation in dependency order, gated by the enabled-feature set
- Two-phase feature-change passes (tear down losers, then activate winners)
- Failure isolation: a failing setup or teardown never aborts a pass
- A ModuleContext per module, bound to this registry's hooks and event bus
"""

import asyncio
import inspect
import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from modula.config import KernelConfig
from modula.core.event_bus import Event, EventBus, Subscription
from modula.core.hooks import HookHandle, HookRegistry
from modula.module.catalog import ManifestCatalog
from modula.module.errors import (
    ConfigurationError,
    LoaderError,
    ModuleError,
    NotActiveError,
    SetupFailure,
    TeardownFailure,
)
from modula.module.gate import enhancements, is_eligible
from modula.module.loader import FactoryArena, ModuleImplementation
from modula.module.manifest import ModuleManifest
from modula.module.resolver import DependencyResolver, ResolutionResult

logger = logging.getLogger(__name__)


class ModulePhase(Enum):
    """Module lifecycle phase."""

    UNINSTALLED = "uninstalled"
    ELIGIBLE = "eligible"
    INSTALLING = "installing"
    ACTIVE = "active"
    TEARING_DOWN = "tearing_down"
    FAILED = "failed"


@dataclass
class ModuleState:
    """
    Live state of one module.

    Attributes:
        module_id: Module identifier
        phase: Current lifecycle phase
        failure: Reason of the last failure, if any
        hook_handles: Hook registrations made through the module's context, by sequence
        subscriptions: Event subscriptions made through the module's context, by id
        setup_duration_ms: Duration of the last successful setup
    """

    module_id: str
    phase: ModulePhase = ModulePhase.UNINSTALLED
    failure: str | None = None
    hook_handles: dict[int, HookHandle] = field(default_factory=dict)
    subscriptions: dict[int, Subscription] = field(default_factory=dict)
    setup_duration_ms: float | None = None
    implementation: ModuleImplementation | None = field(default=None, repr=False)
    context: "ModuleContext | None" = field(default=None, repr=False)
    pending: "asyncio.Future[Any] | None" = field(default=None, repr=False)
    setup_started: float | None = field(default=None, repr=False)
    failed_inputs: tuple | None = field(default=None, repr=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_active(self) -> bool:
        return self.phase is ModulePhase.ACTIVE


@dataclass
class ActivationReport:
    """
    Outcome of one activation, feature-change or shutdown pass.

    Attributes:
        activated: Modules that became active, in order
        torn_down: Modules that were torn down, in order
        failed: module id -> setup failure
        skipped: Modules left inactive (not eligible or dependencies inactive)
        diagnostics: Every problem met during the pass
        duration_ms: Pass duration
    """

    activated: list[str] = field(default_factory=list)
    torn_down: list[str] = field(default_factory=list)
    failed: dict[str, SetupFailure] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    diagnostics: list[ModuleError] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failed and not self.diagnostics


class ModuleContext:
    """
    Capability handle given to a module's setup.

    Every hook registration and subscription made through the context is
    recorded against the module and removed when it is torn down. Once the
    module is torn down the context refuses new registrations.
    """

    def __init__(self, registry: "ModuleRegistry", state: ModuleState, manifest: ModuleManifest):
        self._registry = registry
        self._state = state
        self.manifest = manifest
        self.logger = logging.getLogger(f"modula.modules.{manifest.id}")
        self.closed = False

    @property
    def module_id(self) -> str:
        return self.manifest.id

    def _check_open(self) -> None:
        if self.closed:
            raise ModuleError(
                f"Context of '{self.module_id}' is closed; the module was torn down",
                module_id=self.module_id,
            )

    def close(self) -> None:
        self.closed = True

    # Hooks
    def add_action(
        self, hook_point_id: str, payload: Any, priority: int | None = None
    ) -> HookHandle:
        """Contribute a payload to a hook point on behalf of this module."""
        self._check_open()
        handle = self._registry.hooks.add_action(
            hook_point_id, payload, self.module_id, priority
        )
        self._state.hook_handles[handle.sequence] = handle
        return handle

    def remove_action(self, handle: HookHandle) -> bool:
        """Remove one of this module's own contributions."""
        if self._state.hook_handles.get(handle.sequence) != handle:
            return False
        del self._state.hook_handles[handle.sequence]
        return self._registry.hooks.remove_action(handle)

    def get_actions(self, hook_point_id: str) -> list[Any]:
        return self._registry.hooks.get_actions(hook_point_id)

    # Events
    def subscribe(self, pattern: str, handler: Callable[[Event], Any]) -> Subscription:
        """Subscribe a handler on behalf of this module."""
        self._check_open()
        if self.manifest.consumes and pattern not in self.manifest.consumes:
            self.logger.debug("Subscribing to undeclared pattern '%s'", pattern)
        subscription = self._registry.bus.subscribe(pattern, handler, self.module_id)
        self._state.subscriptions[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        if self._state.subscriptions.get(subscription.id) is not subscription:
            return False
        del self._state.subscriptions[subscription.id]
        return self._registry.bus.unsubscribe(subscription)

    async def emit(self, event_name: str, payload: Any = None) -> int:
        """Emit an event with this module as its source."""
        return await self._registry.bus.emit(
            event_name, payload, source_module_id=self.module_id
        )

    # Other modules and features
    def get_exports(self, module_id: str) -> Mapping[str, Any]:
        return self._registry.get_exports(module_id)

    def has_feature(self, feature_id: str) -> bool:
        return feature_id in self._registry.features

    @property
    def enhancements(self) -> frozenset[str]:
        """Enhancing features of this module that are currently enabled."""
        return enhancements(self.manifest, self._registry.features)


class ModuleRegistry:
    """
    Module lifecycle manager.

    Drives dependency resolution and feature gating, runs setups and
    teardowns one at a time in dependency order, and owns the hook registry
    and event bus handed to modules through their contexts.
    """

    def __init__(
        self,
        manifests: Iterable[ModuleManifest] = (),
        *,
        features: Iterable[str] | None = None,
        config: KernelConfig | None = None,
        hooks: HookRegistry | None = None,
        bus: EventBus | None = None,
        arena: FactoryArena | None = None,
    ):
        """
        Initialize ModuleRegistry.

        Args:
            manifests: Manifests to register right away
            features: Enabled features (defaults to config.enabled_features)
            config: Kernel configuration
            hooks: Hook registry to bind modules to (a fresh one by default)
            bus: Event bus to bind modules to (a fresh one by default)
            arena: Factories for lazily loaded modules

        Raises:
            ConfigurationError: If a manifest is malformed or duplicated
        """
        self.config = config or KernelConfig()
        self.catalog = ManifestCatalog()
        self.hooks = hooks or HookRegistry(default_priority=self.config.default_hook_priority)
        self.bus = bus or EventBus()
        self.arena = arena or FactoryArena()
        self._features = frozenset(
            self.config.enabled_features if features is None else features
        )
        self._states: dict[str, ModuleState] = {}
        self._state_lock = threading.Lock()
        self._pass_lock = asyncio.Lock()
        self._resolver: DependencyResolver | None = None
        self._resolution: ResolutionResult | None = None
        self._resolution_revision = -1
        self._pending_features: frozenset[str] | None = None
        self._debounce_task: asyncio.Task | None = None

        for manifest in manifests:
            self.register(manifest)

    @property
    def features(self) -> frozenset[str]:
        return self._features

    # Registration
    def register(self, manifest: ModuleManifest) -> None:
        """
        Add a manifest to the catalog; it takes part from the next pass on.

        Raises:
            ConfigurationError: If the manifest is malformed or its id is taken
        """
        self.catalog.add(manifest)
        with self._state_lock:
            self._states[manifest.id] = ModuleState(manifest.id)
        logger.debug(
            "Module registered: %s v%s (depends: %s)",
            manifest.id,
            manifest.version,
            list(manifest.depends_on),
        )

    def register_all(self, manifests: Iterable[ModuleManifest]) -> list[ConfigurationError]:
        """
        Register several manifests, excluding (and returning) the bad ones.

        Returns:
            Configuration errors of the manifests that were rejected
        """
        errors = []
        for manifest in manifests:
            try:
                self.register(manifest)
            except ConfigurationError as e:
                logger.error("Rejected manifest: %s", e)
                errors.append(e)
        return errors

    def register_factory(self, module_id: str, factory: Callable[[], Any] | str) -> None:
        """Register a lazily resolved implementation for a module id."""
        self.arena.register(module_id, factory)

    # Resolution and eligibility
    def _resolve(self) -> ResolutionResult:
        if self._resolution is None or self._resolution_revision != self.catalog.revision:
            revision = self.catalog.revision
            self._resolver = DependencyResolver(self.catalog)
            self._resolution = self._resolver.resolve()
            self._resolution_revision = revision
            for cycle in self._resolution.cycles:
                logger.error("Circular dependency detected: %s", " -> ".join(cycle))
            for module_id, missing in self._resolution.unresolved.items():
                logger.warning(
                    "Module '%s' has unresolved dependencies: %s", module_id, missing
                )
        return self._resolution

    @property
    def resolution(self) -> ResolutionResult:
        """The current resolution (computed on demand)."""
        return self._resolve()

    def _eligible(self, module_id: str, resolution: ResolutionResult) -> bool:
        if (
            module_id in resolution.in_cycle
            or module_id in resolution.unresolved
            or module_id in resolution.blocked
        ):
            return False
        manifest = self.catalog.get(module_id)
        return manifest is not None and is_eligible(manifest, self._features)

    def _inputs(self, module_id: str, resolution: ResolutionResult) -> tuple:
        """What a failed module's retry depends on."""
        manifest = self.catalog.get(module_id)
        active_deps = tuple(dep for dep in manifest.depends_on if self.is_active(dep))
        return (self._eligible(module_id, resolution), active_deps)

    def _refresh_phases(self, resolution: ResolutionResult) -> None:
        for module_id, state in self.states().items():
            if state.phase in (
                ModulePhase.ACTIVE,
                ModulePhase.INSTALLING,
                ModulePhase.TEARING_DOWN,
            ):
                continue
            if state.phase is ModulePhase.FAILED:
                if state.failed_inputs == self._inputs(module_id, resolution):
                    continue
                logger.info("Inputs of failed module '%s' changed, will retry", module_id)
                state.failed_inputs = None
            eligible = self._eligible(module_id, resolution)
            state.phase = ModulePhase.ELIGIBLE if eligible else ModulePhase.UNINSTALLED

    # Passes
    async def activate_all(self) -> ActivationReport:
        """
        Activate every eligible module whose dependencies are active.

        Returns:
            ActivationReport (the pass always completes)
        """
        async with self._pass_lock:
            started = time.perf_counter()
            report = ActivationReport()
            resolution = self._resolve()
            report.diagnostics.extend(resolution.errors())
            self._refresh_phases(resolution)
            await self._activation_phase(resolution, report)
            return self._finish(report, started, "Module activation")

    async def on_feature_set_changed(self, features: Iterable[str]) -> ActivationReport:
        """
        Apply a new enabled-feature set.

        Modules that lost eligibility, and every active module depending on
        them, are torn down first (dependents before dependencies); modules
        that became eligible are then activated in dependency order.

        Returns:
            ActivationReport
        """
        async with self._pass_lock:
            started = time.perf_counter()
            report = ActivationReport()
            previous, self._features = self._features, frozenset(features)
            logger.info(
                "Feature set changed (+%s, -%s)",
                sorted(self._features - previous),
                sorted(previous - self._features),
            )

            resolution = self._resolve()
            report.diagnostics.extend(resolution.errors())

            live = {
                module_id
                for module_id, state in self.states().items()
                if state.phase in (ModulePhase.ACTIVE, ModulePhase.INSTALLING)
            }
            losers = {m for m in live if not self._eligible(m, resolution)}
            doomed = losers | (self._resolver.dependents_of(losers) & live)
            for module_id in self._teardown_order(doomed, resolution):
                await self._deactivate(module_id, report, resolution)

            self._refresh_phases(resolution)
            await self._activation_phase(resolution, report)
            return self._finish(report, started, "Feature set pass")

    async def deactivate_all(self) -> ActivationReport:
        """Tear down every active module, dependents first."""
        async with self._pass_lock:
            started = time.perf_counter()
            report = ActivationReport()
            resolution = self._resolve()
            live = {
                module_id
                for module_id, state in self.states().items()
                if state.phase in (ModulePhase.ACTIVE, ModulePhase.INSTALLING)
            }
            for module_id in self._teardown_order(live, resolution):
                await self._deactivate(module_id, report, resolution)
            return self._finish(report, started, "Module shutdown")

    def request_feature_set(self, features: Iterable[str]) -> asyncio.Task:
        """
        Schedule a feature-set change, coalescing bursts.

        Requests arriving within config.debounce_seconds of each other
        collapse into a single pass using the most recent set.

        Returns:
            Task resolving to the report of the last pass it ran
        """
        self._pending_features = frozenset(features)
        if self._debounce_task is None or self._debounce_task.done():
            self._debounce_task = asyncio.get_running_loop().create_task(
                self._run_debounced()
            )
        return self._debounce_task

    async def _run_debounced(self) -> ActivationReport | None:
        report = None
        while self._pending_features is not None:
            await asyncio.sleep(self.config.debounce_seconds)
            features, self._pending_features = self._pending_features, None
            report = await self.on_feature_set_changed(features)
        return report

    async def flush(self) -> ActivationReport | None:
        """Wait for a scheduled feature-set change to finish."""
        task = self._debounce_task
        if task is None:
            return None
        return await task

    def _teardown_order(self, module_ids: set[str], resolution: ResolutionResult) -> list[str]:
        ordered = [m for m in reversed(resolution.order) if m in module_ids]
        # Anything outside the order still has to go
        ordered.extend(sorted(module_ids - set(ordered)))
        return ordered

    def _finish(self, report: ActivationReport, started: float, label: str) -> ActivationReport:
        report.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s complete: %d activated, %d torn down, %d failed, %d skipped (%.2fms)",
            label,
            len(report.activated),
            len(report.torn_down),
            len(report.failed),
            len(report.skipped),
            report.duration_ms,
        )
        if report.failed:
            logger.warning("Some modules failed to activate: %s", sorted(report.failed))
        return report

    async def _activation_phase(
        self, resolution: ResolutionResult, report: ActivationReport
    ) -> None:
        for module_id in resolution.order:
            state = self._states[module_id]
            if state.pending is not None:
                async with state.lock:
                    await self._settle(state, report, resolution)

            if state.phase is ModulePhase.UNINSTALLED:
                report.skipped.append(module_id)
                continue
            if state.phase is not ModulePhase.ELIGIBLE:
                continue

            manifest = self.catalog.get(module_id)
            missing = [dep for dep in manifest.depends_on if not self.is_active(dep)]
            if missing:
                logger.debug(
                    "Module '%s' waits for inactive dependencies: %s", module_id, missing
                )
                report.skipped.append(module_id)
                continue

            await self._activate(module_id, report, resolution)

    def _implementation_for(self, manifest: ModuleManifest) -> ModuleImplementation:
        if manifest.setup is not None or manifest.teardown is not None:
            return ModuleImplementation(setup=manifest.setup, teardown=manifest.teardown)
        if manifest.id in self.arena or manifest.entry:
            return self.arena.resolve(manifest.id, manifest.entry)
        return ModuleImplementation()

    @staticmethod
    async def _invoke(fn: Callable[..., Any] | None, *args: Any) -> Any:
        if fn is None:
            return None
        result = fn(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _activate(
        self, module_id: str, report: ActivationReport, resolution: ResolutionResult
    ) -> None:
        state = self._states[module_id]
        manifest = self.catalog.get(module_id)

        async with state.lock:
            if state.phase is not ModulePhase.ELIGIBLE:
                return
            state.phase = ModulePhase.INSTALLING
            state.failure = None
            state.context = ModuleContext(self, state, manifest)
            state.setup_started = time.perf_counter()
            logger.debug("Activating module: %s v%s", module_id, manifest.version)

            try:
                state.implementation = self._implementation_for(manifest)
            except LoaderError as e:
                self._fail(state, e, report, resolution)
                return

            state.pending = asyncio.ensure_future(
                self._invoke(state.implementation.setup, state.context)
            )
            # If this pass is cancelled the setup keeps running; the next
            # lifecycle operation on the module settles it first.
            await asyncio.wait([state.pending])
            self._complete_setup(state, report, resolution)

    async def _settle(
        self, state: ModuleState, report: ActivationReport, resolution: ResolutionResult
    ) -> None:
        """Wait for an in-flight setup left behind by a cancelled pass."""
        if state.pending is None:
            return
        logger.debug("Settling in-flight setup of '%s'", state.module_id)
        await asyncio.wait([state.pending])
        self._complete_setup(state, report, resolution)

    def _complete_setup(
        self, state: ModuleState, report: ActivationReport, resolution: ResolutionResult
    ) -> None:
        future, state.pending = state.pending, None
        if future.cancelled():
            error: BaseException | None = asyncio.CancelledError("setup was cancelled")
        else:
            error = future.exception()

        if error is not None:
            self._fail(state, error, report, resolution)
            return

        duration_ms = (time.perf_counter() - state.setup_started) * 1000
        state.setup_duration_ms = duration_ms
        state.phase = ModulePhase.ACTIVE
        report.activated.append(state.module_id)
        if duration_ms > self.config.slow_setup_threshold_ms:
            logger.warning(
                "Module setup: %s took %.2fms (threshold: %.0fms)",
                state.module_id,
                duration_ms,
                self.config.slow_setup_threshold_ms,
            )
        else:
            logger.debug("Module active: %s (%.2fms)", state.module_id, duration_ms)

    def _fail(
        self,
        state: ModuleState,
        error: BaseException,
        report: ActivationReport,
        resolution: ResolutionResult,
    ) -> None:
        module_id = state.module_id
        failure = SetupFailure(f"Setup of '{module_id}' failed: {error}", module_id=module_id)
        failure.__cause__ = error
        logger.error("Module setup failed: %s", module_id, exc_info=error)

        released = self._release(state)
        if released:
            logger.info("Rolled back %d registrations of '%s'", released, module_id)

        state.failure = str(error) or type(error).__name__
        state.phase = ModulePhase.FAILED
        state.failed_inputs = self._inputs(module_id, resolution)
        report.failed[module_id] = failure
        report.diagnostics.append(failure)

    async def _deactivate(
        self, module_id: str, report: ActivationReport, resolution: ResolutionResult
    ) -> None:
        state = self._states[module_id]
        async with state.lock:
            if state.pending is not None:
                await self._settle(state, report, resolution)
            if state.phase is not ModulePhase.ACTIVE:
                return

            state.phase = ModulePhase.TEARING_DOWN
            logger.debug("Tearing down module: %s", module_id)
            implementation = state.implementation
            try:
                await self._invoke(implementation.teardown if implementation else None)
            except Exception as e:
                failure = TeardownFailure(
                    f"Teardown of '{module_id}' failed: {e}", module_id=module_id
                )
                failure.__cause__ = e
                logger.error("Module teardown failed: %s", module_id, exc_info=e)
                report.diagnostics.append(failure)
            finally:
                self._release(state)
                eligible = self._eligible(module_id, resolution)
                state.phase = ModulePhase.ELIGIBLE if eligible else ModulePhase.UNINSTALLED
                report.torn_down.append(module_id)

    def _release(self, state: ModuleState) -> int:
        """Remove every registration owned by a module, each exactly once."""
        released = 0
        for handle in state.hook_handles.values():
            if self.hooks.remove_action(handle):
                released += 1
        for subscription in state.subscriptions.values():
            if self.bus.unsubscribe(subscription):
                released += 1
        state.hook_handles.clear()
        state.subscriptions.clear()
        if state.context is not None:
            state.context.close()
            state.context = None

        stray = self.hooks.remove_module(state.module_id) + self.bus.remove_module(
            state.module_id
        )
        if stray:
            logger.warning(
                "Removed %d registrations of '%s' made outside its context",
                stray,
                state.module_id,
            )
        return released + stray

    # Queries
    def get_exports(self, module_id: str) -> Mapping[str, Any]:
        """
        Read-only capability map of an active module.

        Raises:
            NotActiveError: If the module is unknown or not active
        """
        state = self._states.get(module_id)
        if state is None or state.phase is not ModulePhase.ACTIVE:
            raise NotActiveError(f"Module '{module_id}' is not active", module_id=module_id)
        implementation = state.implementation
        if implementation is not None and implementation.exports is not None:
            return MappingProxyType(implementation.exports)
        return MappingProxyType(self.catalog.get(module_id).exports)

    def get_state(self, module_id: str) -> ModuleState | None:
        with self._state_lock:
            return self._states.get(module_id)

    def states(self) -> dict[str, ModuleState]:
        with self._state_lock:
            return dict(self._states)

    def is_active(self, module_id: str) -> bool:
        state = self.get_state(module_id)
        return state is not None and state.phase is ModulePhase.ACTIVE

    def active_modules(self) -> list[str]:
        """Active module ids in activation order."""
        return [m for m in self._resolve().order if self.is_active(m)]

    def dependency_graph(self, module_id: str) -> list[str]:
        """All dependencies of a module, direct and transitive."""
        self._resolve()
        return self._resolver.dependencies_of(module_id)

    def stats(self) -> dict[str, Any]:
        """Registry statistics."""
        states = self.states()
        return {
            "total_modules": len(states),
            "active_modules": sum(1 for s in states.values() if s.is_active),
            "failed_modules": sorted(
                m for m, s in states.items() if s.phase is ModulePhase.FAILED
            ),
            "hooks": self.hooks.stats(),
            "subscriptions": self.bus.stats()["total_subscriptions"],
            "setup_durations_ms": {
                m: s.setup_duration_ms
                for m, s in states.items()
                if s.setup_duration_ms is not None
            },
        }
