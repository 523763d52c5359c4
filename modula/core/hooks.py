"""
Hook Registry - Named extension points with priority-ordered contributions.

Modules contribute payloads (components, callables, plain data) to named hook
points; the host reads them back in a deterministic order:
- Higher priority first
- Equal priorities keep registration order (first registered wins the tie)

A hook point nobody contributed to simply yields an empty list.
"""

import asyncio
import inspect
import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 10


class HookError(Exception):
    """Base exception for hook-related errors."""

    pass


@dataclass(frozen=True)
class HookHandle:
    """
    Identifies one registration, returned by add_action().

    Attributes:
        hook_point_id: Hook point the action was added to
        sequence: Registration number (also the tie-breaker)
        module_id: Owning module
    """

    hook_point_id: str
    sequence: int
    module_id: str | None


@dataclass(frozen=True)
class Action:
    """A contribution to a hook point."""

    module_id: str | None
    priority: int
    payload: Any
    sequence: int


class HookRegistry:
    """
    Registry of hook points and their actions.

    Actions are indexed by hook point and by owning module, so removing one
    module's contributions costs time proportional to its own registrations.
    """

    def __init__(self, default_priority: int = DEFAULT_PRIORITY):
        self.default_priority = default_priority
        self._points: dict[str, dict[int, Action]] = {}
        self._by_module: dict[str | None, set[HookHandle]] = {}
        self._sorted: dict[str, list[Action]] = {}
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def add_action(
        self,
        hook_point_id: str,
        payload: Any,
        owner_module_id: str | None = None,
        priority: int | None = None,
    ) -> HookHandle:
        """
        Contribute a payload to a hook point.

        Args:
            hook_point_id: Hook point identifier (e.g., 'dashboard.widgets')
            payload: The contribution
            owner_module_id: Module making the contribution
            priority: Ordering priority (higher = earlier)

        Returns:
            Handle for remove_action()

        Raises:
            HookError: If the hook point id or priority is invalid
        """
        if not isinstance(hook_point_id, str) or not hook_point_id:
            raise HookError(f"Hook point id must be a non-empty string: {hook_point_id!r}")
        if priority is None:
            priority = self.default_priority
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise HookError(f"Priority must be an int, got {type(priority).__name__}")

        with self._lock:
            sequence = next(self._sequence)
            action = Action(
                module_id=owner_module_id,
                priority=priority,
                payload=payload,
                sequence=sequence,
            )
            handle = HookHandle(hook_point_id, sequence, owner_module_id)
            self._points.setdefault(hook_point_id, {})[sequence] = action
            self._by_module.setdefault(owner_module_id, set()).add(handle)
            self._sorted.pop(hook_point_id, None)

        logger.debug(
            "Hook registered: %s (module: %s, priority: %d)",
            hook_point_id,
            owner_module_id,
            priority,
        )
        return handle

    def remove_action(self, handle: HookHandle) -> bool:
        """
        Remove one contribution.

        Returns:
            True if removed, False if it was already gone
        """
        with self._lock:
            actions = self._points.get(handle.hook_point_id)
            if actions is None or actions.pop(handle.sequence, None) is None:
                return False
            if not actions:
                del self._points[handle.hook_point_id]
            self._sorted.pop(handle.hook_point_id, None)

            owned = self._by_module.get(handle.module_id)
            if owned is not None:
                owned.discard(handle)
                if not owned:
                    del self._by_module[handle.module_id]
        return True

    def remove_module(self, module_id: str) -> int:
        """
        Remove every contribution owned by a module.

        Returns:
            Number of actions removed
        """
        with self._lock:
            handles = list(self._by_module.get(module_id, ()))
        return sum(1 for handle in handles if self.remove_action(handle))

    def get_entries(self, hook_point_id: str) -> list[Action]:
        """Actions for a hook point, in priority order."""
        with self._lock:
            cached = self._sorted.get(hook_point_id)
            if cached is None:
                actions = self._points.get(hook_point_id)
                if not actions:
                    return []
                cached = sorted(
                    actions.values(), key=lambda a: (-a.priority, a.sequence)
                )
                self._sorted[hook_point_id] = cached
            return list(cached)

    def get_actions(self, hook_point_id: str) -> list[Any]:
        """
        Payloads contributed to a hook point, in priority order.

        Returns:
            List of payloads (empty when nothing was contributed)
        """
        return [action.payload for action in self.get_entries(hook_point_id)]

    def has_hook(self, hook_point_id: str) -> bool:
        """Check if a hook point has any contributions."""
        with self._lock:
            return bool(self._points.get(hook_point_id))

    def do_action(self, hook_point_id: str, *args: Any, **kwargs: Any) -> list[Any]:
        """
        Call every callable payload of a hook point and collect the results.

        Payloads that are not callable are skipped. A payload that raises is
        logged with its module and left out of the results. Async payloads
        need do_action_async(); here their result is discarded and logged.
        """
        results = []
        for action in self.get_entries(hook_point_id):
            handler: Callable[..., Any] = action.payload
            if not callable(handler):
                continue
            try:
                result = handler(*args, **kwargs)
                if inspect.isawaitable(result):
                    if inspect.iscoroutine(result):
                        result.close()
                    raise HookError(
                        f"Async handler on '{hook_point_id}' needs do_action_async()"
                    )
                results.append(result)
            except Exception:
                logger.error(
                    "Hook handler error: %s (module: %s)",
                    hook_point_id,
                    action.module_id,
                    exc_info=True,
                )
        return results

    async def do_action_async(self, hook_point_id: str, *args: Any, **kwargs: Any) -> list[Any]:
        """
        Like do_action(), awaiting payloads that return awaitables.

        Handlers run one after another in priority order.
        """
        results = []
        for action in self.get_entries(hook_point_id):
            handler: Callable[..., Any] = action.payload
            if not callable(handler):
                continue
            try:
                result = handler(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                results.append(result)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error(
                    "Hook handler error: %s (module: %s)",
                    hook_point_id,
                    action.module_id,
                    exc_info=True,
                )
        return results

    def hook_points(self) -> list[str]:
        """Hook point ids that currently have contributions."""
        with self._lock:
            return sorted(self._points)

    def stats(self) -> dict[str, int]:
        """Number of contributions per hook point."""
        with self._lock:
            return {point: len(actions) for point, actions in sorted(self._points.items())}
