"""
Event Bus - Publish/subscribe channel between modules.

This module implements:
1. Event: the immutable record handed to every matching handler
2. Subscription: a handle that owns one handler and can detach it
3. EventBus: pattern routing and sequential, failure-isolated delivery

Event names are dot-separated segments ("sales.order_placed"). Patterns use
the same segments, where "*" stands for exactly one segment and a bare "*"
matches every event.
"""

import asyncio
import inspect
import itertools
import logging
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

WILDCARD = "*"
SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_\-:]+$")


class EventBusError(Exception):
    """Base exception for event bus errors."""

    pass


class PatternError(EventBusError):
    """Raised when an event name or pattern is malformed."""

    pass


class EventHandlerFailure(EventBusError):
    """Describes a handler that raised; logged, never raised to the emitter."""

    def __init__(self, subscription: "Subscription", event: "Event", error: BaseException):
        super().__init__(
            f"Event handler {subscription.handler_name} "
            f"(module: {subscription.module_id or 'host'}) failed for "
            f"'{event.name}': {error}"
        )
        self.subscription = subscription
        self.event = event
        self.error = error


def validate_event_name(name: str) -> None:
    """
    Validate an event name.

    Raises:
        PatternError: If the name is empty, has empty segments or wildcards
    """
    if not isinstance(name, str) or not name:
        raise PatternError(f"Event name must be a non-empty string: {name!r}")
    for segment in name.split("."):
        if not SEGMENT_PATTERN.match(segment):
            raise PatternError(f"Invalid segment {segment!r} in event name '{name}'")


def validate_pattern(pattern: str) -> None:
    """
    Validate a subscription pattern.

    Raises:
        PatternError: If a segment is empty or mixes "*" with other text
    """
    if not isinstance(pattern, str) or not pattern:
        raise PatternError(f"Pattern must be a non-empty string: {pattern!r}")
    for segment in pattern.split("."):
        if segment == WILDCARD:
            continue
        if WILDCARD in segment:
            raise PatternError(
                f"Wildcard must replace a whole segment in pattern '{pattern}'"
            )
        if not SEGMENT_PATTERN.match(segment):
            raise PatternError(f"Invalid segment {segment!r} in pattern '{pattern}'")


def compile_pattern(pattern: str) -> re.Pattern:
    """
    Convert a subscription pattern to a compiled regex.

    Example:
        'sales.*' -> matches 'sales.order_placed', not 'sales.order.voided'
    """
    validate_pattern(pattern)
    if pattern == WILDCARD:
        return re.compile(r"^.+$")
    escaped = re.escape(pattern)
    # A wildcard covers exactly one non-empty segment
    regex_pattern = escaped.replace(r"\*", r"[^.]+")
    return re.compile(f"^{regex_pattern}$")


def matches(pattern: str, name: str) -> bool:
    """Check whether an event name matches a pattern."""
    return compile_pattern(pattern).match(name) is not None


@dataclass(frozen=True)
class Event:
    """
    A dispatched event.

    Attributes:
        name: Dot-segmented event name
        payload: Arbitrary event data
        timestamp: Emission time (seconds since the epoch)
        source_module_id: Emitting module, if any
    """

    name: str
    payload: Any = None
    timestamp: float = field(default_factory=time.time)
    source_module_id: str | None = None


@dataclass(eq=False)
class Subscription:
    """
    A registered handler.

    Attributes:
        id: Unique subscription id
        pattern: Pattern the handler was registered with
        handler: Callable taking the Event (sync or async)
        module_id: Owning module, None for host-level subscriptions
    """

    id: int
    pattern: str
    handler: Callable[[Event], Any]
    module_id: str | None
    _regex: re.Pattern = field(repr=False)
    _bus: "EventBus | None" = field(default=None, repr=False)
    active: bool = True

    @property
    def handler_name(self) -> str:
        return getattr(self.handler, "__qualname__", repr(self.handler))

    def matches(self, name: str) -> bool:
        return self._regex.match(name) is not None

    def unsubscribe(self) -> bool:
        """
        Detach this subscription.

        Returns:
            True if it was attached, False if it had already been removed
        """
        if self._bus is None:
            return False
        return self._bus.unsubscribe(self)


class EventBus:
    """
    Core event bus implementation.

    Subscriptions are kept in registration order; delivery of one event walks
    them in that order and awaits each handler before the next. Distinct emit()
    calls may run concurrently.
    """

    def __init__(self):
        self._subscriptions: dict[int, Subscription] = {}
        self._by_module: dict[str | None, set[int]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(
        self,
        pattern: str,
        handler: Callable[[Event], Any],
        owner_module_id: str | None = None,
    ) -> Subscription:
        """
        Register a handler for every event matching a pattern.

        Args:
            pattern: Dot-segmented pattern ("sales.*", "*")
            handler: Callable taking the Event; may be a coroutine function
            owner_module_id: Module that owns the subscription

        Returns:
            Subscription handle

        Raises:
            PatternError: If the pattern is malformed
            EventBusError: If handler is not callable
        """
        if not callable(handler):
            raise EventBusError(f"Handler for '{pattern}' must be callable")
        regex = compile_pattern(pattern)

        with self._lock:
            subscription = Subscription(
                id=next(self._ids),
                pattern=pattern,
                handler=handler,
                module_id=owner_module_id,
                _regex=regex,
                _bus=self,
            )
            self._subscriptions[subscription.id] = subscription
            self._by_module.setdefault(owner_module_id, set()).add(subscription.id)

        logger.debug(
            "Subscribed %s to '%s' (module: %s)",
            subscription.handler_name,
            pattern,
            owner_module_id,
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription.

        Returns:
            True if removed, False if it was not attached
        """
        with self._lock:
            removed = self._subscriptions.pop(subscription.id, None)
            if removed is None:
                return False
            removed.active = False
            owned = self._by_module.get(removed.module_id)
            if owned is not None:
                owned.discard(removed.id)
                if not owned:
                    del self._by_module[removed.module_id]
        return True

    def remove_module(self, module_id: str) -> int:
        """
        Remove every subscription owned by a module.

        Returns:
            Number of subscriptions removed
        """
        with self._lock:
            ids = self._by_module.pop(module_id, set())
            for sub_id in ids:
                subscription = self._subscriptions.pop(sub_id, None)
                if subscription is not None:
                    subscription.active = False
        return len(ids)

    def subscriptions(self, module_id: str | None = None) -> list[Subscription]:
        """List subscriptions in registration order, optionally for one module."""
        with self._lock:
            subs = list(self._subscriptions.values())
        if module_id is None:
            return subs
        return [s for s in subs if s.module_id == module_id]

    def _find_subscriptions(self, name: str) -> list[Subscription]:
        with self._lock:
            snapshot = list(self._subscriptions.values())
        return [s for s in snapshot if s.matches(name)]

    async def emit(
        self,
        event_name: str,
        payload: Any = None,
        source_module_id: str | None = None,
    ) -> int:
        """
        Dispatch an event to every matching subscription.

        Handlers run one after another in subscription order. A handler that
        raises is logged and skipped; the remaining handlers still run and the
        caller never sees the failure.

        Args:
            event_name: Dot-segmented event name
            payload: Event data
            source_module_id: Emitting module

        Returns:
            Number of handlers that were invoked

        Raises:
            PatternError: If event_name is malformed
        """
        validate_event_name(event_name)
        event = Event(
            name=event_name, payload=payload, source_module_id=source_module_id
        )

        targets = self._find_subscriptions(event_name)
        if not targets:
            logger.debug("No subscribers for '%s', event dropped", event_name)
            return 0

        delivered = 0
        for subscription in targets:
            # Detached while an earlier handler was running
            if not subscription.active:
                continue
            delivered += 1
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failure = EventHandlerFailure(subscription, event, e)
                logger.error("%s", failure, exc_info=e)

        return delivered

    def stats(self) -> dict[str, Any]:
        """Subscription counts, overall and per module."""
        with self._lock:
            return {
                "total_subscriptions": len(self._subscriptions),
                "modules": {
                    module_id: len(ids)
                    for module_id, ids in self._by_module.items()
                    if module_id is not None
                },
            }
