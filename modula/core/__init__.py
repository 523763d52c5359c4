"""
Modula core - extension mechanisms shared by every module.
"""

from modula.core.event_bus import (
    Event,
    EventBus,
    EventBusError,
    EventHandlerFailure,
    PatternError,
    Subscription,
    matches,
)
from modula.core.hooks import Action, HookError, HookHandle, HookRegistry

__all__ = [
    "Action",
    "Event",
    "EventBus",
    "EventBusError",
    "EventHandlerFailure",
    "HookError",
    "HookHandle",
    "HookRegistry",
    "PatternError",
    "Subscription",
    "matches",
]
