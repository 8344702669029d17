"""
Event bus for engine lifecycle notifications.
Synchronous pub/sub; a failing subscriber never stops dispatch.
"""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


# Event constants - use these for type safety
class Events:
    """Event name constants."""
    # (require, module_factories)
    RUNTIME_DETECTED = "runtime_detected"

    # (module_id, factory)
    MODULE_REGISTERED = "module_registered"

    # (module_id, factory, changed)
    MODULE_PATCHED = "module_patched"

    ALL = (RUNTIME_DETECTED, MODULE_REGISTERED, MODULE_PATCHED)


class EventBus:
    """Per-engine event system."""

    def __init__(self, known_events=Events.ALL):
        self._known = frozenset(known_events)
        self._subscribers: Dict[str, List[Callable]] = {name: [] for name in self._known}

    def subscribe(self, event: str, callback: Callable):
        """Subscribe to an event."""
        if event not in self._known:
            raise ValueError(f"Unknown event {event!r}, expected one of {sorted(self._known)}")
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._subscribers[event].append(callback)

    def publish(self, event: str, *args: Any):
        """Publish an event to all subscribers."""
        for cb in list(self._subscribers.get(event, [])):
            try:
                cb(*args)
            except Exception:
                logger.exception(f"EventBus error on '{event}' in {getattr(cb, '__name__', cb)!r}")

    def unsubscribe(self, event: str, callback: Callable):
        """Unsubscribe from an event."""
        if event in self._subscribers:
            try:
                self._subscribers[event].remove(callback)
            except ValueError:
                pass

    def subscribers(self, event: str) -> List[Callable]:
        return list(self._subscribers.get(event, []))

    def clear(self):
        """Clear all subscriptions."""
        for callbacks in self._subscribers.values():
            callbacks.clear()
