"""
Registration Buffer

Lets consumers register patches and listeners before the engine exists.
Registrar objects are created at buffer time, so a handle a consumer
captured early is the same object the engine ends up managing.
"""

import logging
from typing import Any, Callable, Iterable, List, Optional, Tuple

from .core.patch_types import Patch
from .registrar import Registrar, RegistrarSet

logger = logging.getLogger(__name__)


class RegistrationBuffer:
    """FIFO of register / listener calls, replayed on attach(engine)."""

    def __init__(self):
        self.engine = None
        self._registrars = RegistrarSet()
        self._registrations: List[Tuple[Registrar, list]] = []
        self._listeners: List[Tuple[str, Callable]] = []

    @property
    def attached(self) -> bool:
        return self.engine is not None

    @property
    def pending(self) -> int:
        return len(self._registrations) + len(self._listeners)

    def register(self, name: str, patches: Iterable[Any] = (), data: Optional[dict] = None,
                 functions: Optional[dict] = None) -> Registrar:
        """Same contract as PatcherEngine.register."""
        if self.engine is not None:
            return self.engine.register(name, patches, data=data, functions=functions)
        if isinstance(patches, (Patch, dict)):
            patches = [patches]
        # Validate now so malformed patches fail at the call site
        coerced = [Patch.from_dict(p, name) for p in patches]
        registrar = self._registrars.obtain(name, data, functions)
        self._registrations.append((registrar, coerced))
        logger.debug(f"Buffered registration for {name!r}")
        return registrar

    def add_event_listener(self, event: str, callback: Callable):
        if self.engine is not None:
            self.engine.add_event_listener(event, callback)
            return
        self._listeners.append((event, callback))

    def remove_event_listener(self, event: str, callback: Callable):
        if self.engine is not None:
            self.engine.remove_event_listener(event, callback)
            return
        for i, entry in enumerate(self._listeners):
            if entry == (event, callback):
                del self._listeners[i]
                break

    def attach(self, engine) -> bool:
        """
        Replay buffered calls into `engine`, registrations first.

        Returns:
            False when the buffer was already attached (no-op)
        """
        if self.engine is not None:
            logger.warning("RegistrationBuffer already attached, ignoring")
            return False
        self.engine = engine
        registrations, self._registrations = self._registrations, []
        listeners, self._listeners = self._listeners, []

        for registrar, patches in registrations:
            try:
                engine.adopt(registrar, patches)
            except Exception:
                logger.exception(f"Buffered registration for {registrar.name!r} failed")
        for event, callback in listeners:
            try:
                engine.add_event_listener(event, callback)
            except Exception:
                logger.exception(f"Buffered listener for {event!r} failed")

        self._registrars.clear()
        logger.debug(f"Flushed {len(registrations)} registration(s), {len(listeners)} listener(s)")
        return True

    def warn_if_orphaned(self, runtime_present: bool) -> bool:
        """
        Report a host runtime that exists while no engine ever attached.

        Returns:
            True if the condition was detected (and logged)
        """
        if runtime_present and self.engine is None:
            logger.warning("Host runtime found, but no patcher engine attached; "
                           f"{self.pending} buffered call(s) will not apply")
            return True
        return False
