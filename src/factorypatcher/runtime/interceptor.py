"""
Module Factory Interceptor

Makes patching lazy and at-most-once per module:

- every factory already present when the runtime is detected is replaced
  in place by a FactoryProxy
- the modules slot is swapped for a FactoryMap that proxies every factory
  assigned afterwards (and lazily any it finds unwrapped)
- the first call through a proxy runs the patch attempt, stores the
  resulting factory back into the host mapping, then delegates

Most registered modules never execute, so their text is never read.
"""

import logging
from collections.abc import MutableMapping
from typing import Any, Callable, Dict, Iterator, Optional

from ..core.patch_types import ModuleRecord
from ..events import Events
from .source_text import factory_source

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# PROXY
# ═══════════════════════════════════════════════════════════════════════════════

class FactoryProxy:
    """
    Stand-in for a host factory.

    Holds a back-reference to the module's record and resolves the
    authoritative factory on every call and attribute read.
    """

    def __init__(self, interceptor: "ModuleFactoryInterceptor", record: ModuleRecord):
        self._interceptor = interceptor
        self._record = record

    @property
    def module_id(self) -> Any:
        return self._record.module_id

    @property
    def __wrapped__(self) -> Callable:
        return self._record.current

    @property
    def __source__(self) -> Optional[str]:
        return factory_source(self._record.current)

    @property
    def __doc__(self) -> Optional[str]:
        return getattr(self._record.current, "__doc__", None)

    def __call__(self, *args, **kwargs):
        return self._interceptor.invoke(self._record.module_id, args, kwargs)

    def __getattr__(self, name: str):
        # Only reached for names not defined on the proxy itself
        if name.startswith("_record") or name.startswith("_interceptor"):
            raise AttributeError(name)
        return getattr(self._record.current, name)

    def __repr__(self) -> str:
        state = "patched" if self._record.changed else ("seen" if self._record.patched else "pending")
        return f"<FactoryProxy module={self._record.module_id!r} {state}>"


# ═══════════════════════════════════════════════════════════════════════════════
# FACTORY MAP
# ═══════════════════════════════════════════════════════════════════════════════

class FactoryMap(MutableMapping):
    """Write-through view over the host's factory dict that proxies new factories."""

    def __init__(self, interceptor: "ModuleFactoryInterceptor", backing: dict):
        self._interceptor = interceptor
        self._backing = backing

    @property
    def backing(self) -> dict:
        return self._backing

    def __getitem__(self, module_id):
        value = self._backing[module_id]
        tracked = self._interceptor.track(module_id, value)
        if tracked is not value:
            self._backing[module_id] = tracked
        return tracked

    def __setitem__(self, module_id, factory):
        self._backing[module_id] = self._interceptor.track(module_id, factory)

    def __delitem__(self, module_id):
        del self._backing[module_id]

    def __contains__(self, module_id) -> bool:
        return module_id in self._backing

    def __iter__(self) -> Iterator:
        return iter(self._backing)

    def __len__(self) -> int:
        return len(self._backing)

    def __repr__(self) -> str:
        return f"<FactoryMap {len(self._backing)} factories>"


# ═══════════════════════════════════════════════════════════════════════════════
# INTERCEPTOR
# ═══════════════════════════════════════════════════════════════════════════════

class ModuleFactoryInterceptor:
    """
    Tracks one ModuleRecord per module id.

    Args:
        patch_fn: Called once per module with its record; sets
                  `record.patched_factory` when a patch applied
        emit: Event dispatcher, emit(event_name, *args)
    """

    def __init__(self, patch_fn: Callable[[ModuleRecord], Any],
                 emit: Callable[..., Any]):
        self.patch_fn = patch_fn
        self.emit = emit
        self.records: Dict[Any, ModuleRecord] = {}
        self.proxies: Dict[Any, FactoryProxy] = {}
        self.factories: Optional[dict] = None
        self.view: Optional[FactoryMap] = None

    def wrap(self, factories: dict) -> FactoryMap:
        """Proxy every existing factory in place and return the view for the slot."""
        if isinstance(factories, FactoryMap):
            factories = factories.backing
        for module_id, factory in list(factories.items()):
            factories[module_id] = self.track(module_id, factory, announce=False)
        self.factories = factories
        self.view = FactoryMap(self, factories)
        logger.debug(f"Wrapped {len(self.records)} existing module factories")
        return self.view

    def track(self, module_id: Any, factory: Any, announce: bool = True) -> Any:
        """Return what should be stored for `module_id` in the host mapping."""
        if isinstance(factory, FactoryProxy) or not callable(factory):
            return factory

        record = self.records.get(module_id)
        if record is None:
            record = ModuleRecord(module_id=module_id, original_factory=factory)
            self.records[module_id] = record
            proxy = FactoryProxy(self, record)
            self.proxies[module_id] = proxy
            if announce:
                self.emit(Events.MODULE_REGISTERED, module_id, proxy)
            return proxy

        if factory is record.current:
            # Result stored back after patching
            return factory

        # Same id, new factory: not re-examined once the id has been attempted
        record.original_factory = factory
        record.patched_factory = None
        if record.patched:
            logger.debug(f"Module {module_id} re-registered after patching, not re-examined")
        return self.proxies[module_id]

    def invoke(self, module_id: Any, args: tuple, kwargs: dict):
        record = self.records[module_id]
        if not record.patched:
            self.ensure_patched(record)
        return record.current(*args, **kwargs)

    def ensure_patched(self, record: ModuleRecord):
        """Run the one and only patch attempt for a module."""
        if record.patched:
            return
        record.patched = True
        try:
            self.patch_fn(record)
        except Exception:
            logger.exception(f"Error patching module {record.module_id}")
            record.patched_factory = None

        if self.factories is not None and record.module_id in self.factories:
            self.factories[record.module_id] = record.current
        self.emit(Events.MODULE_PATCHED, record.module_id, record.current, record.changed)

    def get(self, module_id: Any) -> Optional[ModuleRecord]:
        return self.records.get(module_id)

    @property
    def patched_ids(self) -> frozenset:
        return frozenset(mid for mid, rec in self.records.items() if rec.changed)

    @property
    def attempted_ids(self) -> frozenset:
        return frozenset(mid for mid, rec in self.records.items() if rec.patched)

    def unwrap(self):
        """Put the current factories back into the host dict (engine teardown)."""
        if self.factories is None:
            return
        for module_id, value in list(self.factories.items()):
            if isinstance(value, FactoryProxy):
                self.factories[module_id] = value._record.current
