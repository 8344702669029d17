"""
Host Runtime Detector

The host loader installs its factory mapping and module cache by plain
attribute assignment (`require.m = factories`, `require.c = cache`).
The detector installs a one-shot write observer for each slot name on the
loader's type. The first accepted write restores ordinary attribute
semantics and hands the runtime to the engine.

Candidates can be rejected by a filter that sees the candidate object and
the call stack of the assignment, so decoy loaders that happen to use the
same slot names are ignored while observation continues.
"""

import asyncio
import inspect
import logging
import traceback
from collections.abc import MutableMapping
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

_MISSING = object()

FilterFunc = Callable[[Any, List[str]], bool]


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEDULING
# ═══════════════════════════════════════════════════════════════════════════════

def next_tick(callback: Callable[[], Any]):
    """Run `callback` on the next loop iteration, or right away without a loop."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        callback()
        return
    loop.call_soon(callback)


# ═══════════════════════════════════════════════════════════════════════════════
# CANDIDATE FILTER
# ═══════════════════════════════════════════════════════════════════════════════

def candidate_text(candidate: Any) -> str:
    """Best-effort textual body of a loader candidate."""
    source = getattr(candidate, "__source__", None)
    if isinstance(source, str):
        return source
    for target in (candidate, type(candidate)):
        try:
            return inspect.getsource(target)
        except (OSError, TypeError):
            continue
    return ""


def make_marker_filter(marker: str) -> FilterFunc:
    """Reject candidates whose body lacks the marker every host factory shell shares."""
    def marker_filter(candidate: Any, stack_lines: List[str]) -> bool:
        return marker in candidate_text(candidate)
    marker_filter.marker = marker
    return marker_filter


# ═══════════════════════════════════════════════════════════════════════════════
# ONE-SHOT SLOT OBSERVER
# ═══════════════════════════════════════════════════════════════════════════════

class SlotObserver:
    """
    Data descriptor observing writes to `owner.<name>`.

    Values are always stored in the instance __dict__, so reads behave
    like a normal attribute while the observer is installed. `on_write`
    returns True to accept the write; the observer then removes itself
    from `owner` and never fires again. `after_write` runs once the write
    (and any restore) has completed.
    """

    def __init__(self, owner: type, name: str, on_write: Callable[[Any, Any], bool],
                 after_write: Optional[Callable[[], Any]] = None):
        self.owner = owner
        self.name = name
        self.on_write = on_write
        self.after_write = after_write
        self.fired = False
        self.installed = False
        self._busy = False
        self._previous = _MISSING

    def install(self):
        if self.installed:
            return
        self._previous = self.owner.__dict__.get(self.name, _MISSING)
        setattr(self.owner, self.name, self)
        self.installed = True

    def restore(self):
        """Put the type back the way it was."""
        if not self.installed:
            return
        if self.owner.__dict__.get(self.name) is self:
            if self._previous is _MISSING:
                delattr(self.owner, self.name)
            else:
                setattr(self.owner, self.name, self._previous)
        self.installed = False

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        try:
            return instance.__dict__[self.name]
        except KeyError:
            pass
        if self._previous is not _MISSING:
            getter = getattr(self._previous, "__get__", None)
            return getter(instance, owner) if getter else self._previous
        raise AttributeError(f"{type(instance).__name__!r} object has no attribute {self.name!r}")

    def __set__(self, instance, value):
        instance.__dict__[self.name] = value
        # Writes made from inside on_write are plain stores
        if self.fired or self._busy:
            return
        self._busy = True
        try:
            accepted = self.on_write(instance, value)
        finally:
            self._busy = False
        if accepted:
            self.fired = True
            self.restore()
        if self.after_write is not None:
            self.after_write()

    def __delete__(self, instance):
        try:
            del instance.__dict__[self.name]
        except KeyError:
            raise AttributeError(self.name) from None


# ═══════════════════════════════════════════════════════════════════════════════
# DETECTOR
# ═══════════════════════════════════════════════════════════════════════════════

class HostRuntimeDetector:
    """
    Watches a loader type for the modules/cache slot assignments.

    The notification is scheduled only once the accepted loader's slot
    writes have settled: right after the modules assignment when its cache
    is already known, otherwise after the cache assignment that follows.

    Args:
        target_type: Type the host loader is an instance of
        on_runtime: Called synchronously with (require, factories, cache) on acceptance
        modules_slot / cache_slot: Slot names ("m" / "c" by default)
        filter_func: (candidate, stack_lines) -> bool
        on_notify: Scheduled once the loader's slot writes have completed
        on_cache: Called with the cache if the loader assigns it after its modules
        scheduler: Deferral strategy for on_notify
    """

    def __init__(self, target_type: type, on_runtime: Callable[[Any, Any, Any], Any],
                 modules_slot: str = "m", cache_slot: str = "c",
                 filter_func: Optional[FilterFunc] = None,
                 on_notify: Optional[Callable[[], Any]] = None,
                 on_cache: Optional[Callable[[Any], Any]] = None,
                 scheduler: Callable[[Callable[[], Any]], Any] = next_tick):
        self.target_type = target_type
        self.on_runtime = on_runtime
        self.on_cache = on_cache
        self.modules_slot = modules_slot
        self.cache_slot = cache_slot
        self.filter_func = filter_func
        self.on_notify = on_notify
        self.scheduler = scheduler

        self.detected = False
        self.failed = False
        self.rejected: List[Any] = []
        self.require = None
        self._caches: Dict[int, Any] = {}
        self._notify_pending = False
        self._modules_observer = SlotObserver(target_type, modules_slot, self._on_modules_write,
                                              after_write=self._flush)
        self._cache_observer = SlotObserver(target_type, cache_slot, self._on_cache_write,
                                            after_write=self._flush)

    @property
    def active(self) -> bool:
        return self._modules_observer.installed

    def install(self):
        if self.detected or self.active:
            return
        self._modules_observer.install()
        self._cache_observer.install()
        logger.debug(f"Observing {self.target_type.__name__}.{self.modules_slot} / .{self.cache_slot}")

    def uninstall(self):
        self._modules_observer.restore()
        self._cache_observer.restore()
        self._caches.clear()
        self._notify_pending = False

    # ─────────────────────────────────────────────────────────────
    # WRITE HANDLERS
    # ─────────────────────────────────────────────────────────────

    def _on_cache_write(self, instance, value) -> bool:
        if not self.detected:
            # Stays armed until the modules slot picks a winner
            self._caches[id(instance)] = value
            return False
        if instance is not self.require:
            return False
        if self.on_cache is not None:
            try:
                self.on_cache(value)
            except Exception:
                logger.exception("Handing over the module cache failed")
        return True

    def _on_modules_write(self, instance, value) -> bool:
        if not isinstance(value, MutableMapping):
            # e.g. a loader clearing the slot with None before filling it
            logger.debug(f"Ignoring {type(value).__name__} written to "
                         f"{type(instance).__name__}.{self.modules_slot}")
            return False

        stack_lines = traceback.format_stack()[:-2]
        if self.filter_func is not None:
            try:
                accepted = bool(self.filter_func(instance, stack_lines))
            except Exception as e:
                logger.error(f"Runtime filter raised, rejecting candidate: {e!r}")
                accepted = False
            if not accepted:
                logger.debug(f"Rejected runtime candidate {type(instance).__name__} at {id(instance):#x}")
                self.rejected.append(instance)
                return False

        cache = self._caches.pop(id(instance), None)
        if cache is None:
            cache = instance.__dict__.get(self.cache_slot)
        self._caches.clear()
        if cache is not None:
            self._cache_observer.restore()
        # Otherwise the cache observer stays armed for this loader only
        self.accept(instance, value, cache)
        return True

    def accept(self, require, factories, cache) -> bool:
        """
        Hand a runtime to the engine and queue the notification.

        Returns:
            False if wiring the runtime failed; the detector is then inert
        """
        self.detected = True
        try:
            self.on_runtime(require, factories, cache)
        except Exception:
            logger.exception(f"Wiring host runtime {type(require).__name__} failed, patching disabled")
            self.failed = True
            self._cache_observer.restore()
            return False
        self.require = require
        logger.info(f"Host runtime detected: {type(require).__name__} with {len(factories)} factories")
        if self.on_notify is not None:
            self._notify_pending = True
        return True

    def _flush(self):
        """Schedule the pending notification once no slot write is outstanding."""
        if not self._notify_pending or self._cache_observer.installed:
            return
        self._notify_pending = False
        try:
            self.scheduler(self.on_notify)
        except Exception:
            logger.exception("Runtime detection notification failed")
