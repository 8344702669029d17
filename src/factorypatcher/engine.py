"""
Patcher Engine - the singleton service tying the components together

register() -> patches stored, detector armed
host assigns require.m -> detector accepts -> interceptor proxies factories
first call of a module's factory -> matcher picks patches -> replacement
engine edits/recompiles -> patched factory cached -> events fired

Consumers get the engine injected (or via PatcherEngine.get()); nothing
is discovered through ambient globals.
"""

import json
import logging
import time
from collections.abc import MutableMapping
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import EngineConfig
from .core.compiler import get_compiler
from .core.pattern_matcher import MatchCache, matches
from .core.patch_types import ModuleRecord, Patch, PatchAudit, PatchResult
from .core.placeholders import PlaceholderResolver, PlaceholderSet
from .core.replacement_engine import ReplacementEngine
from .events import EventBus, Events
from .registrar import Registrar, RegistrarSet
from .runtime.detector import HostRuntimeDetector, make_marker_filter
from .runtime.interceptor import ModuleFactoryInterceptor
from .runtime.source_text import SourceCache

logger = logging.getLogger(__name__)


class PatcherEngine:
    """
    Runtime patching engine for one host module runtime.

    Use PatcherEngine.init(config) / PatcherEngine.get() for the process-wide
    instance, or construct one directly and pass it around.
    """

    _instance: Optional["PatcherEngine"] = None

    def __init__(self, config: Optional[EngineConfig] = None):
        if isinstance(config, dict):
            config = EngineConfig.from_dict(config)
        self.config = config or EngineConfig()

        self._placeholders = PlaceholderSet.generate()
        self.registrars = RegistrarSet()
        self.events = EventBus()
        self._patches: List[Patch] = []
        self._patch_index: Dict[Tuple, Patch] = {}
        self.history: List[PatchAudit] = []

        self.source_cache = SourceCache(self.config.enable_cache)
        self.match_cache = MatchCache() if self.config.enable_cache else None
        self.replacer = ReplacementEngine(
            compiler=get_compiler(self.config.use_eval, self._placeholders.binding),
            resolver=PlaceholderResolver(self._placeholders),
            registrars=self.registrars,
            benchmark=self.config.benchmark,
        )
        self.interceptor = ModuleFactoryInterceptor(self._patch_module, self.events.publish)
        self.detector: Optional[HostRuntimeDetector] = None

        self._require = None
        self._module_cache = None
        self._started = False

    # ─────────────────────────────────────────────────────────────
    # LIFECYCLE
    # ─────────────────────────────────────────────────────────────

    @classmethod
    def init(cls, config: Optional[EngineConfig] = None) -> "PatcherEngine":
        """Create the process-wide instance (or return the existing one)."""
        if cls._instance is None:
            cls._instance = cls(config)
            logger.info("PatcherEngine initialized")
        elif config is not None:
            logger.warning("PatcherEngine already initialized, ignoring new config")
        return cls._instance

    @classmethod
    def get(cls) -> Optional["PatcherEngine"]:
        """Get singleton instance (None before init)."""
        return cls._instance

    @classmethod
    def teardown(cls):
        """Stop and drop the process-wide instance."""
        if cls._instance is not None:
            cls._instance.stop()
            cls._instance = None

    def start(self):
        """Arm the detector. Called by the first register() as well."""
        if self._started:
            return
        self._started = True
        if self._require is not None:
            return
        target = self.config.target_type
        if target is None:
            logger.warning("No target_type configured; waiting for attach_runtime()")
            return

        filter_func = self.config.filter_func
        if filter_func is None:
            filter_func = make_marker_filter(self.config.runtime_marker)
        self.detector = HostRuntimeDetector(
            target_type=target,
            on_runtime=self._on_runtime,
            modules_slot=self.config.slot_names.modules,
            cache_slot=self.config.slot_names.cache,
            filter_func=filter_func,
            on_notify=self._notify_detected,
            on_cache=self._on_cache,
            scheduler=self.config.scheduler,
        )
        self.detector.install()

    def stop(self):
        """Disarm observers and hand raw factories back to the host mapping."""
        if self.detector is not None:
            self.detector.uninstall()
        self.interceptor.unwrap()
        if self._require is not None:
            slot = self.config.slot_names.modules
            view = self.interceptor.view
            if view is not None and getattr(self._require, slot, None) is view:
                setattr(self._require, slot, view.backing)
        self.source_cache.clear()
        if self.match_cache is not None:
            self.match_cache.clear()
        self._started = False

    def attach_runtime(self, require: Any) -> bool:
        """
        Adopt a loader that already carries its factories.

        Returns:
            True if the runtime was adopted
        """
        if self._require is not None:
            logger.warning("A host runtime is already attached")
            return False
        slots = self.config.slot_names
        factories = getattr(require, slots.modules, None)
        if not isinstance(factories, MutableMapping):
            logger.warning(f"{type(require).__name__} has no factory mapping in '{slots.modules}' yet")
            return False
        self._started = True
        if self.detector is not None:
            self.detector.uninstall()
        self._on_runtime(require, factories, getattr(require, slots.cache, None))
        self.config.scheduler(self._notify_detected)
        return True

    # ─────────────────────────────────────────────────────────────
    # DETECTION CALLBACKS
    # ─────────────────────────────────────────────────────────────

    def _on_runtime(self, require, factories, cache):
        view = self.interceptor.wrap(factories)
        setattr(require, self.config.slot_names.modules, view)
        self._require = require
        self._module_cache = cache

    def _on_cache(self, cache):
        self._module_cache = cache

    def _notify_detected(self):
        factories = self.module_factories
        if self.config.on_detect is not None:
            try:
                self.config.on_detect(self._require, factories)
            except Exception:
                logger.exception("on_detect callback failed")
        self.events.publish(Events.RUNTIME_DETECTED, self._require, factories)

    # ─────────────────────────────────────────────────────────────
    # REGISTRATION
    # ─────────────────────────────────────────────────────────────

    def register(self, name: str, patches: Iterable[Any] = (), data: Optional[dict] = None,
                 functions: Optional[dict] = None) -> Registrar:
        """
        Register a consumer and its patches.

        Args:
            name: Registrar name; the first caller's data/functions win
            patches: Patch objects or plain dicts ({"find", "replacements"})
            data: Initial shared data mapping
            functions: Initial shared functions mapping

        Returns:
            The (possibly pre-existing) registrar

        Raises:
            PatchDefinitionError: a patch is malformed (nothing is registered)
        """
        coerced = self._coerce(name, patches)
        registrar = self.registrars.obtain(name, data, functions)
        self._add_patches(registrar.name, coerced)
        self.start()
        return registrar

    def adopt(self, registrar: Registrar, patches: Iterable[Any] = ()) -> Registrar:
        """register() for a registrar object created elsewhere (RegistrationBuffer)."""
        coerced = self._coerce(registrar.name, patches)
        owner = self.registrars.adopt(registrar)
        if owner is not registrar:
            logger.warning(f"Registrar {registrar.name!r} already exists, keeping the first one")
        self._add_patches(owner.name, coerced)
        self.start()
        return owner

    @staticmethod
    def _coerce(registrar_name: str, patches: Iterable[Any]) -> List[Patch]:
        if isinstance(patches, (Patch, dict)):
            patches = [patches]
        return [Patch.from_dict(p, registrar_name) for p in patches]

    def _add_patches(self, registrar_name: str, coerced: List[Patch]):
        for patch in coerced:
            key = patch.merge_key
            existing = self._patch_index.get(key)
            if existing is not None:
                existing.replacements.extend(patch.replacements)
                if self.match_cache is not None:
                    self.match_cache.clear()
                logger.debug(f"Merged {len(patch.replacements)} rule(s) into {existing.describe()}")
                continue
            self._patch_index[key] = patch
            self._patches.append(patch)
        if coerced:
            logger.debug(f"Registered {len(coerced)} patch(es) for {registrar_name!r}")

    def add_event_listener(self, event: str, callback: Callable):
        self.events.subscribe(event, callback)

    def remove_event_listener(self, event: str, callback: Callable):
        self.events.unsubscribe(event, callback)

    # ─────────────────────────────────────────────────────────────
    # PATCHING
    # ─────────────────────────────────────────────────────────────

    def _patch_module(self, record: ModuleRecord):
        """Run every matching patch over one module, in registration order."""
        module_id = record.module_id
        if not self._patches:
            return
        started = time.perf_counter()
        text = self.source_cache.get(module_id, record.original_factory)
        if text is None:
            self._audit(module_id, "*", PatchResult.SOURCE_UNAVAILABLE, started)
            return

        factory = record.original_factory
        for patch in list(self._patches):
            patch_started = time.perf_counter()
            if not self._matches(module_id, text, patch):
                continue
            logger.debug(f"Patch {patch.describe()} matches module {module_id}")
            outcome = self.replacer.apply(text, patch.replacements, module_id,
                                          patch.registrar, base_factory=factory)
            if outcome.success:
                text = outcome.source
                factory = outcome.factory
                record.patched_factory = factory
                record.applied.append(patch.describe())
                self.source_cache.set(module_id, text)
                if self.match_cache is not None:
                    self.match_cache.invalidate(module_id)
                result = PatchResult.APPLIED
            elif outcome.rules_applied == 0 and outcome.error is None:
                result = PatchResult.RULES_NO_OP
            else:
                result = PatchResult.COMPILE_FAILED
            audit = self._audit(module_id, patch.describe(), result, patch_started,
                                outcome.rules_applied, outcome.rules_total)
            if outcome.error:
                audit.notes.append(outcome.error)

        if record.changed:
            elapsed = (time.perf_counter() - started) * 1000
            timing = f" in {elapsed:.2f}ms" if self.config.benchmark else ""
            logger.debug(f"Patched module {module_id} with {len(record.applied)} patch(es){timing}")

    def _matches(self, module_id, text: str, patch: Patch) -> bool:
        if self.match_cache is not None:
            return self.match_cache.matches(module_id, text, patch)
        return matches(text, patch)

    def _audit(self, module_id, patch_name: str, result: PatchResult, started: float,
               rules_applied: int = 0, rules_total: int = 0) -> PatchAudit:
        audit = PatchAudit(
            module_id=module_id,
            patch=patch_name,
            result=result,
            rules_applied=rules_applied,
            rules_total=rules_total,
            elapsed_ms=(time.perf_counter() - started) * 1000,
        )
        self.history.append(audit)
        return audit

    def patch_now(self, module_id: Any) -> Optional[ModuleRecord]:
        """Run the patch attempt for a tracked module without executing it."""
        record = self.interceptor.get(module_id)
        if record is not None:
            self.interceptor.ensure_patched(record)
        return record

    # ─────────────────────────────────────────────────────────────
    # PUBLIC ACCESSORS
    # ─────────────────────────────────────────────────────────────

    @property
    def require(self):
        """The detected host loader (None until detection)."""
        return self._require

    @property
    def module_factories(self):
        return self.interceptor.view

    @property
    def module_cache(self):
        return self._module_cache

    @property
    def patches(self) -> Tuple[Patch, ...]:
        return tuple(self._patches)

    @property
    def patched_modules(self) -> frozenset:
        """Ids of modules whose factory was replaced."""
        return self.interceptor.patched_ids

    @property
    def is_runtime_detected(self) -> bool:
        return self._require is not None

    @property
    def placeholders(self) -> PlaceholderSet:
        return self._placeholders

    def get_module(self, module_id: Any) -> Optional[ModuleRecord]:
        return self.interceptor.get(module_id)

    # ─────────────────────────────────────────────────────────────
    # AUDIT
    # ─────────────────────────────────────────────────────────────

    def get_history(self, limit: int = 50) -> List[PatchAudit]:
        """Get recent patch attempts."""
        return self.history[-limit:]

    def export_audit_log(self) -> str:
        """Export audit log as JSON."""
        return json.dumps([audit.to_dict() for audit in self.history], indent=2)

    def summary(self) -> dict:
        return {
            "runtime_detected": self.is_runtime_detected,
            "registrars": sorted(self.registrars),
            "patches": len(self._patches),
            "modules_seen": len(self.interceptor.records),
            "modules_attempted": len(self.interceptor.attempted_ids),
            "modules_patched": len(self.patched_modules),
        }


# Convenience functions
def get_engine() -> Optional[PatcherEngine]:
    """Get the process-wide engine (None before init)."""
    return PatcherEngine.get()
