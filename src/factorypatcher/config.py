"""Engine configuration."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .runtime.detector import FilterFunc, next_tick

DEFAULT_RUNTIME_MARKER = "exports"


@dataclass(frozen=True)
class SlotNames:
    """Attribute names the host loader installs its mappings through."""
    modules: str = "m"
    cache: str = "c"


@dataclass
class EngineConfig:
    """
    Options recognised by PatcherEngine.

    enable_cache: cache stringified factory text (and match results) per module id
    use_eval: compile into the factory's own globals with linecache entries
              (False: isolated globals, no linecache)
    on_detect: called as on_detect(require, module_factories) once detected
    filter_func: (candidate, stack_lines) -> bool; None uses the marker heuristic
    slot_names: modules / cache slot names
    target_type: the host loader type to observe
    runtime_marker: substring the default filter looks for
    benchmark: log per-rule and per-module timings at debug level
    scheduler: defers the detection notification by one tick
    """
    enable_cache: bool = False
    use_eval: bool = True
    on_detect: Optional[Callable[[Any, Any], Any]] = None
    filter_func: Optional[FilterFunc] = None
    slot_names: SlotNames = field(default_factory=SlotNames)
    target_type: Optional[type] = None
    runtime_marker: str = DEFAULT_RUNTIME_MARKER
    benchmark: bool = False
    scheduler: Callable[[Callable[[], Any]], Any] = next_tick

    _ALIASES = {
        "enableCache": "enable_cache",
        "useEval": "use_eval",
        "onDetect": "on_detect",
        "filterFunc": "filter_func",
        "slotNames": "slot_names",
        "targetType": "target_type",
        "runtimeMarker": "runtime_marker",
    }

    @classmethod
    def from_dict(cls, options: Optional[Dict[str, Any]]) -> "EngineConfig":
        """Build from a mapping; accepts snake_case and camelCase keys."""
        kwargs: Dict[str, Any] = {}
        unknown: List[str] = []
        names = cls.__dataclass_fields__
        for key, value in (options or {}).items():
            name = cls._ALIASES.get(key, key)
            if name not in names or name.startswith("_"):
                unknown.append(key)
                continue
            kwargs[name] = value
        if unknown:
            raise ValueError(f"Unknown engine options: {', '.join(sorted(unknown))}")

        slots = kwargs.get("slot_names")
        if isinstance(slots, dict):
            kwargs["slot_names"] = SlotNames(**slots)
        return cls(**kwargs)
