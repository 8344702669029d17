"""
Reference host module runtime.

A small bundled-module loader of the kind the engine patches: a
`require(id)` callable whose factory mapping and export cache are
installed through the `m` / `c` attributes. Factories have the signature
`factory(module, exports, require)` and populate `module.exports`.

Used by the command line dry-run and the test-suite; production hosts
only need to follow the same slot-assignment shape.
"""

import builtins
import linecache
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional


@dataclass
class Module:
    """Per-id cache entry."""
    id: Any
    exports: Dict[str, Any] = field(default_factory=dict)
    loaded: bool = False


def bundle_label(module_id: Any) -> str:
    return f"<bundle module {module_id}>"


def compile_factory(source: str, module_id: Any = None,
                    namespace: Optional[Dict[str, Any]] = None) -> Callable:
    """
    Turn factory source text into a callable carrying `__source__`.

    Accepts a single expression (e.g. a lambda) or statements defining a
    function; with several definitions the last one is the factory.
    """
    label = bundle_label(module_id)
    if namespace is None:
        namespace = {"__builtins__": builtins, "__name__": f"bundle_{module_id}"}
    try:
        factory = eval(compile(source, label, "eval"), namespace)
    except SyntaxError:
        before = set(namespace)
        exec(compile(source, label, "exec"), namespace)
        defined = [value for key, value in namespace.items()
                   if key not in before and callable(value)]
        if not defined:
            raise ValueError(f"module {module_id!r} source defines no factory")
        factory = defined[-1]
    if not callable(factory):
        raise ValueError(f"module {module_id!r} source is not callable")
    factory.__source__ = source
    linecache.cache[label] = (len(source), None, source.splitlines(keepends=True), label)
    return factory


class ModuleRuntime:
    """
    require(id) over a factory mapping and a once-per-id exports cache.

    The factory mapping and the cache are installed by attribute
    assignment in __init__, which is what a HostRuntimeDetector observes.
    """

    def __init__(self, factories: Optional[Dict[Any, Callable]] = None):
        self.m = factories if factories is not None else {}
        self.c = {}

    def __call__(self, module_id: Any) -> Dict[str, Any]:
        cached = self.c.get(module_id)
        if cached is not None:
            return cached.exports
        module = Module(id=module_id)
        self.c[module_id] = module
        self.m[module_id](module, module.exports, self)
        module.loaded = True
        return module.exports

    def define(self, module_id: Any, factory: Callable):
        self.m[module_id] = factory

    def load_bundle(self, sources: Mapping[Any, str]):
        """Compile and register every module of a bundle, in order."""
        for module_id, source in sources.items():
            self.define(module_id, compile_factory(source, module_id))

    def is_loaded(self, module_id: Any) -> bool:
        module = self.c.get(module_id)
        return module is not None and module.loaded
