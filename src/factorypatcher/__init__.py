"""
FactoryPatcher - runtime patching of module factories.

Rewrites the source text of a host runtime's module factories with
ordered find/replace rules before they first execute, then swaps in the
recompiled factory.

- engine: PatcherEngine, the singleton service and public surface
- buffer: RegistrationBuffer for registrations made before the engine exists
- registrar / events: shared consumer state and lifecycle notifications
- core: patch data model, matcher, replacement engine, placeholders, compilers
- runtime: host detection, factory interception, reference host runtime
"""

from .buffer import RegistrationBuffer
from .config import EngineConfig, SlotNames
from .core.patch_types import Patch, PatchResult, Regex, Replacement, regex
from .engine import PatcherEngine, get_engine
from .errors import PatchCompileError, PatchDefinitionError, PatcherError
from .events import Events
from .registrar import Registrar

__version__ = "1.0.0"

__all__ = [
    "PatcherEngine", "get_engine", "EngineConfig", "SlotNames",
    "RegistrationBuffer", "Registrar", "Events",
    "Patch", "Replacement", "Regex", "regex", "PatchResult",
    "PatcherError", "PatchDefinitionError", "PatchCompileError",
]
