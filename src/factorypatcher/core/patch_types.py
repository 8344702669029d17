"""
Patch Types - Data model of the patching engine

Patches, replacement rules, per-module records and audit entries.
Patches are plain data: the engine never mutates a registered patch
except to append rules when two patches of one registrar share a find set.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..errors import PatchDefinitionError


# ═══════════════════════════════════════════════════════════════════════════════
# PATTERNS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Regex:
    """A compiled pattern plus its own match-all flag.

    Python patterns have no global flag, so this wrapper carries it.
    """
    pattern: "re.Pattern"
    replace_all: bool = False

    def search(self, text: str):
        return self.pattern.search(text)

    def __str__(self) -> str:
        suffix = "g" if self.replace_all else ""
        return f"/{self.pattern.pattern}/{suffix}"


def regex(source: str, flags: int = 0, replace_all: bool = False) -> Regex:
    """Build a Regex from pattern text."""
    return Regex(re.compile(source, flags), replace_all)


Matchable = Union[str, "re.Pattern", Regex]
ReplaceValue = Union[str, Callable[..., str]]


def is_literal(value: Matchable) -> bool:
    return isinstance(value, str)


def as_pattern(value: Matchable) -> "re.Pattern":
    """Return the compiled pattern behind a non-literal matchable."""
    if isinstance(value, Regex):
        return value.pattern
    return value


def matchable_key(value: Matchable) -> Tuple:
    """Hashable identity of a find/match value (used for merging)."""
    if isinstance(value, str):
        return ("literal", value)
    pattern = as_pattern(value)
    return ("pattern", pattern.pattern, pattern.flags)


def describe(value: Matchable) -> str:
    if isinstance(value, str):
        return repr(value)
    if isinstance(value, Regex):
        return str(value)
    return f"/{value.pattern}/"


def _check_matchable(value: Any, what: str) -> Matchable:
    if isinstance(value, (str, Regex)) or isinstance(value, re.Pattern):
        if isinstance(value, str) and not value:
            raise PatchDefinitionError(f"{what} must not be an empty string")
        return value
    raise PatchDefinitionError(
        f"{what} must be a str, re.Pattern or Regex, got {type(value).__name__}"
    )


# ═══════════════════════════════════════════════════════════════════════════════
# REPLACEMENT RULES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Replacement:
    """One find/replace rule applied to factory source text."""
    match: Matchable
    replace: ReplaceValue
    all_occurrences: Optional[bool] = None

    def __post_init__(self):
        self.match = _check_matchable(self.match, "Replacement.match")
        if not isinstance(self.replace, str) and not callable(self.replace):
            raise PatchDefinitionError(
                f"Replacement.replace must be a str or callable, got {type(self.replace).__name__}"
            )

    @property
    def replace_all(self) -> bool:
        """Effective match-all flag: explicit value, else the pattern's own."""
        if self.all_occurrences is not None:
            return self.all_occurrences
        if isinstance(self.match, Regex):
            return self.match.replace_all
        return False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Replacement":
        if isinstance(data, cls):
            return data
        if not isinstance(data, dict):
            raise PatchDefinitionError(f"Replacement must be a dict, got {type(data).__name__}")
        try:
            match = data["match"]
            replace = data["replace"]
        except KeyError as e:
            raise PatchDefinitionError(f"Replacement is missing {e.args[0]!r}") from None
        flag = data.get("all", data.get("all_occurrences", data.get("global")))
        return cls(match=match, replace=replace, all_occurrences=flag)


# ═══════════════════════════════════════════════════════════════════════════════
# PATCH
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Patch:
    """
    An activation condition plus an ordered list of replacement rules.

    The patch activates on a module when at least one `find` value occurs
    in the module's source (all of them when `require_all` is set).
    """
    find: Tuple[Matchable, ...]
    replacements: List[Replacement] = field(default_factory=list)
    registrar: str = ""
    require_all: bool = False

    def __post_init__(self):
        if isinstance(self.find, (str, Regex)) or isinstance(self.find, re.Pattern):
            self.find = (self.find,)
        self.find = tuple(_check_matchable(f, "Patch.find") for f in self.find)
        if not self.find:
            raise PatchDefinitionError("Patch.find must contain at least one value")
        self.replacements = [Replacement.from_dict(r) for r in self.replacements]
        if not self.replacements:
            raise PatchDefinitionError("Patch needs at least one replacement")

    @property
    def find_key(self) -> frozenset:
        return frozenset(matchable_key(f) for f in self.find)

    @property
    def merge_key(self) -> Tuple[str, bool, frozenset]:
        return (self.registrar, self.require_all, self.find_key)

    def describe(self) -> str:
        finds = ", ".join(describe(f) for f in self.find)
        return f"{self.registrar or '<anonymous>'}[{finds}]"

    @classmethod
    def from_dict(cls, data: Any, registrar: str = "") -> "Patch":
        """Coerce a Patch or a plain mapping into a Patch owned by `registrar`."""
        if isinstance(data, cls):
            if registrar and data.registrar != registrar:
                return cls(
                    find=data.find,
                    replacements=list(data.replacements),
                    registrar=registrar,
                    require_all=data.require_all,
                )
            return data
        if not isinstance(data, dict):
            raise PatchDefinitionError(f"Patch must be a dict or Patch, got {type(data).__name__}")
        if "find" not in data:
            raise PatchDefinitionError("Patch is missing 'find'")
        return cls(
            find=data["find"],
            replacements=list(data.get("replacements", [])),
            registrar=registrar,
            require_all=bool(data.get("require_all", False)),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# MODULE RECORD
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class ModuleRecord:
    """Interceptor bookkeeping for one module id."""
    module_id: Any
    original_factory: Callable
    patched_factory: Optional[Callable] = None
    patched: bool = False
    applied: List[str] = field(default_factory=list)

    @property
    def current(self) -> Callable:
        """The authoritative factory right now."""
        if self.patched_factory is not None:
            return self.patched_factory
        return self.original_factory

    @property
    def changed(self) -> bool:
        return self.patched_factory is not None


# ═══════════════════════════════════════════════════════════════════════════════
# RESULTS / AUDIT
# ═══════════════════════════════════════════════════════════════════════════════

class PatchResult(Enum):
    """Result of applying one patch to one module."""
    APPLIED = "applied"
    RULES_NO_OP = "rules_no_op"
    COMPILE_FAILED = "compile_failed"
    SOURCE_UNAVAILABLE = "source_unavailable"


@dataclass
class PatchOutcome:
    """What ReplacementEngine.apply produced."""
    factory: Callable
    source: str
    success: bool
    rules_applied: int = 0
    rules_total: int = 0
    error: Optional[str] = None


@dataclass
class PatchAudit:
    """Audit record for one patch attempt on one module."""
    module_id: Any
    patch: str
    result: PatchResult
    rules_applied: int = 0
    rules_total: int = 0
    elapsed_ms: float = 0.0
    notes: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "module": str(self.module_id),
            "patch": self.patch,
            "result": self.result.value,
            "rules": f"{self.rules_applied}/{self.rules_total}",
            "elapsed_ms": round(self.elapsed_ms, 3),
            "notes": self.notes,
        }
