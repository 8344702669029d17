"""
Text-level patching machinery.

- patch_types: Patch, Replacement, Regex, ModuleRecord, audit records
- pattern_matcher: activation test of a patch against factory text
- replacement_engine: chained rule application + recompilation
- placeholders: per-engine tokens resolved to registrar lookups
- compiler: pluggable compile backends (ExecCompiler, IsolatedCompiler)
"""

from .compiler import Compiler, ExecCompiler, IsolatedCompiler, get_compiler
from .patch_types import (
    ModuleRecord, Patch, PatchAudit, PatchOutcome, PatchResult,
    Regex, Replacement, regex,
)
from .pattern_matcher import MatchCache, matches
from .placeholders import PlaceholderResolver, PlaceholderSet
from .replacement_engine import ReplacementEngine, apply_rule
