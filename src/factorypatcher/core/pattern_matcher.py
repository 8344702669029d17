"""Pattern Matcher - decides whether a patch activates on a module's source."""

from typing import Any, Dict, Optional, Tuple

from .patch_types import Matchable, Patch, as_pattern, is_literal


def find_in(source_text: str, value: Matchable) -> bool:
    """Literal -> substring containment, pattern -> regex search."""
    if is_literal(value):
        return value in source_text
    return as_pattern(value).search(source_text) is not None


def matches(source_text: str, patch: Patch) -> bool:
    """True if the patch's activation condition holds for `source_text`."""
    if patch.require_all:
        return all(find_in(source_text, f) for f in patch.find)
    return any(find_in(source_text, f) for f in patch.find)


class MatchCache:
    """
    Memoizes match results per (module id, patch).

    Only valid while the module's text is stable; the interceptor calls
    `invalidate` whenever a module's source changes.
    """

    def __init__(self):
        self._results: Dict[Tuple[Any, int], bool] = {}
        self.hits = 0
        self.misses = 0

    def matches(self, module_id: Any, source_text: str, patch: Patch) -> bool:
        key = (module_id, id(patch))
        cached: Optional[bool] = self._results.get(key)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        result = matches(source_text, patch)
        self._results[key] = result
        return result

    def invalidate(self, module_id: Any):
        for key in [k for k in self._results if k[0] == module_id]:
            del self._results[key]

    def clear(self):
        self._results.clear()
