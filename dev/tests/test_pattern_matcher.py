"""
FactoryPatcher - Pattern Matcher Tests

Can be run standalone: python test_pattern_matcher.py
Or via main runner: python tests.py
"""

import re

import support  # noqa: F401  (path setup)

from factorypatcher.core.patch_types import Patch, regex
from factorypatcher.core.pattern_matcher import MatchCache, find_in, matches

SOURCE = 'def f(module, exports, require):\n    exports["dispatch"] = {"type": "TYPING_START_LOCAL"}\n'


def _patch(find, **extra):
    return Patch(find=find, replacements=[{"match": "x", "replace": "y"}], **extra)


def test_literal_substring():
    assert find_in(SOURCE, '"TYPING_START_LOCAL"')
    assert not find_in(SOURCE, "TYPING_STOP")


def test_pattern_search():
    assert find_in(SOURCE, re.compile(r'"type": "TYPING_\w+"'))
    assert find_in(SOURCE, regex(r"exports\[\"(\w+)\"\]"))
    assert not find_in(SOURCE, re.compile(r"^exports", re.M))


def test_any_find_value_activates():
    assert matches(SOURCE, _patch(["absent", "TYPING_START_LOCAL"]))
    assert not matches(SOURCE, _patch(["absent", re.compile("also_absent")]))


def test_single_find_value_is_wrapped():
    patch = _patch("TYPING_START_LOCAL")
    assert patch.find == ("TYPING_START_LOCAL",)
    assert matches(SOURCE, patch)


def test_require_all():
    assert matches(SOURCE, _patch(["dispatch", "TYPING"], require_all=True))
    assert not matches(SOURCE, _patch(["dispatch", "absent"], require_all=True))


def test_match_cache_memoizes_per_module():
    cache = MatchCache()
    patch = _patch("dispatch")
    assert cache.matches(7, SOURCE, patch)
    # Cached result wins until invalidated, even for different text
    assert cache.matches(7, "unrelated", patch)
    assert cache.hits == 1 and cache.misses == 1
    cache.invalidate(7)
    assert not cache.matches(7, "unrelated", patch)


if __name__ == "__main__":
    from tests import run_module
    raise SystemExit(run_module(__name__))
