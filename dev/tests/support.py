"""
Shared helpers for the FactoryPatcher test modules.

Each test builds its own loader subclass so slot observers installed by
one engine never leak into another test.
"""

import sys
from pathlib import Path

# Path setup
TESTS_DIR = Path(__file__).parent
DEV_DIR = TESTS_DIR.parent
SUITE_DIR = DEV_DIR.parent
SRC_DIR = SUITE_DIR / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))
if str(SUITE_DIR) not in sys.path:
    sys.path.insert(0, str(SUITE_DIR))

from factorypatcher import EngineConfig, PatcherEngine
from factorypatcher.runtime.host import ModuleRuntime


def accept_all(candidate, stack_lines):
    return True


def make_loader_type(name: str = "Loader") -> type:
    """Fresh ModuleRuntime subclass to observe."""
    return type(name, (ModuleRuntime,), {})


def make_engine(loader_type: type = None, **options) -> PatcherEngine:
    options.setdefault("filter_func", accept_all)
    config = EngineConfig(target_type=loader_type or make_loader_type(), **options)
    return PatcherEngine(config)


def literal_patch(find, match, replace, **extra):
    rule = {"match": match, "replace": replace}
    rule.update(extra)
    return {"find": find, "replacements": [rule]}


# Module sources used across tests. Every factory defines its own helpers
# so the bundle needs no shared globals.

CALC_SOURCE = '''\
def calc(module, exports, require):
    def foo(x):
        return "foo"
    def bar(x):
        return "bar"
    def baz(x):
        return "baz"
    exports["result"] = foo(1) + bar(2)
'''

PLAYER_SOURCE = '''\
def player(module, exports, require):
    class Player:
        def is_playable(self, state):
            a, b, player_is_radio = state["a"], state["b"], state["radio"]
            return a and b and not player_is_radio
    exports["Player"] = Player
'''

COUNTER_SOURCE = '''\
def counter(module, exports, require):
    hits = 0
    exports["hits"] = hits + 1
'''

CONSUMER_SOURCE = '''\
def consumer(module, exports, require):
    exports["doubled"] = require(1)["result"] * 2
'''

BUNDLE = {
    1: CALC_SOURCE,
    2: PLAYER_SOURCE,
    3: COUNTER_SOURCE,
    4: CONSUMER_SOURCE,
}
