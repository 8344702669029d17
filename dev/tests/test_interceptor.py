"""
FactoryPatcher - Module Factory Interceptor Tests

Laziness, at-most-once patch attempts, store-back into the host
mapping, and transparent forwarding through proxies.

Can be run standalone: python test_interceptor.py
Or via main runner: python tests.py
"""

from support import CALC_SOURCE

from factorypatcher.events import Events
from factorypatcher.runtime.host import Module, compile_factory
from factorypatcher.runtime.interceptor import FactoryMap, FactoryProxy, ModuleFactoryInterceptor


def answer(module, exports, require):
    exports["answer"] = 41


def patched_answer(module, exports, require):
    exports["answer"] = 42


class Harness:
    """Interceptor plus a record of what it emitted and attempted."""

    def __init__(self, replacement=None, fail=False):
        self.events = []
        self.attempts = []
        self.replacement = replacement
        self.fail = fail
        self.interceptor = ModuleFactoryInterceptor(self.patch, self.emit)

    def patch(self, record):
        self.attempts.append(record.module_id)
        if self.fail:
            raise RuntimeError("patch blew up")
        if self.replacement is not None:
            record.patched_factory = self.replacement

    def emit(self, event, *args):
        self.events.append((event,) + args)

    def named(self, event):
        return [e[1:] for e in self.events if e[0] == event]


def _call(factory):
    module = Module(id="x")
    factory(module, module.exports, None)
    return module.exports


def test_wrap_proxies_existing_factories_in_place():
    harness = Harness()
    factories = {1: answer, 2: patched_answer}
    view = harness.interceptor.wrap(factories)

    assert isinstance(view, FactoryMap)
    assert view.backing is factories
    assert all(isinstance(f, FactoryProxy) for f in factories.values())
    assert harness.named(Events.MODULE_REGISTERED) == []
    assert harness.attempts == []


def test_unexecuted_modules_are_never_attempted():
    harness = Harness()
    view = harness.interceptor.wrap({1: answer, 2: answer, 3: answer})
    _call(view[2])
    assert harness.attempts == [2]
    assert harness.interceptor.attempted_ids == frozenset({2})


def test_attempt_happens_at_most_once():
    harness = Harness(replacement=patched_answer)
    factories = {1: answer}
    view = harness.interceptor.wrap(factories)
    proxy = view[1]

    for _ in range(3):
        assert _call(proxy) == {"answer": 42}
    assert harness.attempts == [1]
    assert harness.named(Events.MODULE_PATCHED) == [(1, patched_answer, True)]


def test_result_is_stored_back():
    harness = Harness(replacement=patched_answer)
    factories = {1: answer}
    view = harness.interceptor.wrap(factories)
    _call(view[1])
    assert factories[1] is patched_answer
    # Reading it back through the view does not re-wrap it
    assert view[1] is patched_answer
    assert harness.interceptor.patched_ids == frozenset({1})


def test_unchanged_module_stores_original():
    harness = Harness()
    factories = {1: answer}
    view = harness.interceptor.wrap(factories)
    assert _call(view[1]) == {"answer": 41}
    assert factories[1] is answer
    assert harness.named(Events.MODULE_PATCHED) == [(1, answer, False)]


def test_failing_patch_keeps_original():
    harness = Harness(fail=True)
    view = harness.interceptor.wrap({1: answer})
    assert _call(view[1]) == {"answer": 41}
    assert harness.named(Events.MODULE_PATCHED) == [(1, answer, False)]
    assert harness.interceptor.get(1).patched


def test_new_factories_are_wrapped_and_announced():
    harness = Harness()
    factories = {}
    view = harness.interceptor.wrap(factories)
    view[7] = answer

    assert isinstance(factories[7], FactoryProxy)
    assert harness.named(Events.MODULE_REGISTERED) == [(7, factories[7])]
    assert 7 in view and len(view) == 1 and list(view) == [7]


def test_unwrapped_entries_are_wrapped_on_read():
    harness = Harness()
    factories = {}
    view = harness.interceptor.wrap(factories)
    factories[8] = answer

    proxy = view[8]
    assert isinstance(proxy, FactoryProxy)
    assert factories[8] is proxy


def test_non_callables_pass_through():
    harness = Harness()
    factories = {}
    view = harness.interceptor.wrap(factories)
    view["meta"] = {"not": "a factory"}
    assert factories["meta"] == {"not": "a factory"}
    assert harness.interceptor.records == {}


def test_proxy_forwards_attribute_reads():
    harness = Harness()
    calc = compile_factory(CALC_SOURCE, 1)
    view = harness.interceptor.wrap({1: calc})
    proxy = view[1]

    assert proxy.__name__ == "calc"
    assert proxy.__source__ == CALC_SOURCE
    assert proxy.__wrapped__ is calc
    assert proxy.module_id == 1
    assert "pending" in repr(proxy)


def test_proxy_forwards_docstring():
    def documented(module, exports, require):
        """Exports the documented answer."""
        exports["answer"] = 42

    harness = Harness(replacement=patched_answer)
    proxy = harness.interceptor.wrap({1: documented})[1]
    assert proxy.__doc__ == "Exports the documented answer."

    _call(proxy)
    assert proxy.__doc__ == patched_answer.__doc__


def test_proxy_source_follows_patched_factory():
    replacement = compile_factory(CALC_SOURCE.replace("foo(1)", "baz(1)"), 1)
    harness = Harness(replacement=replacement)
    calc = compile_factory(CALC_SOURCE, 1)
    view = harness.interceptor.wrap({1: calc})
    proxy = view[1]

    _call(proxy)
    assert "baz(1)" in proxy.__source__
    assert proxy.__wrapped__ is replacement
    assert "patched" in repr(proxy)


def test_reregistered_factory_is_not_reexamined():
    harness = Harness(replacement=patched_answer)
    factories = {1: answer}
    view = harness.interceptor.wrap(factories)
    _call(view[1])

    def hot_reloaded(module, exports, require):
        exports["answer"] = "reloaded"

    view[1] = hot_reloaded
    assert _call(factories[1]) == {"answer": "reloaded"}
    assert harness.attempts == [1]
    assert harness.interceptor.get(1).original_factory is hot_reloaded


def test_unwrap_restores_current_factories():
    harness = Harness(replacement=patched_answer)
    factories = {1: answer, 2: answer}
    view = harness.interceptor.wrap(factories)
    _call(view[1])
    harness.interceptor.unwrap()
    assert factories == {1: patched_answer, 2: answer}


if __name__ == "__main__":
    from tests import run_module
    raise SystemExit(run_module(__name__))
