"""
FactoryPatcher - Event Bus and Registrar Tests

Can be run standalone: python test_events_registrar.py
Or via main runner: python tests.py
"""

import support  # noqa: F401  (path setup)

from factorypatcher.events import EventBus, Events
from factorypatcher.registrar import Registrar, RegistrarSet


def test_subscribers_called_in_order():
    bus = EventBus()
    calls = []
    bus.subscribe(Events.MODULE_PATCHED, lambda *args: calls.append(("a", args)))
    bus.subscribe(Events.MODULE_PATCHED, lambda *args: calls.append(("b", args)))
    bus.publish(Events.MODULE_PATCHED, 1, None, True)
    assert calls == [("a", (1, None, True)), ("b", (1, None, True))]


def test_exception_isolated():
    bus = EventBus()
    calls = []

    def bad(*args):
        raise ValueError("boom")

    bus.subscribe(Events.RUNTIME_DETECTED, bad)
    bus.subscribe(Events.RUNTIME_DETECTED, lambda *args: calls.append(args))
    bus.publish(Events.RUNTIME_DETECTED, "require", {})
    assert calls == [("require", {})]


def test_subscribe_validation():
    bus = EventBus()
    for event, callback, error in (("nope", print, ValueError),
                                   (Events.MODULE_REGISTERED, "not callable", TypeError)):
        try:
            bus.subscribe(event, callback)
        except error:
            pass
        else:
            raise AssertionError(f"subscribe({event!r}) accepted")


def test_unsubscribe_and_clear():
    bus = EventBus()
    listener = lambda *args: None  # noqa: E731
    bus.subscribe(Events.MODULE_REGISTERED, listener)
    bus.unsubscribe(Events.MODULE_REGISTERED, listener)
    bus.unsubscribe(Events.MODULE_REGISTERED, listener)
    assert bus.subscribers(Events.MODULE_REGISTERED) == []

    bus.subscribe(Events.MODULE_PATCHED, listener)
    bus.clear()
    assert all(bus.subscribers(name) == [] for name in Events.ALL)


def test_registrar_set_first_writer_wins():
    registrars = RegistrarSet()
    data = {"enabled": True}
    first = registrars.obtain("consumer", data=data)
    again = registrars.obtain("consumer", data={"enabled": False}, functions={"f": len})

    assert again is first
    assert first.data is data
    assert first.functions == {}
    assert list(registrars) == ["consumer"]
    assert len(registrars) == 1


def test_registrar_contents_are_mutable_slots_are_not():
    registrar = Registrar("consumer")
    registrar.data["count"] = 1
    registrar.functions["inc"] = lambda n: n + 1
    assert registrar.functions["inc"](registrar.data["count"]) == 2
    try:
        registrar.data = {}
    except AttributeError:
        pass
    else:
        raise AssertionError("registrar slot was reassigned")


def test_adopt_keeps_existing_owner():
    registrars = RegistrarSet()
    owner = registrars.obtain("consumer")
    stranger = Registrar("consumer")
    assert registrars.adopt(stranger) is owner
    newcomer = Registrar("other")
    assert registrars.adopt(newcomer) is newcomer


if __name__ == "__main__":
    from tests import run_module
    raise SystemExit(run_module(__name__))
