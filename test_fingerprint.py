import asyncio

from conftest import option_elements
from errors import LocatorMiss
from fingerprint import ANSWER_TIMER, FingerprintGate, compute_fingerprint


def make_gate(scheduler, options_present=True):
    calls = {"dispatch": 0}

    async def revalidate():
        return options_present

    async def dispatch():
        calls["dispatch"] += 1

    return FingerprintGate(scheduler, revalidate, dispatch, settle_delay=2.5), calls


def test_fingerprint_joins_ids_and_pressed_state():
    buttons, _ = option_elements(3, pressed=["false", "true", "false"])
    fingerprint = asyncio.run(compute_fingerprint(buttons))
    assert fingerprint == "multiple-choice-afalse|multiple-choice-btrue|multiple-choice-cfalse"


def test_burst_of_notifications_dispatches_once(scheduler, clock):
    gate, calls = make_gate(scheduler)

    async def scenario():
        armed = [gate.observe("a|b|c|d") for _ in range(25)]
        assert armed.count(True) == 1
        await clock.advance(1.0)
        # More notifications during the deferred window still see the lock
        assert gate.observe("a|b|c|d") is False
        await clock.advance(2.0)
        assert gate.observe("a|b|c|d") is False
        await clock.advance(10.0)

    asyncio.run(scenario())
    assert calls["dispatch"] == 1


def test_changed_fingerprint_clears_lock_immediately(scheduler, clock):
    gate, calls = make_gate(scheduler)

    async def scenario():
        gate.observe("q1a|q1b")
        await clock.advance(3.0)
        assert gate.locked
        assert gate.observe("q2a|q2b") is True
        await clock.advance(3.0)

    asyncio.run(scenario())
    assert calls["dispatch"] == 2


def test_vanished_options_release_the_lock(scheduler, clock):
    gate, calls = make_gate(scheduler, options_present=False)

    async def scenario():
        gate.observe("a|b")
        await clock.advance(2.5)

    asyncio.run(scenario())
    assert calls["dispatch"] == 0
    assert gate.locked is False


def test_locator_miss_on_revalidation_releases_the_lock(scheduler, clock):
    dispatched = []

    async def revalidate():
        raise LocatorMiss("No enabled, visible answer options on the page")

    async def dispatch():
        dispatched.append(True)

    gate = FingerprintGate(scheduler, revalidate, dispatch, settle_delay=2.5)

    async def scenario():
        gate.observe("a|b")
        await clock.advance(2.5)

    asyncio.run(scenario())
    assert dispatched == []
    assert gate.locked is False


def test_reset_cancels_pending_dispatch(scheduler, clock):
    gate, calls = make_gate(scheduler)

    async def scenario():
        gate.observe("a|b")
        gate.reset()
        assert not scheduler.is_pending(ANSWER_TIMER)
        await clock.advance(5.0)

    asyncio.run(scenario())
    assert calls["dispatch"] == 0
    assert gate.last_fingerprint == ""
