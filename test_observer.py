import asyncio

from conftest import POLL_URL, FakePage
from observer import BINDING_NAME, DISCONNECT_JS, OBSERVE_JS, RETRY_TIMER, ROOT_REPLACED_JS, ChangeObserver
from scheduler import ManualClock

RECORD = {"kind": "nodeAdded", "timestamp": 1.0, "node_id": "n1", "markers": [".question-type-container"]}


def observed_page(root_present=True):
    return FakePage(url=POLL_URL, evaluate_results={OBSERVE_JS: root_present, ROOT_REPLACED_JS: False, DISCONNECT_JS: None})


def test_events_flow_through_the_binding(scheduler, clock):
    page = observed_page()
    batches = []

    async def on_events(events):
        batches.append(events)

    observer = ChangeObserver(page, scheduler, on_events, markers=[".question-type-container"])

    async def scenario():
        assert await observer.start() is True
        callback = page.bindings[BINDING_NAME]
        await callback(None, [RECORD, {"kind": "attributeChanged", "timestamp": 1.0, "node_id": "n2", "attribute_name": "aria-hidden"}])
        await ManualClock.drain()

    asyncio.run(scenario())
    assert len(batches) == 1
    assert [e.kind for e in batches[0]] == ["nodeAdded", "attributeChanged"]
    assert batches[0][0].markers == [".question-type-container"]
    assert batches[0][1].attribute_name == "aria-hidden"


def test_handlers_never_overlap(scheduler, clock):
    page = observed_page()
    trace = []

    async def on_events(events):
        trace.append(("enter", events[0].node_id))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        trace.append(("exit", events[0].node_id))

    observer = ChangeObserver(page, scheduler, on_events)

    async def scenario():
        await observer.start()
        callback = page.bindings[BINDING_NAME]
        await callback(None, [dict(RECORD, node_id="n1")])
        await callback(None, [dict(RECORD, node_id="n2")])
        await ManualClock.drain()

    asyncio.run(scenario())
    assert trace == [("enter", "n1"), ("exit", "n1"), ("enter", "n2"), ("exit", "n2")]


def test_missing_root_retries(scheduler, clock):
    page = observed_page(root_present=False)

    async def on_events(events):
        pass

    observer = ChangeObserver(page, scheduler, on_events, retry_delay=1.0)

    async def scenario():
        assert await observer.start() is False
        assert scheduler.is_pending(RETRY_TIMER)
        page.evaluate_results[OBSERVE_JS] = True
        await clock.advance(1.0)

    asyncio.run(scenario())
    assert observer.active is True
    assert not scheduler.is_pending(RETRY_TIMER)


def test_restart_drops_old_subscription_first(scheduler, clock):
    page = observed_page()

    async def on_events(events):
        pass

    observer = ChangeObserver(page, scheduler, on_events)

    async def scenario():
        await observer.start()
        await observer.start()

    asyncio.run(scenario())
    scripts = [script for script, _ in page.evaluated]
    assert scripts == [OBSERVE_JS, DISCONNECT_JS, OBSERVE_JS]
    assert len(page.bindings) == 1


def test_stopped_observer_ignores_events(scheduler, clock):
    page = observed_page()
    batches = []

    async def on_events(events):
        batches.append(events)

    observer = ChangeObserver(page, scheduler, on_events)

    async def scenario():
        await observer.start()
        await observer.stop()
        await page.bindings[BINDING_NAME](None, [RECORD])
        await ManualClock.drain()

    asyncio.run(scenario())
    assert batches == []
    assert observer.active is False
