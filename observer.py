"""
Live-document change observation.

A MutationObserver is injected into the quiz page and reports serialized
records back through a Playwright binding. Records are queued and consumed by
a single task, so page-event handlers never run concurrently.
"""
import asyncio
from typing import Awaitable, Callable, List, Sequence

from errors import is_context_lost
from logger import agent_logger
from models import PageEvent
from scheduler import Scheduler

BINDING_NAME = "__pollAgentMutations"
RETRY_TIMER = "observerRetry"

OBSERVE_JS = """([rootSelector, markers, binding]) => {
    const root = document.querySelector(rootSelector);
    if (!root) return false;
    if (window.__pollAgentObserver) window.__pollAgentObserver.disconnect();
    const ids = window.__pollAgentIds || (window.__pollAgentIds = new WeakMap());
    const idOf = (node) => {
        if (!ids.has(node)) {
            window.__pollAgentSeq = (window.__pollAgentSeq || 0) + 1;
            ids.set(node, 'n' + window.__pollAgentSeq);
        }
        return ids.get(node);
    };
    const observer = new MutationObserver((records) => {
        const events = [];
        const ts = Date.now() / 1000;
        for (const r of records) {
            if (r.type === 'childList') {
                for (const node of r.addedNodes) {
                    if (!(node instanceof Element)) continue;
                    events.push({
                        kind: 'nodeAdded', timestamp: ts, node_id: idOf(node),
                        markers: markers.filter((m) => node.matches(m)),
                    });
                }
            } else if (r.type === 'attributes') {
                events.push({
                    kind: 'attributeChanged', timestamp: ts, node_id: idOf(r.target),
                    attribute_name: r.attributeName,
                });
            }
        }
        if (events.length && window[binding]) window[binding](events);
    });
    observer.observe(root, { attributes: true, childList: true, subtree: true });
    window.__pollAgentObserver = observer;
    window.__pollAgentRoot = root;
    return true;
}"""

ROOT_REPLACED_JS = """(rootSelector) => {
    const root = document.querySelector(rootSelector);
    return !!root && (root !== window.__pollAgentRoot || !window.__pollAgentObserver);
}"""

DISCONNECT_JS = """() => {
    if (window.__pollAgentObserver) window.__pollAgentObserver.disconnect();
    window.__pollAgentObserver = null;
    window.__pollAgentRoot = null;
}"""


class ChangeObserver:
    def __init__(
        self,
        page,
        scheduler: Scheduler,
        on_events: Callable[[List[PageEvent]], Awaitable[None]],
        root_selector: str = "#wrapper",
        markers: Sequence[str] = (),
        retry_delay: float = 1.0,
    ):
        self.page = page
        self.scheduler = scheduler
        self.on_events = on_events
        self.root_selector = root_selector
        self.markers = list(markers)
        self.retry_delay = retry_delay
        self.active = False
        self._bound = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._consumer = None

    async def start(self) -> bool:
        """Subscribe to the root container. Re-subscribes cleanly if already active."""
        if not self._bound:
            await self.page.expose_binding(BINDING_NAME, self._on_binding)
            self._bound = True
        if self.active:
            # Drop the old subscription before observing again
            await self.page.evaluate(DISCONNECT_JS)
            self.active = False
        attached = await self.page.evaluate(OBSERVE_JS, [self.root_selector, self.markers, BINDING_NAME])
        if not attached:
            agent_logger.info(f"No {self.root_selector} found, retrying in {self.retry_delay:.0f}s")
            self.scheduler.start(RETRY_TIMER, self.retry_delay, self.start)
            return False
        self.scheduler.cancel(RETRY_TIMER)
        self.active = True
        if self._consumer is None or self._consumer.done():
            self._consumer = self.scheduler.spawn(self._consume(), name="observer")
        agent_logger.info(f"▶ Observer started on: {self.page.url}")
        return True

    async def reattach(self) -> bool:
        """After SPA navigation: follow a replaced root container. True when re-subscribed."""
        if not self.active:
            return False
        if not await self.page.evaluate(ROOT_REPLACED_JS, self.root_selector):
            return False
        await self.page.evaluate(DISCONNECT_JS)
        attached = await self.page.evaluate(OBSERVE_JS, [self.root_selector, self.markers, BINDING_NAME])
        if attached:
            agent_logger.info(f"Re-attached observer to new {self.root_selector}")
        else:
            self.active = False
        return bool(attached)

    async def stop(self) -> None:
        self.scheduler.cancel(RETRY_TIMER)
        if self.active:
            self.active = False
            await self.page.evaluate(DISCONNECT_JS)
        self._drop_pending()

    def kill(self) -> None:
        """Kill switch path: the page may already be gone, so do not touch it."""
        self.active = False
        self.scheduler.cancel(RETRY_TIMER)
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
        self._drop_pending()

    async def _on_binding(self, source, payload) -> None:
        if not self.active:
            return
        events = [PageEvent.model_validate(item) for item in payload or []]
        if events:
            self._queue.put_nowait(events)

    async def _consume(self) -> None:
        while True:
            events = await self._queue.get()
            if not self.active:
                continue
            try:
                await self.on_events(events)
            except Exception as e:
                if is_context_lost(e):
                    raise
                agent_logger.error(f"Page event handler failed: {e}", exc_info=True)

    def _drop_pending(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
