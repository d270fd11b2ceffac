"""
Per-question deduplication.

The fingerprint is built from the ids and aria-pressed state of the visible
option elements. A changed fingerprint means a genuinely new question; an
unchanged one, no matter how many change notifications carry it, dispatches
at most once.
"""
from typing import Awaitable, Callable, Optional

from errors import LocatorMiss
from logger import agent_logger
from scheduler import Scheduler

ANSWER_TIMER = "answerDelay"


async def compute_fingerprint(elements) -> str:
    parts = []
    for element in elements:
        ident = await element.get_attribute("id") or ""
        pressed = await element.get_attribute("aria-pressed") or ""
        parts.append(ident + pressed)
    return "|".join(parts)


class FingerprintGate:
    def __init__(
        self,
        scheduler: Scheduler,
        revalidate: Callable[[], Awaitable[bool]],
        dispatch: Callable[[], Awaitable[None]],
        settle_delay: float = 2.5,
    ):
        self.scheduler = scheduler
        self.revalidate = revalidate
        self.dispatch = dispatch
        self.settle_delay = settle_delay
        self.last_fingerprint = ""
        self.locked = False

    def observe(self, fingerprint: str) -> bool:
        """
        Synchronous test-and-set. Returns True when this call armed a dispatch.
        Must not await anything: a notification arriving during the deferred
        window has to see the lock.
        """
        if fingerprint != self.last_fingerprint:
            self.last_fingerprint = fingerprint
            if self.locked:
                agent_logger.info("Fingerprint changed, resetting lock for new question")
                self.locked = False
        if self.locked:
            return False
        self.locked = True
        agent_logger.info(f"Fingerprint detected new question. Will answer in {self.settle_delay}s...")
        self.scheduler.start(ANSWER_TIMER, self.settle_delay, self._fire)
        return True

    async def _fire(self) -> None:
        try:
            present = await self.revalidate()
        except LocatorMiss:
            present = False
        if not present:
            agent_logger.info("Options vanished before dispatch, releasing lock")
            self.locked = False
            return
        await self.dispatch()

    def release(self) -> None:
        self.locked = False

    def reset(self, fingerprint: Optional[str] = "") -> None:
        """Forget the current question entirely (stop, URL change)."""
        self.scheduler.cancel(ANSWER_TIMER)
        self.locked = False
        self.last_fingerprint = fingerprint or ""
