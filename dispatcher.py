"""
Answer dispatch for a detected question.

multiple choice, AI off  -> peer majority (when enabled) or direct selection
multiple choice, AI on   -> AI round trip -> click the reply
numeric, AI on           -> AI round trip -> type the number, press send
numeric, AI off          -> skipped, there is no safe blind answer
"""
import random
import re
from typing import List, Optional

from actions import safe_click, type_value
from bridge import AIRequester, parse_ai_reply
from config_store import SessionState
from detector import NUMERIC_INPUT_SELECTOR, OPTION_CONTAINER_SELECTOR, OPTION_LABEL_SELECTOR, parse_question
from errors import ParseFailure, RequestInFlight
from fingerprint import compute_fingerprint
from locator import LETTERS, ElementLocator, first_usable, is_visible
from logger import agent_logger
from models import AIRequest, QuestionSnapshot
from scheduler import Scheduler

SELECT_TIMER = "selectDelay"
SUBMIT_TIMER = "submitDelay"
AI_CLICK_TIMER = "aiClick"

SEND_BUTTON_SELECTORS = [
    "button.button.primary.rounded-button",
    "button[class*='primary'][class*='rounded']",
    ".answer-controls-container button[type='button']",
]

_NUMERIC_ANSWER_RE = re.compile(r'-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?')


class AnswerDispatcher:
    def __init__(
        self,
        page,
        session: SessionState,
        scheduler: Scheduler,
        locator: Optional[ElementLocator] = None,
        requester: Optional[AIRequester] = None,
        peer=None,
        rng: Optional[random.Random] = None,
        select_delay: float = 5.0,
        submit_delay: float = 0.4,
        ai_click_delay: float = 0.5,
    ):
        self.page = page
        self.session = session
        self.scheduler = scheduler
        self.locator = locator or ElementLocator()
        self.requester = requester
        self.peer = peer
        self.rng = rng or random.Random()
        self.select_delay = select_delay
        self.submit_delay = submit_delay
        self.ai_click_delay = ai_click_delay
        self.current: Optional[QuestionSnapshot] = None
        # The question the outstanding AI request was sent for
        self.asking: Optional[QuestionSnapshot] = None
        # Newest question that arrived while that request was outstanding
        self.queued: Optional[QuestionSnapshot] = None
        self._answered_fingerprint = ""

    # --- Entry points ---

    async def snapshot(self) -> Optional[QuestionSnapshot]:
        """Parse the live page, with the located options' fingerprint attached."""
        buttons = await self.locator.find(self.page)
        fingerprint = await compute_fingerprint(buttons)
        labels = [((await b.text_content()) or "").strip() for b in buttons]
        return parse_question(await self.page.content(), fallback_options=labels, fingerprint=fingerprint)

    async def handle_current(self, force: bool = False) -> None:
        """Fingerprint-gate path: answer whatever question is on the page now."""
        buttons = await self.locator.find(self.page)
        if not force:
            for button in buttons:
                if (await button.get_attribute("aria-pressed")) == "true":
                    agent_logger.info("An option is already selected, nothing to do")
                    return
        snapshot = await self.snapshot()
        if snapshot is None:
            agent_logger.info("Nothing answerable on the page")
            return
        await self.handle_question(snapshot, force=force)

    async def handle_question(self, snapshot: QuestionSnapshot, force: bool = False) -> None:
        fingerprint = snapshot.option_fingerprint
        if not force and fingerprint and fingerprint == self._answered_fingerprint:
            agent_logger.debug("Question already dispatched, skipping")
            return
        config = self.session.config
        if config.use_ai and self.requester is not None and self.requester.in_flight:
            agent_logger.info("AI request still outstanding, question queued until it settles")
            self.queued = snapshot
            return
        self._answered_fingerprint = fingerprint
        self.current = snapshot
        if self.peer is not None:
            self.peer.stop()

        if snapshot.type == "numeric":
            if config.use_ai:
                await self.ask_ai(snapshot)
            else:
                agent_logger.info("🔢 Numeric question with AI disabled: skipping")
            return

        if config.use_ai:
            await self.ask_ai(snapshot)
        elif self.peer is not None and self.peer.enabled and self.peer.ready:
            agent_logger.info("👥 Following the class majority")
            self.peer.start_polling()
        else:
            await self.select_answer()

    # --- AI round trip ---

    async def ask_ai(self, snapshot: QuestionSnapshot) -> None:
        if self.requester is None:
            agent_logger.warning("AI answering is on but no AI bridge is attached")
            await self._fallback(snapshot)
            return
        self.asking = snapshot
        try:
            await self.requester.request(AIRequest.from_snapshot(snapshot))
        except RequestInFlight:
            agent_logger.warning("AI request already in flight, question queued")
            self.asking = None
            self.queued = snapshot

    def _settled_question(self) -> Optional[QuestionSnapshot]:
        """The question a settled reply belongs to, or None when it is stale."""
        asked, self.asking = self.asking, None
        if asked is None or asked is not self.current or self.queued is not None:
            return None
        return asked

    async def _send_queued(self) -> bool:
        queued, self.queued = self.queued, None
        if queued is None:
            return False
        await self.handle_question(queued)
        return True

    async def on_ai_response(self, response_text: str) -> None:
        if self.requester is not None and not self.requester.settle():
            agent_logger.info("Dropping AI reply: no request outstanding")
            return
        snapshot = self._settled_question()
        if snapshot is None:
            agent_logger.info("Dropping AI reply: it belongs to an earlier question")
            await self._send_queued()
            return
        q_type = snapshot.type
        try:
            answer = parse_ai_reply(response_text)
        except ParseFailure as e:
            agent_logger.warning(f"Could not parse AI reply ({e})")
            await self._fallback(snapshot)
            return

        agent_logger.info(f"🤖 AI answer: {answer}")
        if q_type == "numeric":
            if not _NUMERIC_ANSWER_RE.fullmatch(answer):
                agent_logger.warning(f"AI gave a non-numeric answer to a numeric question: {answer!r}")
                return
            await self.submit_numeric(answer)
        else:
            await self.click_ai_answer(answer)

    async def on_ai_fallback(self, reason: Optional[str] = None) -> None:
        if self.requester is not None:
            self.requester.settle()
        agent_logger.info(f"AI unavailable: {reason or 'no reply'}")
        snapshot = self._settled_question()
        if snapshot is None:
            if not await self._send_queued():
                agent_logger.info("Question changed since the AI request, nothing to fall back for")
            return
        await self._fallback(snapshot)

    async def _fallback(self, snapshot: Optional[QuestionSnapshot]) -> None:
        if snapshot is not None and snapshot.type == "numeric":
            agent_logger.info("🔢 Numeric question without an AI answer: skipping")
            return
        await self.select_answer()

    async def click_ai_answer(self, answer: str) -> None:
        """Option label text first (exact, or prefix for longer answers), then the letter."""
        target = await self.match_label(answer)
        if target is None:
            target = await self.locator.find_by_letter(self.page, answer)
        if target is None:
            agent_logger.warning(f"No option matches AI answer {answer!r}")
            return
        self.scheduler.start(AI_CLICK_TIMER, self.ai_click_delay, lambda: safe_click(target))

    async def match_label(self, answer: str):
        wanted = answer.strip().rstrip(".").lower()
        if not wanted:
            return None
        for container in await self.page.query_selector_all(OPTION_CONTAINER_SELECTOR):
            if not await is_visible(container):
                continue
            label = await container.query_selector(OPTION_LABEL_SELECTOR) or container
            text = ((await label.text_content()) or "").strip().rstrip(".").lower()
            if not text:
                continue
            if text == wanted or (len(wanted) > 1 and text.startswith(wanted)):
                return await container.query_selector("button") or container
        return None

    # --- Direct selection ---

    def pick_letter(self, count: int) -> str:
        if not self.session.config.random:
            return "A"
        return LETTERS[self.rng.randrange(max(1, min(count, len(LETTERS))))]

    async def select_answer(self) -> None:
        buttons = await self.locator.find(self.page)
        if buttons:
            letter = self.pick_letter(len(buttons))
            agent_logger.info(f"Will select option {letter} in {self.select_delay}s")
            self.scheduler.start(SELECT_TIMER, self.select_delay, lambda: self.click_letter(letter))
            return

        containers = [c for c in await self.page.query_selector_all(OPTION_CONTAINER_SELECTOR) if await is_visible(c)]
        if not containers:
            agent_logger.warning("No answer options found on the page")
            return
        index = self.rng.randrange(len(containers)) if self.session.config.random else 0
        target = await containers[index].query_selector("button") or containers[index]
        agent_logger.info(f"Will select option container {index} in {self.select_delay}s")
        self.scheduler.start(SELECT_TIMER, self.select_delay, lambda: safe_click(target))

    async def click_letter(self, letter: str) -> bool:
        # Options are re-located at click time: the page may have re-rendered them
        element = await self.locator.find_by_letter(self.page, letter)
        if element is None:
            agent_logger.warning(f"Option {letter} not found when clicking")
            return False
        return await safe_click(element)

    # --- Numeric ---

    async def submit_numeric(self, value: str) -> bool:
        field = await self.page.query_selector(NUMERIC_INPUT_SELECTOR)
        if field is None:
            agent_logger.warning("Numeric input not found")
            return False
        agent_logger.info(f"🔢 Entering numeric answer {value}")
        await type_value(field, value)
        self.scheduler.start(SUBMIT_TIMER, self.submit_delay, self.press_send)
        return True

    async def press_send(self) -> bool:
        button = await first_usable(self.page, SEND_BUTTON_SELECTORS)
        if button is None:
            agent_logger.warning("Send button not found for numeric answer")
            return False
        return await safe_click(button)

    def reset(self) -> None:
        for name in (SELECT_TIMER, SUBMIT_TIMER, AI_CLICK_TIMER):
            self.scheduler.cancel(name)
        self.current = None
        self.queued = None
        self._answered_fingerprint = ""

    @property
    def pending(self) -> List[str]:
        return [n for n in (SELECT_TIMER, SUBMIT_TIMER, AI_CLICK_TIMER) if self.scheduler.is_pending(n)]
