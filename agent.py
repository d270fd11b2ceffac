"""
The poll agent: one Playwright persistent browser context, the quiz tab it
watches, and any AI chat tabs the user keeps open beside it.

Everything that happens on the quiz page goes through one serial pipeline:
observer -> detector (question/join/class-end) -> fingerprint gate -> dispatcher.
"""
import random
from typing import Optional

import requests
from playwright.async_api import async_playwright

from actions import safe_click
from bridge import AIRequester, BridgeRouter, ScriptContext
from chat_bridge import ChatPageBridge
from config_store import ConfigStore, SessionState, TOGGLE_FLAGS
from credentials import SessionCredentialCapture
from detector import QUESTION_MARKER, QuestionDetector, is_overview_url
from dispatcher import AnswerDispatcher
from errors import ContextInvalidated, is_context_lost
from fingerprint import FingerprintGate, compute_fingerprint
from llm_service import GenAIDestination
from locator import ElementLocator, first_usable
from logger import agent_logger
from models import Envelope, MessageType, QuestionSnapshot
from notifier import Notifier
from observer import ChangeObserver
from scheduler import Clock, Scheduler
from settings import AgentSettings, load_settings

URL_TIMER = "urlWatch"
RESUME_TIMER = "resume"

JOIN_SELECTORS = ["#btnJoin", "button#btnJoin", ".join-btn", "[class*='join'] button"]

VISIBILITY_BINDING = "__pollAgentVisibility"
VISIBILITY_JS = """(() => {
    if (window.__pollAgentVisibilityHooked) return;
    window.__pollAgentVisibilityHooked = true;
    document.addEventListener('visibilitychange', () => {
        if (window.__pollAgentVisibility) window.__pollAgentVisibility(document.visibilityState);
    });
})()"""


def is_question_url(url: str) -> bool:
    return "/poll" in url or "/question/" in url


class QuizPageContext(ScriptContext):
    """The quiz tab as a bridge endpoint: it consumes AI replies and fallbacks."""

    def __init__(self, page, dispatcher: Optional[AnswerDispatcher] = None):
        self.page = page
        self.dispatcher = dispatcher

    @property
    def url(self) -> str:
        return self.page.url

    def is_closed(self) -> bool:
        return self.page.is_closed()

    async def deliver(self, envelope: Envelope) -> Optional[dict]:
        if envelope.type == MessageType.PROCESS_AI_RESPONSE:
            await self.dispatcher.on_ai_response(envelope.response or "")
        elif envelope.type == MessageType.AI_FALLBACK:
            await self.dispatcher.on_ai_fallback(envelope.reason)
        return {"success": True}


class PollAgent:
    def __init__(
        self,
        settings: Optional[AgentSettings] = None,
        session: Optional[SessionState] = None,
        clock: Optional[Clock] = None,
        http: Optional[requests.Session] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings or load_settings()
        self.session = session or SessionState(ConfigStore(self.settings.config_store_path))
        self.scheduler = Scheduler(clock, on_error=self._on_task_error)
        self.http = http or requests.Session()
        self.rng = rng
        self.router = BridgeRouter(self.session, open_settings=self.open_settings_page)
        self.locator = ElementLocator()
        self.killed = False
        self.page = None
        self.browser_context = None
        self._playwright = None
        self.observer: Optional[ChangeObserver] = None
        self._last_url = ""

    # --- Browser lifecycle ---

    async def launch(self) -> None:
        s = self.settings
        self._playwright = await async_playwright().start()
        self.browser_context = await self._playwright.chromium.launch_persistent_context(
            s.browser_profile_dir, headless=s.headless
        )
        self.browser_context.on("close", lambda _: self.kill("browser closed"))
        pages = self.browser_context.pages
        page = pages[0] if pages else await self.browser_context.new_page()
        for other in pages[1:]:
            self._attach_chat_page(other)
        self.browser_context.on("page", self._attach_chat_page)
        agent_logger.info(f"🌐 Opening {s.quiz_start_url}")
        await page.goto(s.quiz_start_url, wait_until="domcontentloaded")
        if s.ai_page_url:
            ai_page = await self.browser_context.new_page()
            await ai_page.goto(s.ai_page_url, wait_until="domcontentloaded")
        await self.attach(page)

    async def close(self) -> None:
        self.killed = True
        if self.observer is not None:
            self.observer.kill()
        self.scheduler.shutdown()
        if self.browser_context is not None:
            await self.browser_context.close()
        if self._playwright is not None:
            await self._playwright.stop()

    def _attach_chat_page(self, page) -> None:
        bridge = ChatPageBridge(
            page, self.router, self.scheduler, self.settings.chat_sites,
            response_timeout=self.settings.ai_response_timeout,
        )
        self.router.attach(bridge)
        page.on("close", lambda _: self.router.detach(bridge))

    async def attach(self, page) -> None:
        """Build the pipeline over the quiz page and resume a previous session."""
        s = self.settings
        self.page = page
        self.quiz_context = QuizPageContext(page)
        self.credentials = SessionCredentialCapture(
            page, self.scheduler, self.locator, self.http,
            api_host=s.api_host, origin=s.site_origin, interval=s.peer_poll_interval,
            default_index=s.peer_default_index, enabled=s.peer_majority,
        )
        self.requester = AIRequester(
            self.router, self.quiz_context, self.scheduler,
            timeout=s.ai_round_trip_timeout, on_timeout=self._ai_timed_out,
        )
        self.dispatcher = AnswerDispatcher(
            page, self.session, self.scheduler, self.locator, self.requester, self.credentials,
            rng=self.rng, select_delay=s.direct_select_delay,
            submit_delay=s.numeric_submit_delay, ai_click_delay=s.ai_click_delay,
        )
        self.quiz_context.dispatcher = self.dispatcher
        self.gate = FingerprintGate(
            self.scheduler, self._options_present, self.dispatcher.handle_current, s.answer_settle_delay
        )
        self.detector = QuestionDetector(
            page, self.scheduler, self.session,
            on_question=self._on_question, on_join=self._on_join, on_class_end=self._on_class_end,
            snapshot=self.dispatcher.snapshot, settle_delay=s.question_settle_delay,
        )
        self.observer = ChangeObserver(
            page, self.scheduler, self._on_page_events,
            root_selector=s.root_selector, markers=[QUESTION_MARKER], retry_delay=s.observer_retry_delay,
        )
        self.notifier = Notifier(s.notify_host, self.http)

        self.router.attach(self.quiz_context)
        self.router.attach(GenAIDestination(self.router, self.scheduler, s.genai_model))
        page.on("close", lambda _: self.kill("quiz page closed"))

        await page.expose_binding(VISIBILITY_BINDING, self._on_visibility)
        await page.add_init_script(VISIBILITY_JS)
        await page.evaluate(VISIBILITY_JS)

        self._last_url = page.url
        self.scheduler.start_interval(URL_TIMER, s.url_watch_interval, self._watch_url)
        agent_logger.info(f"Loaded on: {page.url}")
        if self.session.config.running:
            agent_logger.info("Auto-resuming after page load")
            self.scheduler.start(RESUME_TIMER, s.resume_delay, self.start_observer)

    # --- Kill switch ---

    def kill(self, reason: str = "") -> None:
        if self.killed:
            return
        self.killed = True
        if self.observer is not None:
            self.observer.kill()
        self.scheduler.shutdown()
        agent_logger.error(f"💀 Browser context lost ({reason}): stopped. Restart the agent to continue.")

    def _on_task_error(self, exc: BaseException) -> None:
        if is_context_lost(exc):
            self.kill(str(exc))
        else:
            agent_logger.error(f"Background task failed: {exc}", exc_info=exc)

    def _check_alive(self) -> None:
        if self.page is None or self.page.is_closed():
            raise ContextInvalidated("quiz page is closed")

    # --- Page event pipeline ---

    async def _on_page_events(self, events) -> None:
        self._check_alive()
        for event in events:
            await self.detector.handle(event)
        if is_question_url(self.page.url):
            buttons = await self.locator.find(self.page)
            if len(buttons) >= 2:
                self.gate.observe(await compute_fingerprint(buttons))

    async def _options_present(self) -> bool:
        return bool(await self.locator.require(self.page))

    async def _on_question(self, snapshot: QuestionSnapshot) -> None:
        if await self.credentials.capture() and not self.credentials.activity_id:
            self.scheduler.spawn(self.credentials.resolve_activity_id(), name="activityId")
        config = self.session.config
        if config.notify and not self.notifier.busy:
            self.scheduler.spawn(self._announce_question(snapshot), name="notifyQuestion")
        else:
            await self.dispatcher.handle_question(snapshot)

    async def _announce_question(self, snapshot: QuestionSnapshot) -> None:
        await self.scheduler.sleep(self.settings.notify_image_delay)
        img = snapshot.image_url or self.settings.question_image_placeholder
        await self.notifier.notify("ques", self.session.config.email, img)
        await self.dispatcher.handle_question(snapshot)

    async def _on_join(self) -> None:
        config = self.session.config
        if config.notify:
            await self.notifier.notify("classStart", config.email)
        await self.click_join()
        self.scheduler.spawn(self.credentials.resolve_activity_id(), name="activityId")

    async def _on_class_end(self) -> None:
        await self.stop("default")

    async def _ai_timed_out(self) -> None:
        await self.dispatcher.on_ai_fallback("AI reply timed out")

    async def click_join(self) -> bool:
        button = await first_usable(self.page, JOIN_SELECTORS)
        if button is None:
            agent_logger.info("Join button not found")
            return False
        agent_logger.info("Clicking join button")
        return await safe_click(button)

    async def _watch_url(self) -> None:
        self._check_alive()
        url = self.page.url
        if url == self._last_url:
            return
        self._last_url = url
        self.gate.reset()
        agent_logger.info(f"URL changed: {url}")
        await self.credentials.capture()
        if self.observer.active:
            await self.observer.reattach()

    async def _on_visibility(self, source, state) -> None:
        if state != "visible" or self.killed:
            return
        if self.session.config.running and not self.observer.active:
            agent_logger.info("Tab visible again, resuming observer")
            await self.start_observer()

    # --- Control commands ---

    async def start_observer(self) -> bool:
        started = await self.observer.start()
        url = self.page.url
        self.session.set_running(True)
        self.session.set_prev_page("courses" if "#/course" in url else "poll")
        return started

    async def start(self) -> dict:
        url = self.page.url
        self.gate.reset()
        self.dispatcher.reset()
        if is_question_url(url):
            await self.dispatcher.handle_current(force=True)
        elif is_overview_url(url) and self.session.config.auto_join and await self.detector.join_card_expanded():
            await self._on_join()
        await self.start_observer()
        return await self.status()

    async def stop(self, reason: str = "manual") -> dict:
        await self.observer.stop()
        self.credentials.stop()
        self.gate.reset()
        self.dispatcher.reset()
        self.detector.reset()
        agent_logger.info(f"■ Observer stopped, reason: {reason}")
        config = self.session.config
        if reason == "default":
            self.session.clear_running()
            if config.notify and not self.notifier.busy:
                await self.notifier.notify("classEnd", config.email)
                await self.page.reload()
        else:
            self.session.set_running(False)
        return await self.status()

    async def toggle(self, flag: str, email: Optional[str] = None) -> dict:
        if flag not in TOGGLE_FLAGS:
            raise KeyError(f"Unknown toggle: {flag}")
        value = self.session.toggle(flag)
        if flag == "notify" and email is not None:
            self.session.set_email(email)
        agent_logger.info(f"Toggle {flag} -> {value}")
        return await self.status()

    async def set_model(self, model: str) -> dict:
        self.session.set_model(model)
        agent_logger.info(f"AI model -> {model}")
        return await self.status()

    async def open_settings(self) -> dict:
        return await self.router.send(Envelope(type=MessageType.OPEN_SETTINGS))

    async def open_settings_page(self) -> None:
        if self.browser_context is None:
            return
        page = await self.browser_context.new_page()
        await page.goto(f"http://{self.settings.control_host}:{self.settings.control_port}/docs")

    async def status(self) -> dict:
        return {
            "killed": self.killed,
            "observing": bool(self.observer and self.observer.active),
            "url": self.page.url if self.page is not None else None,
            "config": self.session.config.model_dump(mode='json'),
        }
