"""
Destination side of the AI bridge for chat-site tabs (ChatGPT, Gemini, DeepSeek).

receiveQuestion -> type the prompt -> press send -> wait for generation to
finish -> read the last assistant message -> reply with the site's response tag.
"""
from fnmatch import fnmatch
from typing import Dict, Optional

from actions import safe_click, type_value
from bridge import BridgeRouter, ScriptContext, build_prompt, extract_answer
from locator import first_usable
from logger import agent_logger
from models import AIRequest, Envelope, MessageType
from scheduler import Scheduler
from settings import AI_SERVICE_PATTERNS, CHAT_SITE_PROFILES, ChatSiteProfile

INPUT_SETTLE = 0.5
SEND_SETTLE = 0.6


def profile_for_url(url: str, profiles: Optional[Dict[str, ChatSiteProfile]] = None) -> Optional[ChatSiteProfile]:
    profiles = profiles or CHAT_SITE_PROFILES
    for service, pattern in AI_SERVICE_PATTERNS.items():
        if service in profiles and fnmatch(url or "", pattern):
            return profiles[service]
    return None


class ChatPageBridge(ScriptContext):
    """
    Attached to every non-quiz tab. The site profile is picked from the tab's
    URL when a question arrives, so a tab navigated to a chat site later works.
    """

    def __init__(
        self,
        page,
        router: BridgeRouter,
        scheduler: Scheduler,
        profiles: Optional[Dict[str, ChatSiteProfile]] = None,
        response_timeout: float = 60.0,
        quiet_period: float = 2.0,
        poll_interval: float = 0.8,
    ):
        self.page = page
        self.router = router
        self.scheduler = scheduler
        self.profiles = profiles or CHAT_SITE_PROFILES
        self.response_timeout = response_timeout
        self.quiet_period = quiet_period
        self.poll_interval = poll_interval
        self.busy = False

    @property
    def url(self) -> str:
        return self.page.url

    def is_closed(self) -> bool:
        return self.page.is_closed()

    async def deliver(self, envelope: Envelope) -> Optional[dict]:
        if envelope.type != MessageType.RECEIVE_QUESTION or envelope.question is None:
            return None
        if self.busy:
            agent_logger.warning("Chat tab is still answering the previous question")
            return {"success": False}
        self.busy = True
        self.scheduler.spawn(self.handle_question(envelope.question), name="chatBridge")
        return {"success": True}

    async def handle_question(self, request: AIRequest) -> None:
        try:
            profile = profile_for_url(self.page.url, self.profiles)
            if profile is None:
                agent_logger.warning(f"No chat profile for {self.page.url}")
                return
            prompt = build_prompt(request)
            agent_logger.info(f"💬 Asking {profile.name}: {request.question[:80]}")

            await self.scheduler.sleep(INPUT_SETTLE)
            input_box = await first_usable(self.page, profile.input_selectors)
            if input_box is None:
                agent_logger.warning(f"{profile.name}: input box not found")
                return
            await type_value(input_box, prompt)

            await self.scheduler.sleep(SEND_SETTLE)
            send_button = await first_usable(self.page, profile.send_selectors)
            if send_button is None:
                agent_logger.warning(f"{profile.name}: send button not found")
                return
            await safe_click(send_button)

            await self.wait_for_completion(profile)
            raw = await self.last_message_text(profile)
            answer = extract_answer(raw)
            agent_logger.info(f"💬 {profile.name} replied: {raw[:120]!r} -> {answer}")
            await self.router.send(Envelope(type=MessageType(profile.response_type), response=answer), sender=self)
        finally:
            self.busy = False

    async def is_generating(self, profile: ChatSiteProfile) -> bool:
        for selector in profile.generating_selectors:
            if await self.page.query_selector(selector) is not None:
                return True
        return False

    async def wait_for_completion(self, profile: ChatSiteProfile) -> bool:
        """
        Poll until the generating indicator has stayed absent for quiet_period
        seconds. False when response_timeout passes first.
        """
        clock = self.scheduler.clock
        started = clock.now()
        absent_since = None
        while True:
            await self.scheduler.sleep(self.poll_interval)
            now = clock.now()
            if await self.is_generating(profile):
                absent_since = None
            elif absent_since is None:
                absent_since = now
            if absent_since is not None and now - absent_since >= self.quiet_period:
                return True
            if now - started >= self.response_timeout:
                agent_logger.warning(f"{profile.name}: still generating after {self.response_timeout:.0f}s, reading what is there")
                return False

    async def last_message_text(self, profile: ChatSiteProfile) -> str:
        for selector in profile.message_selectors:
            messages = await self.page.query_selector_all(selector)
            if messages:
                return ((await messages[-1].text_content()) or "").strip()
        return ""
