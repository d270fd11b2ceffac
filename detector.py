"""
Question detection: page events + URL shape -> question / join / class-end signals.

States: idle -> awaiting-question -> question-visible on the poll pages, and
awaiting-join on the course overview. A newly inserted question container is
only parsed after a settle delay, because its content streams in.
"""
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from bs4 import BeautifulSoup

from config_store import SessionState
from logger import agent_logger
from models import PageEvent, QuestionSnapshot
from scheduler import Scheduler

SETTLE_TIMER = "settle"

QUESTION_MARKER = ".question-type-container"
JOIN_CARD_SELECTOR = ".course-join-container"

QUESTION_TEXT_SELECTOR = ".center-buttons h1, .question-text, .question-content, .poll-question, h2.question"
OPTION_CONTAINER_SELECTOR = ".btn-container"
OPTION_LABEL_SELECTOR = ".answer-text, .choice-text, span, p"
TYPE_BANNER_SELECTOR = ".question-type-graded-banner, [class*='question-type-graded-banner']"
NUMERIC_INPUT_SELECTOR = "#numericAnswerInput, input[name='numeric-answer'], .numeric-answer-textarea input[type='text']"
NUMERIC_CONTAINER_SELECTOR = ".question-data-container, app-numeric-answer-question, .question-type-container"
QUESTION_IMAGE_SELECTOR = ".question-image-container img"


class DetectorState(str, Enum):
    IDLE = "idle"
    AWAITING_QUESTION = "awaiting-question"
    QUESTION_VISIBLE = "question-visible"
    AWAITING_JOIN = "awaiting-join"


# --- URL shape ---

def is_poll_url(url: str) -> bool:
    return "student.iclicker.com/#/class" in url and ("/poll" in url or "/question/" in url)


def is_overview_url(url: str) -> bool:
    return "#/course" in url and "/overview" in url


# --- Question extraction ---

def detect_question_type(soup: BeautifulSoup) -> str:
    """The graded banner names the type; a numeric input field also gives it away."""
    banner = soup.select_one(TYPE_BANNER_SELECTOR)
    if banner and "numeric" in banner.get_text(strip=True).lower():
        return "numeric"
    if soup.select_one(NUMERIC_INPUT_SELECTOR):
        return "numeric"
    return "multiple_choice"


def extract_options(soup: BeautifulSoup) -> List[str]:
    options = []
    for container in soup.select(OPTION_CONTAINER_SELECTOR):
        label = container.select_one(OPTION_LABEL_SELECTOR) or container
        options.append(label.get_text(strip=True))
    return options


def parse_question(html: str, fallback_options: Optional[List[str]] = None, fingerprint: str = "") -> Optional[QuestionSnapshot]:
    """
    Build a QuestionSnapshot from the page HTML.
    Returns None when neither question text nor options can be found.
    """
    soup = BeautifulSoup(html, 'html.parser')
    q_type = detect_question_type(soup)

    image = soup.select_one(QUESTION_IMAGE_SELECTOR)
    image_url = image.get("src") if image else None

    if q_type == "numeric":
        container = soup.select_one(NUMERIC_CONTAINER_SELECTOR) or soup.select_one(".center-buttons")
        text = container.get_text(" ", strip=True) if container else ""
        if not text:
            return None
        return QuestionSnapshot(question_text=text, type="numeric", image_url=image_url)

    heading = soup.select_one(QUESTION_TEXT_SELECTOR)
    text = heading.get_text(strip=True) if heading else ""
    options = extract_options(soup) or list(fallback_options or [])
    if not text and not options:
        return None
    return QuestionSnapshot(
        option_fingerprint=fingerprint,
        question_text=text,
        options=options,
        type="multiple_choice",
        image_url=image_url,
    )


class QuestionDetector:
    def __init__(
        self,
        page,
        scheduler: Scheduler,
        session: SessionState,
        on_question: Callable[[QuestionSnapshot], Awaitable[None]],
        on_join: Callable[[], Awaitable[None]],
        on_class_end: Callable[[], Awaitable[None]],
        snapshot: Optional[Callable[[], Awaitable[Optional[QuestionSnapshot]]]] = None,
        settle_delay: float = 3.0,
    ):
        self.page = page
        self.scheduler = scheduler
        self.session = session
        self.on_question = on_question
        self.on_join = on_join
        self.on_class_end = on_class_end
        self.snapshot = snapshot or self._snapshot_from_page
        self.settle_delay = settle_delay
        self.state = DetectorState.IDLE
        self._settled_node: Optional[str] = None
        self._join_signalled = False

    async def handle(self, event: PageEvent) -> None:
        url = self.page.url
        if is_poll_url(url):
            if self.state in (DetectorState.IDLE, DetectorState.AWAITING_JOIN):
                self.state = DetectorState.AWAITING_QUESTION
            self._join_signalled = False
            self.session.set_prev_page("poll")
            if event.kind == "nodeAdded" and QUESTION_MARKER in event.markers:
                self._container_inserted(event.node_id)
        elif is_overview_url(url):
            if event.kind == "attributeChanged" and event.attribute_name == "aria-hidden":
                await self._overview_changed()
        else:
            self.state = DetectorState.IDLE

    def _container_inserted(self, node_id: str) -> None:
        # One settlement per question container, however many bursts mention it
        if node_id == self._settled_node or self.scheduler.is_pending(SETTLE_TIMER):
            return
        self._settled_node = node_id
        # A new container replaces whatever question was on screen
        self.state = DetectorState.AWAITING_QUESTION
        agent_logger.info(f"📝 Question container appeared, settling for {self.settle_delay}s")
        self.scheduler.start(SETTLE_TIMER, self.settle_delay, self._settled)

    async def _settled(self) -> None:
        snapshot = await self.snapshot()
        if snapshot is None:
            agent_logger.info("Question container settled but nothing could be parsed")
            self.state = DetectorState.AWAITING_QUESTION
            return
        self.state = DetectorState.QUESTION_VISIBLE
        agent_logger.info(f"Question visible ({snapshot.type}): {snapshot.question_text[:80]}")
        await self.on_question(snapshot)

    async def _overview_changed(self) -> None:
        entering = self.state != DetectorState.AWAITING_JOIN
        self.state = DetectorState.AWAITING_JOIN
        if entering:
            self._join_signalled = False
        if self.session.config.prev_page == "poll":
            agent_logger.info("Back on course overview after a poll: class ended")
            await self.on_class_end()
            return
        if self.session.config.auto_join and not self._join_signalled and await self.join_card_expanded():
            self._join_signalled = True
            await self.on_join()

    async def join_card_expanded(self) -> bool:
        card = await self.page.query_selector(JOIN_CARD_SELECTOR)
        if card is None:
            return False
        classes = (await card.get_attribute("class")) or ""
        return "expanded" in classes.split()

    async def _snapshot_from_page(self) -> Optional[QuestionSnapshot]:
        return parse_question(await self.page.content())

    def reset(self) -> None:
        self.scheduler.cancel(SETTLE_TIMER)
        self.state = DetectorState.IDLE
        self._settled_node = None
        self._join_signalled = False
