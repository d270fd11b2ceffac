"""
Session credential capture and the peer-majority answer mode.

The student site keeps a bearer token and the current course id in
sessionStorage (or a cookie). With those and the live activity id the
reporting API tells us how the class is answering; peer polling keeps
selecting whichever option currently has the most responses.
"""
import asyncio
from typing import Optional

import requests

from actions import safe_click
from errors import NetworkFailure
from locator import LETTER_TO_INDEX, ElementLocator
from logger import agent_logger
from scheduler import Scheduler

PEER_TIMER = "peerPoll"
REQUEST_TIMEOUT = 10

CREDENTIALS_JS = """() => {
    let token = sessionStorage.getItem('access_token');
    if (!token) {
        const row = document.cookie.split('; ').find((r) => r.startsWith('access_token'));
        token = row ? row.split('=')[1] : null;
    }
    return { access_token: token, courseId: sessionStorage.getItem('courseId') };
}"""

CLASS_SECTION_CHILDREN = (
    "activities", "userActivities", "attendances", "questions", "userQuestions", "questionGroups",
)


class SessionCredentialCapture:
    def __init__(
        self,
        page,
        scheduler: Scheduler,
        locator: Optional[ElementLocator] = None,
        http: Optional[requests.Session] = None,
        api_host: str = "https://api.iclicker.com",
        origin: str = "https://student.iclicker.com",
        interval: float = 5.0,
        default_index: int = 0,
        enabled: bool = False,
    ):
        self.page = page
        self.scheduler = scheduler
        self.locator = locator or ElementLocator()
        self.http = http or requests.Session()
        self.api_host = api_host.rstrip("/")
        self.origin = origin
        self.interval = interval
        self.default_index = default_index
        self.enabled = enabled
        self.access_token: Optional[str] = None
        self.course_id: Optional[str] = None
        self.activity_id: Optional[str] = None

    @property
    def ready(self) -> bool:
        return bool(self.access_token and self.course_id and self.activity_id)

    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Origin": self.origin,
        }

    async def capture(self) -> bool:
        """Read token and course id from the page. True when both are present."""
        found = await self.page.evaluate(CREDENTIALS_JS) or {}
        token, course_id = found.get("access_token"), found.get("courseId")
        if not token or not course_id:
            return False
        if course_id != self.course_id:
            self.activity_id = None
        self.access_token, self.course_id = token, course_id
        return True

    async def _get_json(self, url: str, params=None):
        try:
            response = await asyncio.to_thread(
                self.http.get, url, params=params, headers=self.headers(), timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise NetworkFailure(f"GET {url} failed: {e}") from e

    async def resolve_activity_id(self) -> Optional[str]:
        """The current activity of the course, looked up once per course."""
        if self.activity_id:
            return self.activity_id
        if not await self.capture():
            return None
        params = [("recordsPerPage", 1), ("pageNumber", 1)]
        params += [("expandChild", child) for child in CLASS_SECTION_CHILDREN]
        try:
            data = await self._get_json(f"{self.api_host}/v2/courses/{self.course_id}/class-sections", params)
            activity = data[0]["activities"][0]
            self.activity_id = activity["_id"]
        except (NetworkFailure, KeyError, IndexError, TypeError) as e:
            agent_logger.warning(f"Could not resolve activity id: {e}")
            return None
        agent_logger.info(f"activityId: {self.activity_id}")
        return self.activity_id

    # --- Peer majority ---

    def start_polling(self) -> None:
        agent_logger.info(f"👥 Polling class responses every {self.interval:.0f}s")
        self.scheduler.start_interval(PEER_TIMER, self.interval, self.poll_once)

    def stop(self) -> None:
        self.scheduler.cancel(PEER_TIMER)

    async def poll_once(self) -> None:
        if not self.ready:
            await self.click_index(self.default_index)
            return
        url = (
            f"{self.api_host}/v2/reporting/courses/{self.course_id}"
            f"/activities/{self.activity_id}/questions/view"
        )
        try:
            data = await self._get_json(url)
            overview = data["questions"][-1]["answerOverview"]
        except (NetworkFailure, KeyError, IndexError, TypeError) as e:
            agent_logger.warning(f"Peer response poll failed: {e}")
            return
        if not overview:
            await self.click_index(self.default_index)
            return
        best = max(overview, key=lambda item: item.get("percentageOfTotalResponses") or 0)
        letter = str(best.get("answer", "")).upper()
        agent_logger.info(f"👥 Class majority: {letter} ({best.get('percentageOfTotalResponses')}%)")
        await self.click_index(LETTER_TO_INDEX.get(letter, self.default_index))

    async def click_index(self, index: int) -> bool:
        buttons = await self.locator.find(self.page)
        if index >= len(buttons):
            return False
        return await safe_click(buttons[index])
