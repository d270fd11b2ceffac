"""
Static configuration for the poll agent.
Values come from the environment (.env supported); the defaults target the
iClicker student site and the three supported AI chat services.
"""
import os
from typing import Dict, List

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


# --- AI destination routing ---

# URL pattern of the page that hosts each selectable AI service.
# "gemini-api" is not a tab: the API-backed destination attaches under a genai:// URL.
AI_SERVICE_PATTERNS: Dict[str, str] = {
    "chatgpt": "https://chatgpt.com/*",
    "gemini": "https://gemini.google.com/*",
    "deepseek": "https://chat.deepseek.com/*",
    "gemini-api": "genai://*",
}

# Pages that consume AI replies (fan-out targets)
CONSUMER_PATTERNS: List[str] = [
    "https://student.iclicker.com/*",
    "https://*.mheducation.com/*",
]


class ChatSiteProfile(BaseModel):
    """Selectors used to drive one AI chat page. Each list is tried in order."""
    name: str
    response_type: str
    input_selectors: List[str]
    send_selectors: List[str]
    generating_selectors: List[str]
    message_selectors: List[str]


CHAT_SITE_PROFILES: Dict[str, ChatSiteProfile] = {
    "chatgpt": ChatSiteProfile(
        name="ChatGPT",
        response_type="chatGPTResponse",
        input_selectors=[
            "#prompt-textarea",
            "textarea[placeholder]",
            "[contenteditable='true'][data-id]",
            "div[contenteditable='true']",
        ],
        send_selectors=[
            "button[data-testid='send-button']",
            "button[aria-label='Send message']",
            "button[aria-label='Send prompt']",
            "form button[type='submit']",
        ],
        generating_selectors=[
            "button[aria-label='Stop generating']",
            "button[data-testid='stop-button']",
        ],
        message_selectors=[
            "[data-message-author-role='assistant']",
            ".markdown",
        ],
    ),
    "gemini": ChatSiteProfile(
        name="Gemini",
        response_type="geminiResponse",
        input_selectors=[
            "rich-textarea [contenteditable='true']",
            "div[contenteditable='true']",
            "textarea",
        ],
        send_selectors=[
            "button[aria-label*='Send' i]",
            "button.send-button",
        ],
        generating_selectors=[
            "button[aria-label*='Stop' i]",
            ".loading-indicator",
        ],
        message_selectors=[
            ".model-response",
            ".response-content",
            "[data-message-author-role='model']",
        ],
    ),
    "deepseek": ChatSiteProfile(
        name="DeepSeek",
        response_type="deepseekResponse",
        input_selectors=[
            "textarea#chat-input",
            "textarea",
        ],
        send_selectors=[
            "div[role='button'][aria-disabled='false']",
            "button[type='submit']",
        ],
        generating_selectors=[
            "div[role='button'] svg rect",
            "button[aria-label*='Stop' i]",
        ],
        message_selectors=[
            ".ds-markdown",
            "[class*='markdown']",
        ],
    ),
}


# --- Agent settings ---

class AgentSettings(BaseModel):
    quiz_start_url: str = "https://student.iclicker.com/#/courses"
    ai_page_url: str = ""
    browser_profile_dir: str = ".browser-profile"
    headless: bool = False
    config_store_path: str = "agent_config.json"

    notify_host: str = "https://bye-clicker-api.vercel.app"
    api_host: str = "https://api.iclicker.com"
    site_origin: str = "https://student.iclicker.com"
    question_image_placeholder: str = (
        "https://institutional-web-assets-share.s3.amazonaws.com/iClicker/student/images/image_hidden_2.png"
    )

    root_selector: str = "#wrapper"

    # Pacing (seconds)
    question_settle_delay: float = 3.0
    answer_settle_delay: float = 2.5
    direct_select_delay: float = 5.0
    numeric_submit_delay: float = 0.4
    ai_click_delay: float = 0.5
    url_watch_interval: float = 0.5
    observer_retry_delay: float = 1.0
    resume_delay: float = 0.5
    notify_image_delay: float = 1.0
    peer_poll_interval: float = 5.0
    ai_response_timeout: float = 60.0
    # Requester side gives up a little after the destination's own timeout
    ai_round_trip_timeout: float = 65.0

    peer_majority: bool = False
    peer_default_index: int = 0
    genai_model: str = "gemini-2.5-flash"

    control_host: str = "127.0.0.1"
    control_port: int = 8000

    chat_sites: Dict[str, ChatSiteProfile] = Field(default_factory=lambda: dict(CHAT_SITE_PROFILES))


def load_settings() -> AgentSettings:
    """Build AgentSettings from environment variables, keeping defaults for unset ones."""
    defaults = AgentSettings()
    return AgentSettings(
        quiz_start_url=os.getenv("QUIZ_START_URL", defaults.quiz_start_url),
        ai_page_url=os.getenv("AI_PAGE_URL", defaults.ai_page_url),
        browser_profile_dir=os.getenv("BROWSER_PROFILE_DIR", defaults.browser_profile_dir),
        headless=_env_bool("HEADLESS", defaults.headless),
        config_store_path=os.getenv("CONFIG_STORE_PATH", defaults.config_store_path),
        notify_host=os.getenv("NOTIFY_HOST", defaults.notify_host),
        api_host=os.getenv("REPORTING_API_HOST", defaults.api_host),
        question_settle_delay=_env_float("QUESTION_SETTLE_DELAY", defaults.question_settle_delay),
        answer_settle_delay=_env_float("ANSWER_SETTLE_DELAY", defaults.answer_settle_delay),
        direct_select_delay=_env_float("DIRECT_SELECT_DELAY", defaults.direct_select_delay),
        peer_poll_interval=_env_float("PEER_POLL_INTERVAL", defaults.peer_poll_interval),
        ai_response_timeout=_env_float("AI_RESPONSE_TIMEOUT", defaults.ai_response_timeout),
        ai_round_trip_timeout=_env_float("AI_ROUND_TRIP_TIMEOUT", defaults.ai_round_trip_timeout),
        peer_majority=_env_bool("PEER_MAJORITY", defaults.peer_majority),
        peer_default_index=int(_env_float("PEER_DEFAULT_INDEX", defaults.peer_default_index)),
        genai_model=os.getenv("GENAI_MODEL", defaults.genai_model),
        control_host=os.getenv("CONTROL_HOST", defaults.control_host),
        control_port=int(_env_float("CONTROL_PORT", defaults.control_port)),
    )
