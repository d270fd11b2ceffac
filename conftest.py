import os
import tempfile

# Keep test runs from appending to the agent's real log file
os.environ.setdefault("LOG_FILE_PATH", os.path.join(tempfile.gettempdir(), "poll_agent_tests.log"))
os.environ.setdefault("USE_MOCK_LLM", "true")

import pytest
import requests

from bridge import ScriptContext
from config_store import ConfigStore, SessionState
from scheduler import ManualClock, Scheduler

POLL_URL = "https://student.iclicker.com/#/class/abc123/poll"
OVERVIEW_URL = "https://student.iclicker.com/#/course/xyz789/overview"


class FakeElement:
    """Just enough of a Playwright ElementHandle for the agent's lookups and clicks."""

    def __init__(self, id=None, text="", classes="", pressed=None, enabled=True, visible=True, children=None):
        self.attrs = {}
        if id:
            self.attrs["id"] = id
        if classes:
            self.attrs["class"] = classes
        if pressed is not None:
            self.attrs["aria-pressed"] = pressed
        self.text = text
        self.enabled = enabled
        self.visible = visible
        self.children = dict(children or {})
        self.events = []
        self.value = None

    async def get_attribute(self, name):
        return self.attrs.get(name)

    async def is_enabled(self):
        return self.enabled

    async def evaluate(self, script, arg=None):
        return {"display": "block" if self.visible else "none", "visibility": "visible", "opacity": "1"}

    async def bounding_box(self):
        return {"x": 0, "y": 0, "width": 120, "height": 40} if self.visible else None

    async def text_content(self):
        return self.text

    async def dispatch_event(self, type, event_init=None):
        self.events.append(type)

    async def fill(self, value):
        self.value = value
        self.events.append("fill")

    async def focus(self):
        self.events.append("focus")

    async def query_selector(self, selector):
        return self.children.get(selector)

    @property
    def clicks(self):
        return self.events.count("click")


class FakePage:
    """A scripted page: selector -> elements, evaluate script -> result."""

    def __init__(self, url="about:blank", elements=None, html="", evaluate_results=None):
        self.url = url
        self.elements = dict(elements or {})
        self.html = html
        self.evaluate_results = dict(evaluate_results or {})
        self.evaluated = []
        self.bindings = {}
        self.init_scripts = []
        self.handlers = {}
        self.closed = False
        self.reloads = 0

    async def query_selector(self, selector):
        found = self.elements.get(selector) or []
        return found[0] if found else None

    async def query_selector_all(self, selector):
        return list(self.elements.get(selector) or [])

    async def content(self):
        return self.html

    async def evaluate(self, script, arg=None):
        self.evaluated.append((script, arg))
        result = self.evaluate_results.get(script)
        return result(arg) if callable(result) else result

    async def expose_binding(self, name, callback):
        self.bindings[name] = callback

    async def add_init_script(self, script):
        self.init_scripts.append(script)

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def is_closed(self):
        return self.closed

    async def reload(self):
        self.reloads += 1

    def close(self):
        self.closed = True
        for handler in self.handlers.get("close", []):
            handler(self)


class StubContext(ScriptContext):
    """A bridge endpoint that records what it is sent."""

    def __init__(self, url, reply=None):
        self._url = url
        self.reply = reply
        self.received = []
        self.closed = False

    @property
    def url(self):
        return self._url

    def is_closed(self):
        return self.closed

    async def deliver(self, envelope):
        self.received.append(envelope)
        return self.reply


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeHttp:
    """Stands in for requests.Session; records every call."""

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = []

    def _respond(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.responses.pop(0) if self.responses else FakeResponse({})

    def get(self, url, **kwargs):
        return self._respond("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._respond("POST", url, kwargs)


def option_elements(count=4, pressed=None, labels=None, with_ids=True):
    """Option buttons as the student site renders them, plus their selector map."""
    letters = "abcde"
    labels = labels or [f"Option {letters[i].upper()}" for i in range(count)]
    buttons, containers, elements = [], [], {}
    for i in range(count):
        button = FakeElement(
            id=f"multiple-choice-{letters[i]}" if with_ids else None,
            text=labels[i],
            classes="btn",
            pressed=pressed[i] if pressed else "false",
        )
        buttons.append(button)
        containers.append(FakeElement(text=labels[i], classes="btn-container", children={"button": button}))
        if with_ids:
            elements[f"#multiple-choice-{letters[i]}"] = [button]
    elements[".btn-container button.btn"] = buttons
    elements[".btn-container"] = containers
    return buttons, elements


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return Scheduler(clock)


@pytest.fixture
def store(tmp_path):
    return ConfigStore(str(tmp_path / "agent_config.json"))


@pytest.fixture
def session(store):
    return SessionState(store)
