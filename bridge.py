"""
Cross-context request/response messaging for AI answers.

requesting context (quiz page) -> BridgeRouter -> destination context (AI page)
destination context -> BridgeRouter -> every consumer page (fan-out)

Replies carry no correlation id. AIRequester therefore allows a single
outstanding request per context and drops replies nobody is waiting for.
"""
import json
import re
from fnmatch import fnmatch
from typing import Awaitable, Callable, Dict, List, Optional

from config_store import SessionState
from errors import DestinationMissing, ParseFailure, RequestInFlight
from logger import agent_logger
from models import AIRequest, Envelope, MessageType, RESPONSE_TYPES
from scheduler import Scheduler
from settings import AI_SERVICE_PATTERNS, CONSUMER_PATTERNS

POLL_TIMEOUT_TIMER = "pollTimeout"

MC_SYSTEM_PROMPT = (
    'You are answering a multiple-choice poll question. '
    'Reply ONLY with valid JSON like {"answer":"B"}, '
    'no explanation, no markdown, just the JSON object. '
    'Pick the single best letter answer.'
)

NUMERIC_SYSTEM_PROMPT = (
    'You are answering a numeric free-response question from a physics/science class. '
    'Solve the problem and reply ONLY with valid JSON like {"answer":"42.5"}; '
    'the value should be the numeric answer as a plain number string (digits and decimal point only, no units). '
    'No explanation, no markdown, just the JSON object.'
)

DEFAULT_LETTER = "A"

_JSON_ANSWER_RE = re.compile(r'\{[^}]*"answer"\s*:\s*(?:"([^"]+)"|(-?\d+(?:\.\d+)?))[^}]*\}')
_NUMBER_RE = re.compile(r'(?<![\w.])-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?')
_LETTER_RE = re.compile(r'\b([A-E])\b')


class ScriptContext:
    """One browser tab (or API endpoint) as the router sees it."""

    @property
    def url(self) -> str:
        raise NotImplementedError

    def is_closed(self) -> bool:
        return False

    async def deliver(self, envelope: Envelope) -> Optional[dict]:
        raise NotImplementedError


# --- Prompt building & answer parsing ---

def build_prompt(request: AIRequest) -> str:
    """Distinct framing for numeric and multiple-choice questions."""
    if request.type == "numeric":
        text = NUMERIC_SYSTEM_PROMPT + '\n\n'
        text += 'Question:\n' + (request.question or '') + '\n'
        if request.instruction:
            text += '\n' + request.instruction
        text += '\n\nRespond with JSON only: {"answer":"<number>"}'
        return text

    text = MC_SYSTEM_PROMPT + '\n\n'
    if request.question:
        text += 'Question: ' + request.question + '\n'
    for i, option in enumerate(request.options):
        label = "ABCDE"[i] if i < 5 else str(i + 1)
        text += f'{label}) {option}\n'
    text += '\nRespond with JSON only: {"answer":"<letter>"}'
    return text


def extract_answer(raw_text: str) -> str:
    """
    Layered heuristic over whatever the chat model produced:
    JSON with an "answer" field, then the first number, then the first
    isolated letter A-E, then the default letter.
    Always returns a JSON string {"answer": "..."}.
    """
    raw_text = raw_text or ""
    match = _JSON_ANSWER_RE.search(raw_text)
    if match:
        return json.dumps({"answer": match.group(1) or match.group(2)})
    match = _NUMBER_RE.search(raw_text)
    if match:
        return json.dumps({"answer": match.group(0)})
    match = _LETTER_RE.search(raw_text)
    if match:
        return json.dumps({"answer": match.group(1).upper()})
    return json.dumps({"answer": DEFAULT_LETTER})


def parse_ai_reply(response_text: str) -> str:
    """The answer string from a reply payload, or ParseFailure."""
    cleaned = re.sub(r"```(?:json)?", "", response_text or "").strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseFailure(f"Reply is not JSON: {cleaned[:80]!r}") from e
    if not isinstance(parsed, dict) or "answer" not in parsed:
        raise ParseFailure(f"Reply has no answer field: {cleaned[:80]!r}")
    raw = parsed["answer"]
    if isinstance(raw, list):
        raw = raw[0] if raw else ""
    answer = str(raw).strip()
    if not answer:
        raise ParseFailure("Reply answer is empty")
    return answer


# --- Router (background role) ---

class BridgeRouter:
    def __init__(
        self,
        session: SessionState,
        service_patterns: Optional[Dict[str, str]] = None,
        consumer_patterns: Optional[List[str]] = None,
        open_settings: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.session = session
        self.service_patterns = service_patterns or AI_SERVICE_PATTERNS
        self.consumer_patterns = consumer_patterns or CONSUMER_PATTERNS
        self.open_settings = open_settings
        self.contexts: List[ScriptContext] = []

    def attach(self, context: ScriptContext) -> None:
        if context not in self.contexts:
            self.contexts.append(context)

    def detach(self, context: ScriptContext) -> None:
        if context in self.contexts:
            self.contexts.remove(context)

    def contexts_matching(self, patterns: List[str]) -> List[ScriptContext]:
        return [
            ctx for ctx in self.contexts
            if not ctx.is_closed() and any(fnmatch(ctx.url or "", p) for p in patterns)
        ]

    def destination_pattern(self) -> str:
        model = self.session.config.selected_model or "chatgpt"
        return self.service_patterns.get(model, self.service_patterns["chatgpt"])

    async def send(self, envelope: Envelope, sender: Optional[ScriptContext] = None) -> dict:
        if envelope.type == MessageType.OPEN_SETTINGS:
            if self.open_settings is not None:
                await self.open_settings()
            return {"success": True}

        if envelope.type == MessageType.SEND_QUESTION_TO_AI:
            return await self._route_question(envelope, sender)

        if envelope.type in RESPONSE_TYPES:
            delivered = await self._fan_out(envelope)
            return {"success": True, "delivered": delivered}

        agent_logger.warning(f"Router ignoring message of type {envelope.type.value}")
        return {"success": False}

    def destination(self) -> ScriptContext:
        """First attached context of the selected AI service."""
        model = self.session.config.selected_model
        destinations = self.contexts_matching([self.destination_pattern()])
        if not destinations:
            raise DestinationMissing(f"No {model} tab found. Open it to use AI answering.")
        return destinations[0]

    async def _route_question(self, envelope: Envelope, sender: Optional[ScriptContext]) -> dict:
        model = self.session.config.selected_model
        try:
            destination = self.destination()
        except DestinationMissing as e:
            reason = str(e)
            agent_logger.warning(f"🔀 {reason}")
            if sender is not None:
                await sender.deliver(Envelope(type=MessageType.AI_FALLBACK, reason=reason))
            return {"success": False}
        agent_logger.info(f"🔀 Forwarding question to {model} at {destination.url}")
        reply = await destination.deliver(Envelope(type=MessageType.RECEIVE_QUESTION, question=envelope.question))
        return reply or {"success": True}

    async def _fan_out(self, envelope: Envelope) -> int:
        message = Envelope(type=MessageType.PROCESS_AI_RESPONSE, response=envelope.response)
        consumers = self.contexts_matching(self.consumer_patterns)
        for ctx in consumers:
            try:
                await ctx.deliver(message)
            except Exception as e:
                agent_logger.error(f"Delivering AI reply to {ctx.url} failed: {e}", exc_info=True)
        return len(consumers)


# --- Requester (quiz page role) ---

class AIRequester:
    """
    Sends questions on behalf of one context. At most one request may be in
    flight; a pollTimeout timer abandons it if no reply or fallback arrives.
    """

    def __init__(
        self,
        router: BridgeRouter,
        context: ScriptContext,
        scheduler: Scheduler,
        timeout: float = 65.0,
        on_timeout: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.router = router
        self.context = context
        self.scheduler = scheduler
        self.timeout = timeout
        self.on_timeout = on_timeout
        self.in_flight = False

    async def request(self, request: AIRequest) -> dict:
        if self.in_flight:
            raise RequestInFlight("An AI request is already outstanding")
        self.in_flight = True
        self.scheduler.start(POLL_TIMEOUT_TIMER, self.timeout, self._timed_out)
        agent_logger.info(f"🤖 Sending {request.type} question to AI")
        try:
            return await self.router.send(
                Envelope(type=MessageType.SEND_QUESTION_TO_AI, question=request),
                sender=self.context,
            )
        except Exception:
            self.settle()
            raise

    def settle(self) -> bool:
        """Mark the outstanding request answered. False if none was outstanding."""
        was_in_flight = self.in_flight
        self.in_flight = False
        self.scheduler.cancel(POLL_TIMEOUT_TIMER)
        return was_in_flight

    async def _timed_out(self) -> None:
        if not self.in_flight:
            return
        self.in_flight = False
        agent_logger.warning(f"⏱️  No AI reply within {self.timeout:.0f}s, giving up on this request")
        if self.on_timeout is not None:
            await self.on_timeout()
