import os
import json
import asyncio
# One Client serves both sync and async calls; the agent only uses its .aio side
from google.genai import Client as genai_Client
from google.genai import types
from google.genai.errors import ServerError
from typing import Optional
from bridge import BridgeRouter, ScriptContext, build_prompt
from logger import agent_logger
from models import AIRequest, AnswerModel, Envelope, MessageType
from scheduler import Scheduler
from dotenv import load_dotenv

# USE_MOCK_LLM may come from .env
load_dotenv()
USE_MOCK_LLM = os.getenv("USE_MOCK_LLM", "false").lower() == "true"

# --- Gemini client (async accessor) ---

if USE_MOCK_LLM:
    agent_logger.warning("⚠️  MOCK LLM MODE ENABLED - No real API calls will be made")
    LLM_CLIENT = None  # Will use mock instead
else:
    try:
        # Reads GEMINI_API_KEY / GOOGLE_API_KEY from the environment
        LLM_CLIENT = genai_Client().aio
        agent_logger.info("✅ Real Gemini LLM client initialized")
    except Exception as e:
        agent_logger.error(f"Failed to initialize Gemini Client: {e}")
        LLM_CLIENT = None

SYSTEM_PROMPT = (
    "You answer live classroom poll questions. "
    "Return only the answer field: one option letter for multiple choice, "
    "or a plain number for numeric questions."
)

MAX_RETRIES = 4
RETRY_DELAYS = [2, 4, 8, 16]


async def get_structured_answer(request: AIRequest, model_name: str = "gemini-2.5-flash") -> AnswerModel:
    """
    Asks Gemini for an answer that conforms to AnswerModel.

    If USE_MOCK_LLM=true in .env (or no client could be built), uses the mock
    implementation instead.
    """
    if USE_MOCK_LLM or not LLM_CLIENT:
        from llm_service_mock import get_structured_answer_mock
        return await get_structured_answer_mock(request)

    prompt = build_prompt(request)
    response = None
    for attempt in range(MAX_RETRIES):
        try:
            agent_logger.info(f"🔄 LLM API attempt {attempt + 1}/{MAX_RETRIES} ({model_name})")
            response = await LLM_CLIENT.models.generate_content(
                model=model_name,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=SYSTEM_PROMPT,
                    response_mime_type="application/json",
                    response_schema=AnswerModel,
                    temperature=0.1,
                ),
            )
            break
        except ServerError as e:
            if '503' in str(e) or 'overloaded' in str(e).lower():
                agent_logger.warning(f"⚠️  Model overloaded (attempt {attempt + 1}/{MAX_RETRIES})")
                if attempt == MAX_RETRIES - 1:
                    raise ValueError(f"LLM service unavailable after {MAX_RETRIES} attempts")
                await asyncio.sleep(RETRY_DELAYS[attempt])
            else:
                agent_logger.error(f"❌ LLM API error (non-retryable): {e}")
                raise

    if response is None:
        raise ValueError("LLM failed to generate response after all retries")

    if response.parsed:
        return response.parsed
    # Structured output missing: the raw text should still be the JSON object
    return AnswerModel.model_validate_json(response.text or "{}")


class GenAIDestination(ScriptContext):
    """
    The "gemini-api" AI service: answers receiveQuestion through the Gemini API
    instead of a chat tab. Replies with the same tag the Gemini tab uses.
    """

    def __init__(self, router: BridgeRouter, scheduler: Scheduler, model_name: str = "gemini-2.5-flash"):
        self.router = router
        self.scheduler = scheduler
        self.model_name = model_name

    @property
    def url(self) -> str:
        return f"genai://{self.model_name}"

    async def deliver(self, envelope: Envelope) -> Optional[dict]:
        if envelope.type != MessageType.RECEIVE_QUESTION or envelope.question is None:
            return None
        self.scheduler.spawn(self.answer(envelope.question), name="genai")
        return {"success": True}

    async def answer(self, request: AIRequest) -> None:
        try:
            result = await get_structured_answer(request, self.model_name)
            payload = json.dumps({"answer": str(result.answer).strip()})
            agent_logger.info(f"🤖 Gemini API answered: {payload}")
        except Exception as e:
            # An empty reply makes the quiz page fall back to direct selection
            agent_logger.error(f"❌ Gemini API request failed: {e}", exc_info=True)
            payload = ""
        await self.router.send(Envelope(type=MessageType.GEMINI_RESPONSE, response=payload), sender=self)
