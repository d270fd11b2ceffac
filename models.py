from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

# --- Page Events (ChangeObserver -> QuestionDetector) ---

class PageEvent(BaseModel):
    """
    One serialized mutation record reported by the injected observer script.
    node_id is the stable reference the script assigns to each element it reports.
    """
    kind: Literal["nodeAdded", "attributeChanged"]
    timestamp: float
    node_id: str
    attribute_name: Optional[str] = None
    # Detector container selectors the added node itself matches
    markers: List[str] = Field(default_factory=list)


QuestionType = Literal["multiple_choice", "numeric"]


class QuestionSnapshot(BaseModel):
    """Built once the question container has settled, discarded after dispatch."""
    option_fingerprint: str = ""
    question_text: str
    options: List[str] = Field(default_factory=list)
    type: QuestionType = "multiple_choice"
    image_url: Optional[str] = None


# --- AI Bridge Payloads ---

class AIRequest(BaseModel):
    """Question payload sent from the quiz page to the destination context."""
    type: QuestionType
    question: str
    options: List[str] = Field(default_factory=list)
    instruction: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot: QuestionSnapshot) -> "AIRequest":
        instruction = None
        if snapshot.type == "numeric":
            instruction = (
                'This is a numeric free-response question. Reply ONLY with valid JSON like '
                '{"answer":"42.5"} where the value is the numeric answer as a string. '
                'No units unless part of the number, no explanation.'
            )
        return cls(
            type=snapshot.type,
            question=snapshot.question_text or "Select the best answer.",
            options=snapshot.options,
            instruction=instruction,
        )


class AnswerModel(BaseModel):
    """
    The structured output model an API-backed destination must adhere to.
    """
    answer: str = Field(
        description="A single option letter (A-E) for multiple choice, or a plain number string (digits and decimal point only) for numeric questions."
    )


class MessageType(str, Enum):
    OPEN_SETTINGS = "openSettings"
    SEND_QUESTION_TO_AI = "sendQuestionToAI"
    RECEIVE_QUESTION = "receiveQuestion"
    CHATGPT_RESPONSE = "chatGPTResponse"
    GEMINI_RESPONSE = "geminiResponse"
    DEEPSEEK_RESPONSE = "deepseekResponse"
    PROCESS_AI_RESPONSE = "processAIResponse"
    AI_FALLBACK = "aiFallback"


RESPONSE_TYPES = (
    MessageType.CHATGPT_RESPONSE,
    MessageType.GEMINI_RESPONSE,
    MessageType.DEEPSEEK_RESPONSE,
)


class Envelope(BaseModel):
    """Typed cross-context message, identified by its string tag."""
    type: MessageType
    question: Optional[AIRequest] = None
    response: Optional[str] = None
    reason: Optional[str] = None


# --- Session Configuration (persisted toggles) ---

class SessionConfig(BaseModel):
    """
    Process-wide toggles. Field aliases are the key names used in the
    key-value store so a stored dict validates directly.
    """
    running: bool = Field(default=False, alias="status")
    random: bool = False
    auto_join: bool = Field(default=False, alias="autoJoin")
    notify: bool = False
    email: Optional[EmailStr] = None
    use_ai: bool = Field(default=False, alias="useAI")
    selected_model: str = Field(default="chatgpt", alias="aiModel")
    prev_page: Optional[Literal["poll", "courses"]] = Field(default=None, alias="prevPage")

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    @field_validator("running", mode="before")
    @classmethod
    def _status_to_running(cls, value):
        # The store keeps "started" / "stopped" strings, not booleans
        if isinstance(value, str):
            return value == "started"
        return bool(value) if value is not None else False

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("selected_model", mode="before")
    @classmethod
    def _default_model(cls, value):
        return value or "chatgpt"


# --- Control Panel Schemas ---

class ToggleRequest(BaseModel):
    email: Optional[EmailStr] = None


class ModelSelection(BaseModel):
    model: Literal["chatgpt", "gemini", "deepseek", "gemini-api"]
