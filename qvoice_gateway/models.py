"""Pydantic models for the generative-content API and the QVoiceTxt HTTP surface."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# Generative-content response models
class InlineData(BaseModel):
    """Binary payload returned inline, e.g. base64 PCM audio."""
    model_config = ConfigDict(populate_by_name=True)

    data: str = ""
    mime_type: str = Field(default="", alias="mimeType")


class Part(BaseModel):
    """A single content part: text or inline data."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: Optional[str] = None
    inline_data: Optional[InlineData] = Field(default=None, alias="inlineData")


class Content(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Optional[str] = None
    parts: list[Part] = Field(default_factory=list)


class Candidate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: Optional[Content] = None
    finish_reason: Optional[str] = Field(default=None, alias="finishReason")


class GenerateContentResponse(BaseModel):
    """Top-level ``generateContent`` response."""
    model_config = ConfigDict(extra="ignore")

    candidates: list[Candidate] = Field(default_factory=list)

    def first_part(self) -> Optional[Part]:
        """Return ``candidates[0].content.parts[0]`` or None."""
        if not self.candidates:
            return None
        content = self.candidates[0].content
        if content is None or not content.parts:
            return None
        return content.parts[0]


# HTTP surface models
class SubmitMessageRequest(BaseModel):
    """Request to submit one utterance to the session."""
    text: str


class RouteResultResponse(BaseModel):
    """Outcome of routing one utterance."""
    status: str
    classification: Optional[str] = None
    reply: Optional[str] = None
    token_index: Optional[int] = None
    stored: bool = True


class UtteranceOut(BaseModel):
    """A decoded utterance for display."""
    id: int
    user_id: str
    text: str
    is_tokenized: bool = False
    token_index: Optional[int] = None
    created_at: str


class MessagesResponse(BaseModel):
    object: str = "list"
    data: list[UtteranceOut]


class SessionStatusResponse(BaseModel):
    phase: str
    user_id: Optional[str] = None
    status: str
    secure: bool


class SpeechRequest(BaseModel):
    text: str


class TokenListResponse(BaseModel):
    object: str = "list"
    data: list[str]


class ErrorDetail(BaseModel):
    """Error detail for API errors."""
    message: str
    type: str = "server_error"
    code: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str
    phase: str
    scheduler: dict[str, Any] = Field(default_factory=dict)
