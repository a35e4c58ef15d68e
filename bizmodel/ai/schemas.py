"""
schemas.py — AI proxy request/response contracts (camelCase on the wire).
"""
from typing import Any, Literal, Optional

from pydantic import Field

from bizmodel.schemas import CamelModel


class ChatMessage(CamelModel):
    role: Literal["system", "user", "assistant"]
    content: str


class AIChatRequest(CamelModel):
    messages: list[ChatMessage] = Field(min_length=1)
    max_tokens: int = Field(default=1200, ge=1, le=4000)
    temperature: float = Field(default=0.7, ge=0.0, le=1.5)
    response_format: Optional[Literal["text", "json"]] = None


class AIChatResponse(CamelModel):
    content: str
    usage: Optional[dict[str, Any]] = None
    model: Optional[str] = None


class BusinessFitRequest(CamelModel):
    quiz_data: dict[str, Any]
    quiz_attempt_id: Optional[int] = None


class BusinessFitResponse(CamelModel):
    analysis: dict[str, Any]
    cached: bool = False
