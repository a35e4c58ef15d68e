"""
schemas.py — Quiz submission and attempt contracts (camelCase on the wire).
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from bizmodel.schemas import CamelModel


class SaveQuizDataRequest(CamelModel):
    quiz_data: dict[str, Any]
    email: Optional[str] = None
    payment_id: Optional[int] = None


class SaveQuizDataResponse(CamelModel):
    success: bool = True
    attempt_id: int
    quiz_attempt_id: int
    storage_type: str = Field(description="'permanent' | 'temporary' | 'anonymous-db'")
    user_type: str = Field(description="'authenticated' | 'existing-paid' | 'existing' | 'temporary' | 'anonymous'")
    user_id: Optional[int] = None
    expires_at: Optional[datetime] = None
    warning: Optional[str] = None


class LinkAttemptsRequest(CamelModel):
    email: Optional[str] = None


class QuizAttemptOut(CamelModel):
    id: int
    user_id: Optional[int] = None
    quiz_data: dict[str, Any]
    is_paid: bool
    completed_at: datetime
    expires_at: Optional[datetime] = None


class AIContentSaveRequest(CamelModel):
    content_type: Optional[str] = None
    content: Any


class AIContentOut(CamelModel):
    quiz_attempt_id: int
    content_type: str
    content: Any = None
    content_hash: Optional[str] = None
    generated_at: Optional[datetime] = None
