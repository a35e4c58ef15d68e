"""
schemas.py — Email route contracts (camelCase on the wire).
"""
from typing import Any, Optional

from bizmodel.schemas import CamelModel


class SendQuizResultsRequest(CamelModel):
    email: str
    quiz_data: dict[str, Any]
    attempt_id: Optional[int] = None


class SendFullReportRequest(CamelModel):
    email: str
    attempt_id: int


class SendEmailResponse(CamelModel):
    success: bool
    sent: bool
    message: str
    skipped_reason: Optional[str] = None
