"""
Quiz HTTP routes.

POST /api/save-quiz-data                         — tiered storage (see tiering.py)
POST /api/link-quiz-attempts                     — claim anonymous / stale temporary attempts
GET  /api/check-existing-attempts/{email}        — does this email already have data?
GET  /api/quiz-attempts                          — current user's attempts
GET  /api/quiz-attempts/{attempt_id}             — one attempt (access rules in access.py)
GET  /api/quiz-attempts/attempt/{id}/ai-content  — cached AI content (pure read)
POST /api/quiz-attempts/attempt/{id}/ai-content  — store AI content (last write wins)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.database import get_db
from bizmodel.errors import AuthenticationRequired, ValidationError
from bizmodel.identity.lifecycle import claim_anonymous_attempts, claim_attempts_by_email
from bizmodel.identity.resolver import RequestContext, get_request_context, require_user_id
from bizmodel.identity.validator import validate_email
from bizmodel.quiz.access import load_accessible_attempt
from bizmodel.quiz.schemas import (
    AIContentOut,
    AIContentSaveRequest,
    LinkAttemptsRequest,
    QuizAttemptOut,
    SaveQuizDataRequest,
    SaveQuizDataResponse,
)
from bizmodel.quiz.tiering import save_quiz_submission

router = APIRouter(prefix="/api", tags=["quiz"])
logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "results-preview"


@router.post("/save-quiz-data", response_model=SaveQuizDataResponse)
async def save_quiz_data(
    body: SaveQuizDataRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> SaveQuizDataResponse:
    if not body.quiz_data:
        raise ValidationError("Quiz data is required")
    result = await save_quiz_submission(
        db, ctx, body.quiz_data, email=body.email, payment_id=body.payment_id,
    )
    logger.info(
        "Quiz data saved attempt_id=%s storage_type=%s", result.attempt_id, result.storage_type,
    )
    return result


@router.post("/link-quiz-attempts")
async def link_quiz_attempts(
    body: LinkAttemptsRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user_id = require_user_id(ctx, "Authentication required")
    user = await store.get_user(db, user_id)
    if user is None:
        raise AuthenticationRequired("User not found")

    linked = await claim_anonymous_attempts(db, user, ctx.session_key)
    if body.email:
        validate_email(body.email)
        linked += await claim_attempts_by_email(db, user, body.email)
    return {"success": True, "linkedCount": linked}


@router.get("/check-existing-attempts/{email}")
async def check_existing_attempts(
    email: str,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Counts and flags only — never returns quiz data."""
    validate_email(email)
    user = await store.get_user_by_email(db, email)
    if user is None:
        return {"hasAccount": False, "hasAttempts": False, "attemptsCount": 0, "isTemporary": False}
    count = await store.count_quiz_attempts_for_user(db, user.id)
    return {
        "hasAccount": not user.is_temporary,
        "hasAttempts": count > 0,
        "attemptsCount": count,
        "isTemporary": user.is_temporary,
    }


@router.get("/quiz-attempts", response_model=list[QuizAttemptOut])
async def list_quiz_attempts(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> list[QuizAttemptOut]:
    user_id = require_user_id(ctx, "Authentication required")
    attempts = await store.list_quiz_attempts_for_user(db, user_id)
    return [QuizAttemptOut.model_validate(a) for a in attempts]


@router.get("/quiz-attempts/{attempt_id}", response_model=QuizAttemptOut)
async def get_quiz_attempt(
    attempt_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> QuizAttemptOut:
    attempt = await load_accessible_attempt(db, ctx, attempt_id)
    return QuizAttemptOut.model_validate(attempt)


@router.get("/quiz-attempts/attempt/{attempt_id}/ai-content", response_model=AIContentOut)
async def get_attempt_ai_content(
    attempt_id: int,
    content_type: str = Query(default=DEFAULT_CONTENT_TYPE, alias="contentType"),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> AIContentOut:
    await load_accessible_attempt(db, ctx, attempt_id)
    entry = await store.get_ai_content(db, attempt_id, content_type)
    if entry is None:
        return AIContentOut(quiz_attempt_id=attempt_id, content_type=content_type, content=None)
    return AIContentOut.model_validate(entry)


@router.post("/quiz-attempts/attempt/{attempt_id}/ai-content", response_model=AIContentOut)
async def save_attempt_ai_content(
    attempt_id: int,
    body: AIContentSaveRequest,
    content_type: Optional[str] = Query(default=None, alias="contentType"),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> AIContentOut:
    await load_accessible_attempt(db, ctx, attempt_id)
    if body.content is None:
        raise ValidationError("Content is required")
    resolved_type = body.content_type or content_type or DEFAULT_CONTENT_TYPE
    entry = await store.save_ai_content(db, attempt_id, resolved_type, body.content)
    return AIContentOut.model_validate(entry)
