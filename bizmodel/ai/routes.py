"""
AI proxy HTTP routes.

POST /api/ai-chat                           — rate limited chat completion
POST /api/ai-business-fit-analysis          — rate limited; cached per attempt as 'business-fit-analysis'
POST /api/clear-business-model-ai-content   — drop 'model_' entries across the caller's attempts
GET  /api/ai-status                         — is the AI service configured?

app.state resources (mistral, ai_semaphore, rate_limiter) are set in main.py lifespan.
"""
import asyncio
import logging
import math

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.ai.llm_service import generate_business_fit_analysis, generate_completion
from bizmodel.ai.rate_limiter import RateLimiter, rate_limit_identifier
from bizmodel.ai.schemas import AIChatRequest, AIChatResponse, BusinessFitRequest, BusinessFitResponse
from bizmodel.config import settings
from bizmodel.database import get_db
from bizmodel.errors import RateLimited
from bizmodel.identity.resolver import RequestContext, get_request_context, require_user_id
from bizmodel.payments.orchestrator import BUSINESS_MODEL_CONTENT_PREFIX
from bizmodel.quiz.access import load_accessible_attempt

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["ai"])

BUSINESS_FIT_CONTENT_TYPE = "business-fit-analysis"


def _enforce_rate_limit(request: Request, ctx: RequestContext) -> None:
    limiter: RateLimiter = request.app.state.rate_limiter
    decision = limiter.check(rate_limit_identifier(ctx.resolved_user_id, ctx.session_key))
    if not decision.allowed:
        raise RateLimited(
            "Too many AI requests. Please wait before trying again.",
            extra={"retryAfter": math.ceil(decision.retry_after)},
        )


def _mistral(request: Request):
    client = request.app.state.mistral
    if client is None:
        raise HTTPException(status_code=503, detail="AI service is not configured")
    return client


@router.post("/ai-chat", response_model=AIChatResponse)
async def ai_chat(
    body: AIChatRequest,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
) -> AIChatResponse:
    _enforce_rate_limit(request, ctx)
    client = _mistral(request)
    semaphore: asyncio.Semaphore = request.app.state.ai_semaphore
    result = await generate_completion(
        client,
        [m.model_dump() for m in body.messages],
        semaphore,
        max_tokens=body.max_tokens,
        temperature=body.temperature,
        json_mode=body.response_format == "json",
    )
    return AIChatResponse(**result)


@router.post("/ai-business-fit-analysis", response_model=BusinessFitResponse)
async def ai_business_fit_analysis(
    body: BusinessFitRequest,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> BusinessFitResponse:
    _enforce_rate_limit(request, ctx)

    # ── 1. Cached analysis for this attempt ─────────────────────────────
    if body.quiz_attempt_id is not None:
        await load_accessible_attempt(db, ctx, body.quiz_attempt_id)
        cached = await store.get_ai_content(db, body.quiz_attempt_id, BUSINESS_FIT_CONTENT_TYPE)
        if cached is not None:
            logger.info("Business fit cache hit attempt_id=%s", body.quiz_attempt_id)
            return BusinessFitResponse(analysis=cached.content, cached=True)

    # ── 2. Generate ─────────────────────────────────────────────────────
    client = _mistral(request)
    analysis = await generate_business_fit_analysis(
        client, body.quiz_data, request.app.state.ai_semaphore,
    )

    # ── 3. Cache (last write wins) ──────────────────────────────────────
    if body.quiz_attempt_id is not None:
        await store.save_ai_content(db, body.quiz_attempt_id, BUSINESS_FIT_CONTENT_TYPE, analysis)
    return BusinessFitResponse(analysis=analysis, cached=False)


@router.post("/clear-business-model-ai-content")
async def clear_business_model_ai_content(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user_id = require_user_id(ctx, "Authentication required")
    attempt_ids = [a.id for a in await store.list_quiz_attempts_for_user(db, user_id)]
    cleared = await store.clear_ai_content_by_prefix(db, attempt_ids, BUSINESS_MODEL_CONTENT_PREFIX)
    logger.info("Cleared business model AI content user_id=%s entries=%d", user_id, cleared)
    return {"success": True, "cleared": cleared}


@router.get("/ai-status")
async def ai_status(request: Request) -> dict:
    configured = getattr(request.app.state, "mistral", None) is not None
    return {
        "configured": configured,
        "model": settings.ai_model if configured else None,
    }
