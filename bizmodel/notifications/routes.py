"""
Email HTTP routes.

POST /api/send-quiz-results            — results summary; paid wording when the attempt is unlocked
POST /api/send-full-report             — complete report email (402 until the attempt is unlocked)
GET  /api/email-link/{attempt_id}/{email} — the results link embedded in those emails

app.state resources (email_client, email_cooldown) are set in main.py lifespan.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.database import get_db
from bizmodel.identity.resolver import RequestContext, get_request_context
from bizmodel.identity.validator import validate_email
from bizmodel.notifications.mailer import DeliveryResult, deliver
from bizmodel.notifications.resend_client import ResendClient
from bizmodel.notifications.schemas import SendEmailResponse, SendFullReportRequest, SendQuizResultsRequest
from bizmodel.notifications.templates import full_report_email, quiz_results_email, results_link
from bizmodel.quiz.access import load_accessible_attempt, require_unlocked_report
from bizmodel.reports.pdf_generator import BUSINESS_FIT_CONTENT_TYPE

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["email"])


def _email_client(request: Request) -> Optional[ResendClient]:
    return request.app.state.email_client


def _response(result: DeliveryResult, message: str) -> SendEmailResponse:
    if not result.sent:
        message = f"Email not sent ({result.skipped_reason})"
    return SendEmailResponse(
        success=True, sent=result.sent, message=message, skipped_reason=result.skipped_reason,
    )


@router.post("/send-quiz-results", response_model=SendEmailResponse)
async def send_quiz_results(
    body: SendQuizResultsRequest,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> SendEmailResponse:
    validate_email(body.email)
    link: Optional[str] = None
    has_paid = False
    if body.attempt_id is not None:
        attempt = await load_accessible_attempt(db, ctx, body.attempt_id)
        has_paid = attempt.is_paid
        link = results_link(attempt.id, body.email)

    subject, html = quiz_results_email(body.email, body.quiz_data, link, has_paid)
    result = await deliver(db, _email_client(request), request.app.state.email_cooldown, body.email, subject, html)
    logger.info("Quiz results email attempt_id=%s sent=%s", body.attempt_id, result.sent)
    return _response(result, "Quiz results sent successfully")


@router.post("/send-full-report", response_model=SendEmailResponse)
async def send_full_report(
    body: SendFullReportRequest,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> SendEmailResponse:
    validate_email(body.email)
    attempt = await load_accessible_attempt(db, ctx, body.attempt_id)
    await require_unlocked_report(db, attempt)

    cached = await store.get_ai_content(db, attempt.id, BUSINESS_FIT_CONTENT_TYPE)
    analysis = cached.content if cached is not None and isinstance(cached.content, dict) else None
    subject, html = full_report_email(
        body.email, attempt.quiz_data, results_link(attempt.id, body.email), analysis,
    )
    result = await deliver(db, _email_client(request), request.app.state.email_cooldown, body.email, subject, html)
    logger.info("Full report email attempt_id=%s sent=%s", attempt.id, result.sent)
    return _response(result, "Full report sent successfully")


@router.get("/email-link/{attempt_id}/{email}")
async def email_link(attempt_id: int, email: str) -> dict:
    validate_email(email)
    return {"link": results_link(attempt_id, email)}
