"""
Report HTTP routes.

POST /api/generate-pdf  — full report for an unlocked attempt (402 until paid)
"""
import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.database import get_db
from bizmodel.errors import NotFound
from bizmodel.identity.resolver import RequestContext, get_request_context, require_user_id
from bizmodel.payments.orchestrator import parse_attempt_id
from bizmodel.quiz.access import load_accessible_attempt, require_unlocked_report
from bizmodel.reports.pdf_generator import generate_business_report
from bizmodel.schemas import CamelModel

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["reports"])


class GeneratePdfRequest(CamelModel):
    quiz_attempt_id: Optional[Union[int, str]] = None


@router.post("/generate-pdf")
async def generate_pdf(
    body: GeneratePdfRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    require_user_id(ctx, "Authentication required")
    attempt_id = parse_attempt_id(body.quiz_attempt_id)
    attempt = await load_accessible_attempt(db, ctx, attempt_id)
    await require_unlocked_report(db, attempt)

    user = await store.get_user(db, attempt.user_id)
    if user is None:
        raise NotFound("User not found")
    entries = await store.list_ai_content(db, attempt.id)

    buffer = generate_business_report(user, attempt, entries)
    filename = f"bizmodelai_report_{attempt.id}.pdf"
    logger.info("PDF exported attempt_id=%s user_id=%s", attempt.id, user.id)
    return StreamingResponse(
        buffer,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
