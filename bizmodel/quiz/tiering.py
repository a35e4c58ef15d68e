"""
tiering.py — Storage tier decision for a quiz submission.

Decided once per submission from the caller's identity at that moment:

  1. Authenticated (resolved user id)   → linked to the user, expiry by the user's tier
  2. Paid guest (completed paymentId)   → linked to the payment's owner
  3. Email provided, not authenticated  → temporary user created/reused, now + 90 days
  4. Fully anonymous                    → user_id NULL, session_id = session key, now + 24 hours

Paths 1 to 3 also claim the caller's earlier anonymous attempts, which moves
them onto the user's retention tier.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.identity.lifecycle import claim_anonymous_attempts, create_temporary_user
from bizmodel.identity.resolver import RequestContext
from bizmodel.identity.validator import validate_email
from bizmodel.models.payment import PAYMENT_COMPLETED
from bizmodel.models.user import UserORM
from bizmodel.quiz.retention import expiration_for, storage_type_for
from bizmodel.quiz.schemas import SaveQuizDataResponse

logger = logging.getLogger(__name__)

ANONYMOUS_WARNING = (
    "Your results are stored for 24 hours. "
    "Provide your email to keep them for 90 days, or unlock the full report to keep them permanently."
)


def _user_type(user: UserORM, authenticated: bool) -> str:
    if authenticated:
        return "authenticated"
    if user.is_temporary:
        return "temporary"
    return "existing-paid" if user.is_paid else "existing"


async def _owner_from_payment(
    db: AsyncSession, payment_id: Optional[int], ctx: RequestContext
) -> Optional[UserORM]:
    if payment_id is None:
        return None
    payment = await store.get_payment(db, payment_id)
    if payment is None or payment.status != PAYMENT_COMPLETED:
        return None
    if ctx.resolved_user_id is not None and payment.user_id != ctx.resolved_user_id:
        return None
    return await store.get_user(db, payment.user_id)


async def _save_for_user(
    db: AsyncSession,
    ctx: RequestContext,
    user: UserORM,
    quiz_data: dict[str, Any],
    now: datetime,
    authenticated: bool,
) -> SaveQuizDataResponse:
    await claim_anonymous_attempts(db, user, ctx.session_key)
    attempt = await store.create_quiz_attempt(
        db,
        quiz_data,
        user_id=user.id,
        completed_at=now,
        expires_at=expiration_for(user, now),
    )
    return SaveQuizDataResponse(
        attempt_id=attempt.id,
        quiz_attempt_id=attempt.id,
        storage_type=storage_type_for(user),
        user_type=_user_type(user, authenticated),
        user_id=user.id,
        expires_at=attempt.expires_at,
    )


async def save_quiz_submission(
    db: AsyncSession,
    ctx: RequestContext,
    quiz_data: dict[str, Any],
    email: Optional[str] = None,
    payment_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SaveQuizDataResponse:
    now = now or datetime.now(timezone.utc)

    # ── 1. Authenticated ────────────────────────────────────────────────
    if ctx.resolved_user_id is not None:
        user = await store.get_user(db, ctx.resolved_user_id)
        if user is not None:
            return await _save_for_user(db, ctx, user, quiz_data, now, authenticated=True)
        logger.info("Resolved user_id=%s no longer exists — treating as guest", ctx.resolved_user_id)

    # ── 2. Paid guest ───────────────────────────────────────────────────
    payer = await _owner_from_payment(db, payment_id, ctx)
    if payer is not None:
        return await _save_for_user(db, ctx, payer, quiz_data, now, authenticated=False)

    # ── 3. Email provided ───────────────────────────────────────────────
    if email:
        validate_email(email)
        user = await create_temporary_user(db, ctx.session_key, email, now=now)
        return await _save_for_user(db, ctx, user, quiz_data, now, authenticated=False)

    # ── 4. Fully anonymous ──────────────────────────────────────────────
    attempt = await store.create_quiz_attempt(
        db,
        quiz_data,
        session_id=ctx.session_key,
        completed_at=now,
        expires_at=expiration_for(None, now),
    )
    return SaveQuizDataResponse(
        attempt_id=attempt.id,
        quiz_attempt_id=attempt.id,
        storage_type=storage_type_for(None),
        user_type="anonymous",
        expires_at=attempt.expires_at,
        warning=ANONYMOUS_WARNING,
    )
