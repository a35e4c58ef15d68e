"""
access.py — Who may read or write a quiz attempt.

  authenticated caller    → must own the attempt (403 otherwise); their own
                            still-anonymous attempt (same session key) is allowed
  unauthenticated caller  → allowed only while the owner is a TEMPORARY user
                            (the email-only flow has no session), 401 otherwise
  ownerless attempt       → only the session key that created it

require_unlocked_report() gates the paid report (PDF export, full-report email).
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.errors import AuthenticationRequired, AuthorizationDenied, NotFound, PaymentRequired
from bizmodel.identity.resolver import RequestContext
from bizmodel.models.quiz_attempt import QuizAttemptORM

logger = logging.getLogger(__name__)


async def load_accessible_attempt(
    db: AsyncSession, ctx: RequestContext, attempt_id: int
) -> QuizAttemptORM:
    attempt = await store.get_quiz_attempt(db, attempt_id)
    if attempt is None:
        raise NotFound("Quiz attempt not found")

    if attempt.user_id is None:
        if attempt.session_id is not None and attempt.session_id == ctx.session_key:
            return attempt
        if ctx.is_authenticated:
            raise AuthorizationDenied("Access denied")
        raise AuthenticationRequired("Authentication required")

    if ctx.is_authenticated:
        if attempt.user_id != ctx.resolved_user_id:
            logger.info(
                "Attempt access denied attempt_id=%s user_id=%s", attempt_id, ctx.resolved_user_id,
            )
            raise AuthorizationDenied("Access denied")
        return attempt

    owner = await store.get_user(db, attempt.user_id)
    if owner is not None and owner.is_temporary:
        return attempt
    raise AuthenticationRequired("Authentication required")


async def require_unlocked_report(db: AsyncSession, attempt: QuizAttemptORM) -> None:
    """402 with suggestion 'unlock_report' until the attempt's report is paid for."""
    unlocked = attempt.user_id is not None and (
        attempt.is_paid or await store.has_completed_unlock(db, attempt.user_id, attempt.id)
    )
    if not unlocked:
        raise PaymentRequired(
            "Payment required",
            extra={"suggestion": "unlock_report", "quizAttemptId": attempt.id},
        )
