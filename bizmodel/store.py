"""
store.py — Data access facade for BizModelAI.

Provides a consistent, high-level API for persisting and retrieving users,
quiz attempts, payments, refunds and cached AI content.
Routes and services use these functions — none of them build queries themselves.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - No raw SQL: ORM-only queries
  - Logs only ids — never emails, passwords, quiz answers or AI payloads
  - Uses flush() (not commit()) — the get_db() dependency or the caller commits
  - Returns ORM rows; routes serialize them through the pydantic schemas
"""
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel.models.ai_content import AIContentORM
from bizmodel.models.payment import (
    COMPLETABLE_STATUSES,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    REPORT_UNLOCK,
    PaymentORM,
)
from bizmodel.models.quiz_attempt import QuizAttemptORM
from bizmodel.models.refund import REFUND_SUCCEEDED, RefundORM
from bizmodel.models.user import UserORM

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# User operations
# ---------------------------------------------------------------------------

async def get_user(db: AsyncSession, user_id: int) -> Optional[UserORM]:
    """Return the user or None (caller decides 401 vs 404)."""
    return await db.get(UserORM, user_id)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[UserORM]:
    result = await db.execute(
        select(UserORM).where(UserORM.email == normalize_email(email))
    )
    return result.scalar_one_or_none()


async def insert_user(db: AsyncSession, email: str, **fields: Any) -> UserORM:
    """
    Insert a user row and flush so the id is populated.
    Raises sqlalchemy.exc.IntegrityError on a duplicate email — callers that
    can race (identity/lifecycle.py) wrap this in a SAVEPOINT.
    """
    orm = UserORM(email=normalize_email(email), **fields)
    db.add(orm)
    await db.flush()
    logger.info("Inserted user user_id=%s is_temporary=%s", orm.id, orm.is_temporary)
    return orm


async def delete_user(db: AsyncSession, user: UserORM) -> None:
    """Delete a user; attempts, payments and AI content cascade at the database."""
    user_id = user.id
    await db.delete(user)
    await db.flush()
    logger.info("Deleted user user_id=%s", user_id)


# ---------------------------------------------------------------------------
# Quiz attempt operations
# ---------------------------------------------------------------------------

async def create_quiz_attempt(
    db: AsyncSession,
    quiz_data: dict,
    *,
    user_id: Optional[int] = None,
    session_id: Optional[str] = None,
    completed_at: Optional[datetime] = None,
    expires_at: Optional[datetime] = None,
) -> QuizAttemptORM:
    orm = QuizAttemptORM(
        user_id=user_id,
        session_id=session_id if user_id is None else None,
        quiz_data=quiz_data,
        completed_at=completed_at or datetime.now(timezone.utc),
        expires_at=expires_at,
    )
    db.add(orm)
    await db.flush()
    logger.info(
        "Saved quiz attempt attempt_id=%s user_id=%s anonymous=%s",
        orm.id, user_id, user_id is None,
    )
    return orm


async def get_quiz_attempt(db: AsyncSession, attempt_id: int) -> Optional[QuizAttemptORM]:
    return await db.get(QuizAttemptORM, attempt_id)


async def list_quiz_attempts_for_user(
    db: AsyncSession, user_id: int
) -> list[QuizAttemptORM]:
    """Most recent first."""
    result = await db.execute(
        select(QuizAttemptORM)
        .where(QuizAttemptORM.user_id == user_id)
        .order_by(QuizAttemptORM.completed_at.desc(), QuizAttemptORM.id.desc())
    )
    return list(result.scalars().all())


async def get_latest_quiz_attempt(
    db: AsyncSession, user_id: int
) -> Optional[QuizAttemptORM]:
    result = await db.execute(
        select(QuizAttemptORM)
        .where(QuizAttemptORM.user_id == user_id)
        .order_by(QuizAttemptORM.completed_at.desc(), QuizAttemptORM.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_unclaimed_attempts(
    db: AsyncSession, session_key: str
) -> list[QuizAttemptORM]:
    """Anonymous attempts created under this session key and not yet claimed."""
    result = await db.execute(
        select(QuizAttemptORM).where(
            QuizAttemptORM.user_id.is_(None),
            QuizAttemptORM.session_id == session_key,
        )
    )
    return list(result.scalars().all())


async def count_quiz_attempts_for_user(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(func.count(QuizAttemptORM.id)).where(QuizAttemptORM.user_id == user_id)
    )
    return int(result.scalar_one())


async def clear_user_attempt_expiry(db: AsyncSession, user_id: int) -> None:
    """Permanent owners keep their attempts forever."""
    await db.execute(
        update(QuizAttemptORM)
        .where(QuizAttemptORM.user_id == user_id)
        .values(expires_at=None)
    )
    logger.info("Cleared attempt expiry user_id=%s", user_id)


# ---------------------------------------------------------------------------
# Payment operations
# ---------------------------------------------------------------------------

async def create_payment(
    db: AsyncSession,
    *,
    user_id: int,
    quiz_attempt_id: int,
    amount_cents: int,
    currency: str = "usd",
    payment_type: str = REPORT_UNLOCK,
    status: str = PAYMENT_PENDING,
    stripe_payment_intent_id: Optional[str] = None,
    paypal_order_id: Optional[str] = None,
) -> PaymentORM:
    orm = PaymentORM(
        user_id=user_id,
        quiz_attempt_id=quiz_attempt_id,
        amount_cents=amount_cents,
        currency=currency,
        type=payment_type,
        status=status,
        stripe_payment_intent_id=stripe_payment_intent_id,
        paypal_order_id=paypal_order_id,
    )
    db.add(orm)
    await db.flush()
    logger.info(
        "Saved payment payment_id=%s user_id=%s attempt_id=%s amount_cents=%d status=%s",
        orm.id, user_id, quiz_attempt_id, amount_cents, status,
    )
    return orm


async def get_payment(db: AsyncSession, payment_id: int) -> Optional[PaymentORM]:
    return await db.get(PaymentORM, payment_id)


async def get_payment_by_stripe_intent(
    db: AsyncSession, payment_intent_id: str
) -> Optional[PaymentORM]:
    result = await db.execute(
        select(PaymentORM).where(PaymentORM.stripe_payment_intent_id == payment_intent_id)
    )
    return result.scalar_one_or_none()


async def get_payment_by_paypal_order(
    db: AsyncSession, order_id: str
) -> Optional[PaymentORM]:
    result = await db.execute(
        select(PaymentORM).where(PaymentORM.paypal_order_id == order_id)
    )
    return result.scalar_one_or_none()


async def has_completed_unlock(
    db: AsyncSession, user_id: int, quiz_attempt_id: int
) -> bool:
    """True when (user, attempt) already has a completed report_unlock payment."""
    result = await db.execute(
        select(PaymentORM.id).where(
            PaymentORM.user_id == user_id,
            PaymentORM.quiz_attempt_id == quiz_attempt_id,
            PaymentORM.type == REPORT_UNLOCK,
            PaymentORM.status == PAYMENT_COMPLETED,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def mark_payment_completed(
    db: AsyncSession, payment_id: int, now: Optional[datetime] = None
) -> bool:
    """
    Conditional transition to 'completed'.

    UPDATE payments SET status='completed' WHERE id=? AND status IN ('pending', 'failed')
    Completed and refunded rows are terminal and never match.
    Returns True only for the caller that actually performed the transition,
    so concurrent webhook deliveries cannot both run the unlock side effects.
    """
    result = await db.execute(
        update(PaymentORM)
        .where(PaymentORM.id == payment_id, PaymentORM.status.in_(COMPLETABLE_STATUSES))
        .values(status=PAYMENT_COMPLETED, completed_at=now or datetime.now(timezone.utc))
    )
    transitioned = result.rowcount == 1
    logger.info("Payment completion payment_id=%s transitioned=%s", payment_id, transitioned)
    return transitioned


async def mark_payment_failed(db: AsyncSession, payment_id: int) -> bool:
    """Only pending payments can fail."""
    result = await db.execute(
        update(PaymentORM)
        .where(PaymentORM.id == payment_id, PaymentORM.status == PAYMENT_PENDING)
        .values(status=PAYMENT_FAILED)
    )
    transitioned = result.rowcount == 1
    logger.info("Payment failure payment_id=%s transitioned=%s", payment_id, transitioned)
    return transitioned


async def list_payments(db: AsyncSession, limit: int = 100) -> list[PaymentORM]:
    result = await db.execute(
        select(PaymentORM).order_by(PaymentORM.created_at.desc(), PaymentORM.id.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def list_payments_for_user(db: AsyncSession, user_id: int) -> list[PaymentORM]:
    result = await db.execute(
        select(PaymentORM).where(PaymentORM.user_id == user_id).order_by(PaymentORM.id)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Refund operations
# ---------------------------------------------------------------------------

async def create_refund(
    db: AsyncSession,
    *,
    payment_id: int,
    amount_cents: int,
    currency: str,
    reason: str,
    admin_note: Optional[str] = None,
) -> RefundORM:
    orm = RefundORM(
        payment_id=payment_id,
        amount_cents=amount_cents,
        currency=currency,
        reason=reason,
        admin_note=admin_note,
    )
    db.add(orm)
    await db.flush()
    logger.info("Saved refund refund_id=%s payment_id=%s amount_cents=%d", orm.id, payment_id, amount_cents)
    return orm


async def total_refunded_cents(db: AsyncSession, payment_id: int) -> int:
    """Sum of succeeded refunds against a payment."""
    result = await db.execute(
        select(func.coalesce(func.sum(RefundORM.amount_cents), 0)).where(
            RefundORM.payment_id == payment_id,
            RefundORM.status == REFUND_SUCCEEDED,
        )
    )
    return int(result.scalar_one())


async def list_refunds(db: AsyncSession, limit: int = 100) -> list[RefundORM]:
    result = await db.execute(
        select(RefundORM).order_by(RefundORM.created_at.desc(), RefundORM.id.desc()).limit(limit)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# AI content cache operations
# ---------------------------------------------------------------------------

def content_hash(content: Any) -> str:
    """SHA-256 over canonical JSON — stable across key order."""
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


async def get_ai_content(
    db: AsyncSession, quiz_attempt_id: int, content_type: str
) -> Optional[AIContentORM]:
    """Pure read. Never calls the AI service."""
    result = await db.execute(
        select(AIContentORM).where(
            AIContentORM.quiz_attempt_id == quiz_attempt_id,
            AIContentORM.content_type == content_type,
        )
    )
    return result.scalar_one_or_none()


async def list_ai_content(db: AsyncSession, quiz_attempt_id: int) -> list[AIContentORM]:
    result = await db.execute(
        select(AIContentORM)
        .where(AIContentORM.quiz_attempt_id == quiz_attempt_id)
        .order_by(AIContentORM.content_type)
    )
    return list(result.scalars().all())


async def save_ai_content(
    db: AsyncSession, quiz_attempt_id: int, content_type: str, content: Any
) -> AIContentORM:
    """
    Upsert one (attempt, content_type) entry — last write wins.
    One entry per key (unique constraint on quiz_attempt_id + content_type).
    """
    orm = await get_ai_content(db, quiz_attempt_id, content_type)
    digest = content_hash(content)
    now = datetime.now(timezone.utc)

    if orm is None:
        orm = AIContentORM(
            quiz_attempt_id=quiz_attempt_id,
            content_type=content_type,
            content=content,
            content_hash=digest,
            generated_at=now,
        )
        db.add(orm)
    else:
        orm.content = content
        orm.content_hash = digest
        orm.generated_at = now

    await db.flush()
    logger.info(
        "Saved AI content attempt_id=%s content_type=%s hash=%s…",
        quiz_attempt_id, content_type, digest[:12],
    )
    return orm


async def clear_ai_content_by_prefix(
    db: AsyncSession, quiz_attempt_ids: Iterable[int], prefix: str
) -> int:
    """Delete every entry of the given attempts whose content_type starts with prefix."""
    ids = list(quiz_attempt_ids)
    if not ids:
        return 0
    result = await db.execute(
        delete(AIContentORM).where(
            AIContentORM.quiz_attempt_id.in_(ids),
            AIContentORM.content_type.startswith(prefix, autoescape=True),
        ).execution_options(synchronize_session=False)
    )
    logger.info(
        "Cleared AI content prefix=%s attempts=%d deleted=%d", prefix, len(ids), result.rowcount,
    )
    return result.rowcount


# ---------------------------------------------------------------------------
# Expiration sweeps
# ---------------------------------------------------------------------------

async def delete_expired_quiz_attempts(db: AsyncSession, now: datetime) -> int:
    """Unpaid attempts past their retention deadline."""
    result = await db.execute(
        delete(QuizAttemptORM).where(
            QuizAttemptORM.expires_at.is_not(None),
            QuizAttemptORM.expires_at < now,
            QuizAttemptORM.is_paid.is_(False),
        ).execution_options(synchronize_session=False)
    )
    return result.rowcount


async def delete_expired_temporary_users(db: AsyncSession, now: datetime) -> int:
    """Temporary users that never paid and whose expires_at has passed."""
    result = await db.execute(
        delete(UserORM).where(
            UserORM.is_temporary.is_(True),
            UserORM.is_paid.is_(False),
            UserORM.expires_at.is_not(None),
            UserORM.expires_at < now,
        ).execution_options(synchronize_session=False)
    )
    return result.rowcount
