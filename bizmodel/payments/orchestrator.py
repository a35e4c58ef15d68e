"""
orchestrator.py — Report-unlock payment state machine (Stripe + PayPal).

create_report_unlock_payment()
  1. resolve the attempt owner (claim with email when the attempt is anonymous)
  2. 400 bad id / 404 missing attempt / 400 still ownerless
  3. 400 "already unlocked" if a completed report_unlock exists — no provider call
  4. price: $4.99 for a repeat purchaser (is_paid), else $9.99
  5. create the provider object (metadata carries userId, quizAttemptId, type)
  6. persist the local pending row; if that fails the provider object already
     exists → 500 with the provider reference for manual reconciliation
     (reconcile_stripe_payments() repairs these automatically)
  7. return client secret / order id + local payment id

complete_payment()
  - not found → log + no-op;  completed or refunded → no-op
  - conditional UPDATE ... WHERE status != 'completed' (concurrent webhooks)
  - attempt.is_paid, owner.is_paid, promote owner, purge 'model_' AI content on promotion

Webhook handlers call complete_payment()/fail_payment() and must never raise
past their boundary — see webhook.py.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.errors import (
    Conflict,
    NotFound,
    PaymentConfigurationError,
    PersistenceError,
    ValidationError,
)
from bizmodel.identity.lifecycle import create_temporary_user, promote_to_permanent
from bizmodel.identity.validator import validate_email
from bizmodel.models.payment import COMPLETABLE_STATUSES, REPORT_UNLOCK, PaymentORM
from bizmodel.models.quiz_attempt import QuizAttemptORM
from bizmodel.models.user import UserORM
from bizmodel.payments.paypal_gateway import PayPalGateway
from bizmodel.payments.stripe_gateway import StripeGateway
from bizmodel.quiz.retention import expiration_for

logger = logging.getLogger(__name__)

Gateway = Union[StripeGateway, PayPalGateway]

FIRST_REPORT_PRICE_CENTS = 999
REPEAT_REPORT_PRICE_CENTS = 499
CURRENCY = "usd"
BUSINESS_MODEL_CONTENT_PREFIX = "model_"
RECONCILE_LOOKBACK = timedelta(days=2)


@dataclass(frozen=True)
class UnlockPaymentResult:
    payment: PaymentORM
    quiz_attempt_id: int
    client_secret: Optional[str]
    provider_reference: str
    approval_url: Optional[str] = None


def price_for(user: UserORM) -> int:
    """Repeat purchasers pay the discounted price."""
    return REPEAT_REPORT_PRICE_CENTS if user.is_paid else FIRST_REPORT_PRICE_CENTS


def parse_attempt_id(raw: Any) -> int:
    if raw is None or isinstance(raw, bool):
        raise ValidationError("Missing or invalid quizAttemptId")
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise ValidationError("Missing or invalid quizAttemptId") from exc
    if value <= 0:
        raise ValidationError("Missing or invalid quizAttemptId")
    return value


async def _resolve_owner(
    db: AsyncSession,
    attempt: QuizAttemptORM,
    session_key: str,
    email: Optional[str],
) -> UserORM:
    """Owner of the attempt, claiming an anonymous attempt for `email` if needed."""
    if attempt.user_id is None and email:
        validate_email(email)
        user = await create_temporary_user(db, session_key, email)
        attempt.user_id = user.id
        attempt.session_id = None
        attempt.expires_at = expiration_for(user, attempt.completed_at)
        await db.flush()
        logger.info("Claimed attempt for payment attempt_id=%s user_id=%s", attempt.id, user.id)
        return user

    if attempt.user_id is None:
        raise ValidationError(
            "An email address is required to purchase a report for an anonymous quiz",
            extra={"suggestion": "email_required"},
        )

    owner = await store.get_user(db, attempt.user_id)
    if owner is None:
        raise NotFound("User not found for this quiz attempt")
    return owner


async def create_report_unlock_payment(
    db: AsyncSession,
    gateway: Optional[Gateway],
    *,
    session_key: str,
    quiz_attempt_id: Any,
    email: Optional[str] = None,
    quiz_data: Optional[dict] = None,
) -> UnlockPaymentResult:
    if gateway is None:
        raise PaymentConfigurationError("Payment provider is not configured")

    # ── 1-2. Resolve attempt + owner ────────────────────────────────────
    if quiz_attempt_id is None and email and quiz_data:
        validate_email(email)
        owner = await create_temporary_user(db, session_key, email)
        now = datetime.now(timezone.utc)
        attempt = await store.create_quiz_attempt(
            db, quiz_data, user_id=owner.id, completed_at=now, expires_at=expiration_for(owner, now),
        )
    else:
        attempt_id = parse_attempt_id(quiz_attempt_id)
        attempt = await store.get_quiz_attempt(db, attempt_id)
        if attempt is None:
            raise NotFound("Quiz attempt not found", extra={"suggestion": "retake_quiz"})
        owner = await _resolve_owner(db, attempt, session_key, email)

    # ── 3. Already unlocked? (no provider call on this path) ───────────
    if attempt.is_paid or await store.has_completed_unlock(db, owner.id, attempt.id):
        raise Conflict(
            "Report is already unlocked for this quiz attempt",
            status_code=400,
            extra={"suggestion": "already_unlocked", "quizAttemptId": attempt.id},
        )

    # ── 4. Price ────────────────────────────────────────────────────────
    amount_cents = price_for(owner)

    # claimed attempt / new temporary user must survive a later failure
    await db.commit()

    # ── 5. Provider object ──────────────────────────────────────────────
    metadata = {
        "userId": str(owner.id),
        "quizAttemptId": str(attempt.id),
        "type": REPORT_UNLOCK,
    }
    if gateway.provider == "stripe":
        metadata["email"] = owner.email
    provider_payment = await gateway.create_payment(
        amount_cents=amount_cents,
        currency=CURRENCY,
        metadata=metadata,
        description=f"BizModelAI report unlock — quiz attempt {attempt.id}",
        receipt_email=owner.email,
    )

    # ── 6. Local pending row ────────────────────────────────────────────
    try:
        payment = await store.create_payment(
            db,
            user_id=owner.id,
            quiz_attempt_id=attempt.id,
            amount_cents=amount_cents,
            currency=CURRENCY,
            stripe_payment_intent_id=provider_payment.reference if gateway.provider == "stripe" else None,
            paypal_order_id=provider_payment.reference if gateway.provider == "paypal" else None,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error(
            "Local payment row failed after provider object creation provider=%s reference=%s "
            "user_id=%s attempt_id=%s",
            gateway.provider, provider_payment.reference, owner.id, attempt.id,
            exc_info=True,
        )
        raise PersistenceError(
            "Payment was created with the provider but could not be recorded. Please contact support.",
            details={
                "provider": gateway.provider,
                "providerReference": provider_payment.reference,
                "userId": owner.id,
                "quizAttemptId": attempt.id,
            },
            expose_details=True,
        ) from exc

    logger.info(
        "Report unlock payment created payment_id=%s provider=%s amount_cents=%d",
        payment.id, gateway.provider, amount_cents,
    )
    return UnlockPaymentResult(
        payment=payment,
        quiz_attempt_id=attempt.id,
        client_secret=provider_payment.client_secret,
        provider_reference=provider_payment.reference,
        approval_url=provider_payment.approval_url,
    )


async def find_payment_by_reference(
    db: AsyncSession, provider: str, reference: str
) -> Optional[PaymentORM]:
    if provider == "paypal":
        return await store.get_payment_by_paypal_order(db, reference)
    return await store.get_payment_by_stripe_intent(db, reference)


async def complete_payment(db: AsyncSession, payment: Optional[PaymentORM]) -> bool:
    """
    Drive a payment to 'completed' and apply the unlock side effects.
    Returns True only when this call performed the transition.
    """
    if payment is None:
        logger.warning("complete_payment: no local payment row — ignoring")
        return False
    if payment.status not in COMPLETABLE_STATUSES:
        logger.info(
            "complete_payment: payment_id=%s ref=%s is %s — no-op",
            payment.id, payment.provider_reference, payment.status,
        )
        return False

    try:
        async with db.begin_nested():
            transitioned = await store.mark_payment_completed(db, payment.id)
    except IntegrityError:
        logger.error(
            "Duplicate completed unlock for user_id=%s attempt_id=%s payment_id=%s — refund required",
            payment.user_id, payment.quiz_attempt_id, payment.id,
        )
        return False
    if not transitioned:
        return False

    attempt = await store.get_quiz_attempt(db, payment.quiz_attempt_id)
    if attempt is not None:
        attempt.is_paid = True
        attempt.expires_at = None

    user = await store.get_user(db, payment.user_id)
    if user is not None:
        user.is_paid = True
        promoted = await promote_to_permanent(db, user.id)
        if promoted:
            attempt_ids = [a.id for a in await store.list_quiz_attempts_for_user(db, user.id)]
            await store.clear_ai_content_by_prefix(db, attempt_ids, BUSINESS_MODEL_CONTENT_PREFIX)

    await db.flush()
    await db.refresh(payment)
    logger.info(
        "Payment completed payment_id=%s ref=%s user_id=%s attempt_id=%s",
        payment.id, payment.provider_reference, payment.user_id, payment.quiz_attempt_id,
    )
    return True


async def fail_payment(db: AsyncSession, payment: Optional[PaymentORM]) -> bool:
    if payment is None:
        logger.warning("fail_payment: no local payment row — ignoring")
        return False
    failed = await store.mark_payment_failed(db, payment.id)
    if failed:
        await db.refresh(payment)
    return failed


async def reconcile_stripe_payments(
    db: AsyncSession, gateway: StripeGateway, since: datetime
) -> int:
    """
    Repair the provider-then-local gap: every succeeded report_unlock intent
    with no local row gets one (from its metadata) and is completed.
    Returns the number of payments repaired.
    """
    repaired = 0
    for intent in await gateway.list_succeeded_payment_intents(since):
        metadata = intent.get("metadata") or {}
        if metadata.get("type") != REPORT_UNLOCK:
            continue
        if await store.get_payment_by_stripe_intent(db, intent["id"]) is not None:
            continue
        try:
            user_id = int(metadata["userId"])
            attempt_id = int(metadata["quizAttemptId"])
        except (KeyError, TypeError, ValueError):
            logger.error("Unreconcilable intent intent_id=%s — metadata incomplete", intent["id"])
            continue
        if await store.get_user(db, user_id) is None or await store.get_quiz_attempt(db, attempt_id) is None:
            logger.error("Unreconcilable intent intent_id=%s — user or attempt gone", intent["id"])
            continue

        payment = await store.create_payment(
            db,
            user_id=user_id,
            quiz_attempt_id=attempt_id,
            amount_cents=int(intent["amount"]),
            currency=intent.get("currency") or CURRENCY,
            stripe_payment_intent_id=intent["id"],
        )
        if await complete_payment(db, payment):
            repaired += 1
            logger.info("Reconciled intent intent_id=%s payment_id=%s", intent["id"], payment.id)
    return repaired
