"""
Admin HTTP routes — /api/admin/*

All routes require the X-Admin-Key header (constant-time compare against
settings.admin_api_key). With no key configured every admin route is 503.

GET  /payments             — recent payments
POST /complete-payment     — force-complete a pending or failed payment (same path as the webhook)
POST /convert-temp-user    — promote a temporary user without a payment
POST /refund               — Stripe refund, capped at the amount paid
GET  /refunds              — recent refunds
POST /reconcile-payments   — repair provider intents with no local row
POST /cleanup              — run the expiration sweep now
"""
import hmac
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.cleanup import run_cleanup
from bizmodel.config import settings
from bizmodel.database import get_db
from bizmodel.errors import (
    AuthorizationDenied,
    NotFound,
    PaymentConfigurationError,
    UpstreamProviderError,
    ValidationError,
)
from bizmodel.identity.lifecycle import promote_to_permanent
from bizmodel.models.payment import COMPLETABLE_STATUSES, PAYMENT_COMPLETED, PAYMENT_REFUNDED
from bizmodel.models.refund import REFUND_FAILED, REFUND_SUCCEEDED
from bizmodel.payments.orchestrator import (
    RECONCILE_LOOKBACK,
    complete_payment,
    reconcile_stripe_payments,
)
from bizmodel.payments.schemas import (
    AdminPaymentRequest,
    AdminUserRequest,
    PaymentOut,
    RefundOut,
    RefundRequest,
)
from bizmodel.schemas import UserOut

logger = logging.getLogger(__name__)


async def require_admin(x_admin_key: str = Header(default="")) -> None:
    if not settings.admin_api_key:
        raise HTTPException(status_code=503, detail="Admin API is not configured")
    if not hmac.compare_digest(x_admin_key.encode("utf-8"), settings.admin_api_key.encode("utf-8")):
        raise AuthorizationDenied("Admin access required")


router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/payments", response_model=list[PaymentOut])
async def admin_list_payments(
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> list[PaymentOut]:
    return [PaymentOut.model_validate(p) for p in await store.list_payments(db, limit)]


@router.post("/complete-payment", response_model=PaymentOut)
async def admin_complete_payment(
    body: AdminPaymentRequest,
    db: AsyncSession = Depends(get_db),
) -> PaymentOut:
    payment = await store.get_payment(db, body.payment_id)
    if payment is None:
        raise NotFound("Payment not found")
    if payment.status not in COMPLETABLE_STATUSES:
        raise ValidationError(
            f"Payment is already {payment.status}", extra={"status": payment.status}
        )
    await complete_payment(db, payment)
    logger.info("Admin completed payment payment_id=%s", payment.id)
    return PaymentOut.model_validate(payment)


@router.post("/convert-temp-user", response_model=UserOut)
async def admin_convert_temp_user(
    body: AdminUserRequest,
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    promoted = await promote_to_permanent(db, body.user_id)
    user = await store.get_user(db, body.user_id)
    logger.info("Admin convert user_id=%s promoted=%s", body.user_id, promoted)
    return UserOut.model_validate(user)


@router.post("/refund", response_model=RefundOut)
async def admin_refund(
    body: RefundRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> RefundOut:
    gateway = request.app.state.stripe_gateway
    payment = await store.get_payment(db, body.payment_id)
    if payment is None:
        raise NotFound("Payment not found")
    if payment.status != PAYMENT_COMPLETED:
        raise ValidationError("Only completed payments can be refunded")
    if not payment.stripe_payment_intent_id:
        raise ValidationError("Only Stripe payments can be refunded here")
    if gateway is None:
        raise PaymentConfigurationError("Stripe is not configured")

    amount_cents = round(body.amount * 100)
    already_refunded = await store.total_refunded_cents(db, payment.id)
    if already_refunded + amount_cents > payment.amount_cents:
        raise ValidationError(
            "Refund amount exceeds the amount paid",
            extra={"refundableAmount": f"{(payment.amount_cents - already_refunded) / 100:.2f}"},
        )

    refund = await store.create_refund(
        db,
        payment_id=payment.id,
        amount_cents=amount_cents,
        currency=payment.currency,
        reason=body.reason,
        admin_note=body.admin_note,
    )
    await db.commit()

    try:
        provider_refund = await gateway.create_refund(
            payment.stripe_payment_intent_id,
            amount_cents,
            metadata={"paymentId": str(payment.id), "refundId": str(refund.id)},
        )
    except UpstreamProviderError:
        refund.status = REFUND_FAILED
        refund.processed_at = datetime.now(timezone.utc)
        await db.commit()
        raise

    refund.provider_refund_id = provider_refund["id"]
    refund.status = REFUND_SUCCEEDED if provider_refund["status"] in ("succeeded", "pending") else REFUND_FAILED
    refund.processed_at = datetime.now(timezone.utc)

    if refund.status == REFUND_SUCCEEDED and already_refunded + amount_cents == payment.amount_cents:
        payment.status = PAYMENT_REFUNDED
        attempt = await store.get_quiz_attempt(db, payment.quiz_attempt_id)
        if attempt is not None:
            attempt.is_paid = False
        logger.info("Payment fully refunded payment_id=%s — report relocked", payment.id)

    await db.flush()
    return RefundOut.model_validate(refund)


@router.get("/refunds", response_model=list[RefundOut])
async def admin_list_refunds(
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> list[RefundOut]:
    return [RefundOut.model_validate(r) for r in await store.list_refunds(db, limit)]


@router.post("/reconcile-payments")
async def admin_reconcile_payments(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    gateway = request.app.state.stripe_gateway
    if gateway is None:
        raise PaymentConfigurationError("Stripe is not configured")
    since = datetime.now(timezone.utc) - RECONCILE_LOOKBACK
    repaired = await reconcile_stripe_payments(db, gateway, since)
    return {"success": True, "repaired": repaired}


@router.post("/cleanup")
async def admin_cleanup(db: AsyncSession = Depends(get_db)) -> dict:
    result = await run_cleanup(db)
    return {"success": True, **result}
