"""
Payment HTTP routes.

GET  /api/stripe-config                   — publishable key + configured flag
GET  /api/user-pricing/{user_id}          — $9.99 first report / $4.99 repeat
GET  /api/report-unlock-status/{user_id}/{quiz_attempt_id} — caller's own unlock flag
POST /api/create-report-unlock-payment    — Stripe PaymentIntent (see orchestrator.py)
POST /api/create-paypal-payment           — PayPal order
POST /api/capture-paypal-payment          — capture + complete
GET  /api/payment-status/{payment_id}     — local status reconciled with Stripe
POST /api/stripe/webhook                  — signature-verified, always acks {received: true}

Gateways live on app.state (None when the provider is not configured).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.config import settings
from bizmodel.database import get_db
from bizmodel.errors import (
    AuthorizationDenied,
    NotFound,
    PaymentConfigurationError,
    UpstreamProviderError,
    ValidationError,
)
from bizmodel.identity.resolver import RequestContext, get_request_context, require_user_id
from bizmodel.models.payment import PAYMENT_COMPLETED, PAYMENT_PENDING, PAYMENT_REFUNDED
from bizmodel.payments.orchestrator import (
    complete_payment,
    create_report_unlock_payment,
    fail_payment,
    find_payment_by_reference,
    price_for,
)
from bizmodel.payments.paypal_gateway import PayPalGateway
from bizmodel.payments.schemas import (
    CapturePayPalRequest,
    CreatePaymentRequest,
    CreatePaymentResponse,
    CreatePayPalPaymentResponse,
    PaymentStatusResponse,
)
from bizmodel.payments.stripe_gateway import StripeGateway
from bizmodel.payments.webhook import handle_stripe_event

router = APIRouter(prefix="/api", tags=["payments"])
logger = logging.getLogger(__name__)


def _stripe(request: Request) -> Optional[StripeGateway]:
    return request.app.state.stripe_gateway


def _paypal(request: Request) -> Optional[PayPalGateway]:
    return request.app.state.paypal_gateway


@router.get("/stripe-config")
async def stripe_config() -> dict:
    return {
        "publishableKey": settings.stripe_publishable_key or None,
        "configured": settings.stripe_configured,
        "status": "ready" if settings.stripe_configured else "not_configured",
    }


@router.get("/user-pricing/{user_id}")
async def user_pricing(user_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    user = await store.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    amount_cents = price_for(user)
    return {
        "userId": user.id,
        "isFirstReport": not user.is_paid,
        "amount": f"{amount_cents / 100:.2f}",
        "amountCents": amount_cents,
        "currency": "usd",
        "isTemporaryUser": user.is_temporary,
    }


@router.get("/report-unlock-status/{user_id}/{quiz_attempt_id}")
async def report_unlock_status(
    user_id: int,
    quiz_attempt_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    caller_id = require_user_id(ctx)
    if caller_id != user_id:
        raise AuthorizationDenied("Access denied")
    attempt = await store.get_quiz_attempt(db, quiz_attempt_id)
    if attempt is None:
        raise NotFound("Quiz attempt not found")
    if attempt.user_id != user_id:
        raise AuthorizationDenied("Access denied")

    has_paid = await store.has_completed_unlock(db, user_id, quiz_attempt_id)
    return {
        "success": True,
        "isUnlocked": has_paid,
        "hasPaid": has_paid,
        "quizAttemptId": quiz_attempt_id,
        "userId": user_id,
    }


@router.post("/create-report-unlock-payment", response_model=CreatePaymentResponse)
async def create_stripe_unlock_payment(
    body: CreatePaymentRequest,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> CreatePaymentResponse:
    result = await create_report_unlock_payment(
        db,
        _stripe(request),
        session_key=ctx.session_key,
        quiz_attempt_id=body.quiz_attempt_id,
        email=body.email,
        quiz_data=body.quiz_data,
    )
    return CreatePaymentResponse(
        client_secret=result.client_secret,
        payment_id=result.payment.id,
        amount=result.payment.amount,
        quiz_attempt_id=result.quiz_attempt_id,
    )


@router.post("/create-paypal-payment", response_model=CreatePayPalPaymentResponse)
async def create_paypal_unlock_payment(
    body: CreatePaymentRequest,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> CreatePayPalPaymentResponse:
    result = await create_report_unlock_payment(
        db,
        _paypal(request),
        session_key=ctx.session_key,
        quiz_attempt_id=body.quiz_attempt_id,
        email=body.email,
        quiz_data=body.quiz_data,
    )
    return CreatePayPalPaymentResponse(
        order_id=result.provider_reference,
        approval_url=result.approval_url,
        payment_id=result.payment.id,
        amount=result.payment.amount,
        quiz_attempt_id=result.quiz_attempt_id,
    )


@router.post("/capture-paypal-payment")
async def capture_paypal_payment(
    body: CapturePayPalRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    gateway = _paypal(request)
    if gateway is None:
        raise PaymentConfigurationError("PayPal is not configured")

    payment = await find_payment_by_reference(db, "paypal", body.order_id)
    if payment is None:
        raise NotFound("Payment not found for this order", extra={"suggestion": "retake_quiz"})
    if payment.status == PAYMENT_COMPLETED:
        return {"success": True, "status": "COMPLETED", "paymentId": payment.id, "alreadyCompleted": True}
    if payment.status == PAYMENT_REFUNDED:
        raise ValidationError("Payment has been refunded", extra={"paymentId": payment.id})

    capture = await gateway.capture_order(body.order_id)
    if capture["status"] != "COMPLETED":
        await fail_payment(db, payment)
        await db.commit()
        raise ValidationError(
            "PayPal payment was not completed",
            extra={"status": capture["status"], "paymentId": payment.id},
        )

    await complete_payment(db, payment)
    return {
        "success": True,
        "status": "COMPLETED",
        "captureID": capture["capture_id"],
        "paymentId": payment.id,
        "quizAttemptId": payment.quiz_attempt_id,
    }


@router.get("/payment-status/{payment_id}", response_model=PaymentStatusResponse)
async def payment_status(
    payment_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> PaymentStatusResponse:
    payment = await store.get_payment(db, payment_id)
    if payment is None:
        raise NotFound("Payment not found")

    provider_status: Optional[str] = None
    provider_error: Optional[str] = None
    gateway = _stripe(request)
    if payment.stripe_payment_intent_id and gateway is not None:
        try:
            intent = await gateway.retrieve_payment_intent(payment.stripe_payment_intent_id)
            provider_status = intent["status"]
        except UpstreamProviderError as exc:
            provider_error = exc.message
        if provider_status == "succeeded" and payment.status == PAYMENT_PENDING:
            logger.info("Payment status reconciliation payment_id=%s", payment.id)
            await complete_payment(db, payment)

    response = PaymentStatusResponse.model_validate(payment)
    response.provider_status = provider_status
    response.provider_error = provider_error
    return response


@router.post("/stripe/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    """
    400 only for an unverifiable delivery. Everything after verification is
    acknowledged — a non-2xx makes Stripe retry the same event indefinitely.
    """
    gateway = _stripe(request)
    if gateway is None:
        raise ValidationError("Stripe is not configured")

    payload = await request.body()
    event = gateway.construct_event(payload, request.headers.get("stripe-signature"))

    try:
        await handle_stripe_event(db, event)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error("Stripe webhook processing failed event_id=%s", event.get("id"), exc_info=True)
    return {"received": True}
