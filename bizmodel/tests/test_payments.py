"""
Payment/unlock orchestrator — service level, gateways mocked.

Covers: at most one completed unlock per attempt, already-unlocked → 400
with no provider call, webhook dispatch, and the provider-then-local
persistence gap with its reconciliation.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from bizmodel import store
from bizmodel.errors import Conflict, NotFound, PersistenceError, ValidationError
from bizmodel.identity.lifecycle import create_temporary_user
from bizmodel.models.payment import (
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    REPORT_UNLOCK,
    PaymentORM,
)
from bizmodel.payments.orchestrator import (
    FIRST_REPORT_PRICE_CENTS,
    REPEAT_REPORT_PRICE_CENTS,
    complete_payment,
    create_report_unlock_payment,
    parse_attempt_id,
    reconcile_stripe_payments,
)
from bizmodel.payments.webhook import handle_stripe_event

KEY = "1.2.3.4-pytest"
QUIZ = {"mainMotivation": "side-income"}


async def _temporary_user_with_attempt(db, email: str = "buyer@example.com"):
    user = await create_temporary_user(db, KEY, email, password_hash="x")
    attempt = await store.create_quiz_attempt(
        db, QUIZ, user_id=user.id, expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
    )
    return user, attempt


async def _completed_unlock_count(db, user_id: int, attempt_id: int) -> int:
    result = await db.execute(
        select(func.count(PaymentORM.id)).where(
            PaymentORM.user_id == user_id,
            PaymentORM.quiz_attempt_id == attempt_id,
            PaymentORM.type == REPORT_UNLOCK,
            PaymentORM.status == PAYMENT_COMPLETED,
        )
    )
    return int(result.scalar_one())


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw", [None, "", "abc", "-3", 0, True])
def test_parse_attempt_id_rejects_bad_values(raw) -> None:
    with pytest.raises(ValidationError):
        parse_attempt_id(raw)


def test_parse_attempt_id_accepts_numeric_strings() -> None:
    assert parse_attempt_id(" 17 ") == 17


@pytest.mark.asyncio
async def test_missing_attempt_is_404(db, stripe_gateway) -> None:
    with pytest.raises(NotFound):
        await create_report_unlock_payment(db, stripe_gateway, session_key=KEY, quiz_attempt_id=404)
    stripe_gateway.create_payment.assert_not_awaited()


@pytest.mark.asyncio
async def test_anonymous_attempt_without_email_is_400(db, stripe_gateway) -> None:
    attempt = await store.create_quiz_attempt(db, QUIZ, session_id=KEY)
    with pytest.raises(ValidationError) as exc_info:
        await create_report_unlock_payment(db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id)
    assert exc_info.value.extra["suggestion"] == "email_required"


@pytest.mark.asyncio
async def test_anonymous_attempt_with_email_is_claimed(db, stripe_gateway) -> None:
    attempt = await store.create_quiz_attempt(db, QUIZ, session_id=KEY)
    result = await create_report_unlock_payment(
        db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id, email="claim@example.com",
    )
    owner = await store.get_user_by_email(db, "claim@example.com")
    assert owner.is_temporary
    assert attempt.user_id == owner.id
    assert result.payment.user_id == owner.id


# ---------------------------------------------------------------------------
# Pricing + creation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_first_purchase_price_and_pending_row(db, stripe_gateway) -> None:
    user, attempt = await _temporary_user_with_attempt(db)
    result = await create_report_unlock_payment(
        db, stripe_gateway, session_key=KEY, quiz_attempt_id=str(attempt.id),
    )

    assert result.payment.amount_cents == FIRST_REPORT_PRICE_CENTS
    assert result.payment.amount == "9.99"
    assert result.payment.status == PAYMENT_PENDING
    assert result.payment.stripe_payment_intent_id == result.provider_reference
    assert result.client_secret == f"{result.provider_reference}_secret"

    kwargs = stripe_gateway.create_payment.await_args.kwargs
    assert kwargs["metadata"] == {
        "userId": str(user.id),
        "quizAttemptId": str(attempt.id),
        "type": REPORT_UNLOCK,
        "email": user.email,
    }


@pytest.mark.asyncio
async def test_repeat_purchaser_gets_discount(db, stripe_gateway) -> None:
    user, _ = await _temporary_user_with_attempt(db)
    user.is_paid = True
    second_attempt = await store.create_quiz_attempt(db, QUIZ, user_id=user.id)

    result = await create_report_unlock_payment(
        db, stripe_gateway, session_key=KEY, quiz_attempt_id=second_attempt.id,
    )
    assert result.payment.amount_cents == REPEAT_REPORT_PRICE_CENTS


@pytest.mark.asyncio
async def test_local_write_failure_surfaces_provider_reference(db, stripe_gateway) -> None:
    _, attempt = await _temporary_user_with_attempt(db)
    failing = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk full")))
    with patch.object(store, "create_payment", failing):
        with pytest.raises(PersistenceError) as exc_info:
            await create_report_unlock_payment(
                db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id,
            )

    err = exc_info.value
    assert err.status_code == 500
    assert err.expose_details
    assert err.details["provider"] == "stripe"
    assert err.details["providerReference"] == "pi_test_1"
    assert err.details["quizAttemptId"] == attempt.id


# ---------------------------------------------------------------------------
# Completion — idempotence and side effects
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_complete_payment_unlocks_and_promotes(db, stripe_gateway) -> None:
    user, attempt = await _temporary_user_with_attempt(db)
    await store.save_ai_content(db, attempt.id, "model_freelancing", {"text": "old"})
    await store.save_ai_content(db, attempt.id, "results-preview", {"text": "keep"})
    result = await create_report_unlock_payment(db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id)

    assert await complete_payment(db, result.payment) is True

    await db.refresh(user)
    await db.refresh(attempt)
    assert result.payment.status == PAYMENT_COMPLETED
    assert result.payment.completed_at is not None
    assert attempt.is_paid and attempt.expires_at is None
    assert user.is_paid and not user.is_temporary and user.expires_at is None
    assert await store.get_ai_content(db, attempt.id, "model_freelancing") is None
    assert await store.get_ai_content(db, attempt.id, "results-preview") is not None


@pytest.mark.asyncio
async def test_complete_payment_twice_is_a_no_op(db, stripe_gateway) -> None:
    user, attempt = await _temporary_user_with_attempt(db)
    result = await create_report_unlock_payment(db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id)

    assert await complete_payment(db, result.payment) is True
    assert await complete_payment(db, result.payment) is False
    assert await complete_payment(db, None) is False
    assert await _completed_unlock_count(db, user.id, attempt.id) == 1


@pytest.mark.asyncio
async def test_already_unlocked_rejects_without_provider_call(db, stripe_gateway) -> None:
    user, attempt = await _temporary_user_with_attempt(db)
    result = await create_report_unlock_payment(db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id)
    await complete_payment(db, result.payment)
    await db.commit()
    calls_before = stripe_gateway.create_payment.await_count

    with pytest.raises(Conflict) as exc_info:
        await create_report_unlock_payment(db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id)

    assert exc_info.value.status_code == 400
    assert exc_info.value.extra["suggestion"] == "already_unlocked"
    assert stripe_gateway.create_payment.await_count == calls_before
    payments = await store.list_payments_for_user(db, user.id)
    assert len(payments) == 1


@pytest.mark.asyncio
async def test_second_pending_payment_cannot_complete_a_second_unlock(db, stripe_gateway) -> None:
    """Two checkouts opened before either completed: only one may become 'completed'."""
    user, attempt = await _temporary_user_with_attempt(db)
    first = await create_report_unlock_payment(db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id)
    second = await create_report_unlock_payment(db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id)

    assert await complete_payment(db, first.payment) is True
    assert await complete_payment(db, second.payment) is False
    assert await _completed_unlock_count(db, user.id, attempt.id) == 1


# ---------------------------------------------------------------------------
# Webhook dispatch
# ---------------------------------------------------------------------------

def _event(event_type: str, intent_id: str, metadata: dict | None = None) -> dict:
    return {
        "id": "evt_1",
        "type": event_type,
        "data": {"object": {"id": intent_id, "metadata": metadata or {}}},
    }


@pytest.mark.asyncio
async def test_webhook_succeeded_completes_payment(db, stripe_gateway) -> None:
    _, attempt = await _temporary_user_with_attempt(db)
    result = await create_report_unlock_payment(db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id)

    await handle_stripe_event(db, _event("payment_intent.succeeded", result.provider_reference))
    await handle_stripe_event(db, _event("payment_intent.succeeded", result.provider_reference))

    await db.refresh(result.payment)
    assert result.payment.status == PAYMENT_COMPLETED


@pytest.mark.asyncio
async def test_webhook_failed_marks_pending_payment_failed(db, stripe_gateway) -> None:
    _, attempt = await _temporary_user_with_attempt(db)
    result = await create_report_unlock_payment(db, stripe_gateway, session_key=KEY, quiz_attempt_id=attempt.id)

    await handle_stripe_event(db, _event("payment_intent.payment_failed", result.provider_reference))
    await db.refresh(result.payment)
    assert result.payment.status == PAYMENT_FAILED


@pytest.mark.asyncio
async def test_webhook_for_unknown_intent_is_ignored(db) -> None:
    await handle_stripe_event(db, _event("payment_intent.succeeded", "pi_unknown"))
    await handle_stripe_event(db, _event("charge.refunded", "ch_1"))
    assert await store.list_payments(db) == []


# ---------------------------------------------------------------------------
# Reconciliation of the provider-then-local gap
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_reconcile_creates_and_completes_missing_rows(db, stripe_gateway) -> None:
    user, attempt = await _temporary_user_with_attempt(db)
    stripe_gateway.list_succeeded_payment_intents.return_value = [
        {
            "id": "pi_orphan",
            "amount": 999,
            "currency": "usd",
            "metadata": {"userId": str(user.id), "quizAttemptId": str(attempt.id), "type": REPORT_UNLOCK},
        },
        {"id": "pi_other_product", "amount": 100, "metadata": {"type": "subscription"}},
        {"id": "pi_broken", "amount": 999, "metadata": {"type": REPORT_UNLOCK}},
    ]

    repaired = await reconcile_stripe_payments(db, stripe_gateway, datetime(2026, 1, 1, tzinfo=timezone.utc))

    assert repaired == 1
    payment = await store.get_payment_by_stripe_intent(db, "pi_orphan")
    assert payment.status == PAYMENT_COMPLETED
    await db.refresh(user)
    assert not user.is_temporary

    # second pass finds the row and changes nothing
    assert await reconcile_stripe_payments(db, stripe_gateway, datetime(2026, 1, 1, tzinfo=timezone.utc)) == 0
