"""
End-to-end API tests for report unlock payments, the Stripe webhook and the
admin payment routes. The Stripe gateway is the MagicMock from conftest.py.

Run from the project root: pytest bizmodel/tests/test_api_payments.py -v
"""
from __future__ import annotations

import pytest
from httpx import AsyncClient

from bizmodel import store
from bizmodel.config import settings
from bizmodel.errors import ValidationError

PASSWORD = "Sup3rSecret"
EMAIL = "buyer@example.com"
QUIZ = {"mainMotivation": "financial-freedom"}
ADMIN_KEY = "admin-test-key"


def _succeeded_event(intent_id: str = "pi_test_1") -> dict:
    return {
        "id": "evt_test_1",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": intent_id, "metadata": {"type": "report_unlock"}}},
    }


async def _signup_with_attempt(client: AsyncClient) -> int:
    await client.post(
        "/api/auth/signup",
        json={"email": EMAIL, "password": PASSWORD, "firstName": "Bea", "lastName": "Buyer"},
    )
    saved = await client.post("/api/save-quiz-data", json={"quizData": QUIZ})
    return saved.json()["quizAttemptId"]


async def _post_webhook(client: AsyncClient) -> dict:
    response = await client.post(
        "/api/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=sig"},
    )
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def admin_key(monkeypatch) -> dict:
    monkeypatch.setattr(settings, "admin_api_key", ADMIN_KEY)
    return {"X-Admin-Key": ADMIN_KEY}


# ---------------------------------------------------------------------------
# Pricing / config
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_user_pricing_first_report(client: AsyncClient, session_factory) -> None:
    async with session_factory() as session:
        user = await store.insert_user(session, "p@example.com", is_temporary=True)
        await session.commit()
    response = await client.get(f"/api/user-pricing/{user.id}")
    assert response.json()["amount"] == "9.99"
    assert response.json()["isFirstReport"] is True
    assert (await client.get("/api/user-pricing/9999")).status_code == 404


@pytest.mark.asyncio
async def test_stripe_config_shape(client: AsyncClient) -> None:
    body = (await client.get("/api/stripe-config")).json()
    assert set(body) == {"publishableKey", "configured", "status"}


# ---------------------------------------------------------------------------
# Create payment
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_payment_returns_client_secret(client: AsyncClient, stripe_gateway) -> None:
    attempt_id = await _signup_with_attempt(client)
    response = await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["clientSecret"] == "pi_test_1_secret"
    assert body["amount"] == "9.99"
    assert body["quizAttemptId"] == attempt_id
    metadata = stripe_gateway.create_payment.await_args.kwargs["metadata"]
    assert metadata["quizAttemptId"] == str(attempt_id)
    assert metadata["type"] == "report_unlock"


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["abc", 0, -3, None])
async def test_create_payment_rejects_bad_attempt_id(client: AsyncClient, raw) -> None:
    response = await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": raw})
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_create_payment_without_gateway_is_configuration_error(client: AsyncClient) -> None:
    response = await client.post("/api/create-paypal-payment", json={"quizAttemptId": 1})
    assert response.status_code == 500
    assert response.json()["code"] == "PAYMENT_CONFIGURATION_ERROR"


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_400(client: AsyncClient, stripe_gateway) -> None:
    stripe_gateway.construct_event.side_effect = ValidationError("Webhook signature verification failed")
    response = await client.post("/api/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "bad"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_processing_error_is_still_acknowledged(client: AsyncClient, stripe_gateway) -> None:
    stripe_gateway.construct_event.return_value = {"id": "evt_broken", "type": "payment_intent.succeeded"}
    assert await _post_webhook(client) == {"received": True}


@pytest.mark.asyncio
async def test_webhook_for_unknown_intent_is_acknowledged(client: AsyncClient, stripe_gateway) -> None:
    stripe_gateway.construct_event.return_value = _succeeded_event("pi_unknown")
    assert await _post_webhook(client) == {"received": True}


@pytest.mark.asyncio
async def test_temporary_user_becomes_loginable_after_webhook(
    client: AsyncClient, stripe_gateway, session_factory,
) -> None:
    attempt_id = await _signup_with_attempt(client)

    blocked = await client.post("/api/auth/login", json={"email": EMAIL, "password": PASSWORD})
    assert blocked.status_code == 403
    assert blocked.json()["suggestion"] == "payment_required"

    created = await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    payment_id = created.json()["paymentId"]

    stripe_gateway.construct_event.return_value = _succeeded_event()
    await _post_webhook(client)

    async with session_factory() as session:
        payment = await store.get_payment(session, payment_id)
        assert payment.status == "completed"
        attempt = await store.get_quiz_attempt(session, attempt_id)
        assert attempt.is_paid is True
        assert attempt.expires_at is None
        user = await store.get_user_by_email(session, EMAIL)
        assert user.is_temporary is False
        assert user.is_paid is True

    await client.post("/api/auth/logout")
    client.cookies.clear()
    login = await client.post("/api/auth/login", json={"email": EMAIL, "password": PASSWORD})
    assert login.status_code == 200, login.text

    # redelivery of the same event changes nothing
    await _post_webhook(client)
    async with session_factory() as session:
        payments = await store.list_payments_for_user(session, user.id)
        assert [p.status for p in payments] == ["completed"]


@pytest.mark.asyncio
async def test_second_unlock_for_same_attempt_is_rejected(client: AsyncClient, stripe_gateway, session_factory) -> None:
    attempt_id = await _signup_with_attempt(client)
    await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    stripe_gateway.construct_event.return_value = _succeeded_event()
    await _post_webhook(client)

    again = await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    assert again.status_code == 400
    assert again.json()["suggestion"] == "already_unlocked"
    assert stripe_gateway.create_payment.await_count == 1

    async with session_factory() as session:
        user = await store.get_user_by_email(session, EMAIL)
        assert len(await store.list_payments_for_user(session, user.id)) == 1


@pytest.mark.asyncio
async def test_failed_intent_marks_payment_failed(client: AsyncClient, stripe_gateway, session_factory) -> None:
    attempt_id = await _signup_with_attempt(client)
    created = await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    event = _succeeded_event()
    event["type"] = "payment_intent.payment_failed"
    stripe_gateway.construct_event.return_value = event
    await _post_webhook(client)

    async with session_factory() as session:
        payment = await store.get_payment(session, created.json()["paymentId"])
        assert payment.status == "failed"


# ---------------------------------------------------------------------------
# Report unlock status
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_report_unlock_status_flips_after_webhook(
    client: AsyncClient, stripe_gateway, session_factory,
) -> None:
    attempt_id = await _signup_with_attempt(client)
    async with session_factory() as session:
        user_id = (await store.get_user_by_email(session, EMAIL)).id
    url = f"/api/report-unlock-status/{user_id}/{attempt_id}"

    locked = await client.get(url)
    assert locked.status_code == 200
    assert locked.json()["isUnlocked"] is False

    await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    stripe_gateway.construct_event.return_value = _succeeded_event()
    await _post_webhook(client)

    unlocked = await client.get(url)
    assert unlocked.json() == {
        "success": True, "isUnlocked": True, "hasPaid": True, "quizAttemptId": attempt_id, "userId": user_id,
    }


@pytest.mark.asyncio
async def test_report_unlock_status_access_checks(client: AsyncClient, session_factory) -> None:
    anonymous = await client.get("/api/report-unlock-status/1/1")
    assert anonymous.status_code == 401

    attempt_id = await _signup_with_attempt(client)
    async with session_factory() as session:
        user_id = (await store.get_user_by_email(session, EMAIL)).id
        other = await store.insert_user(session, "other@example.com", is_temporary=True)
        foreign = await store.create_quiz_attempt(session, user_id=other.id, quiz_data=QUIZ)
        await session.commit()
        other_id, foreign_id = other.id, foreign.id

    assert (await client.get(f"/api/report-unlock-status/{other_id}/{attempt_id}")).status_code == 403
    assert (await client.get(f"/api/report-unlock-status/{user_id}/{foreign_id}")).status_code == 403
    assert (await client.get(f"/api/report-unlock-status/{user_id}/999999")).status_code == 404


# ---------------------------------------------------------------------------
# Payment status
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_payment_status_reconciles_with_stripe(client: AsyncClient, stripe_gateway) -> None:
    attempt_id = await _signup_with_attempt(client)
    created = await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    payment_id = created.json()["paymentId"]

    pending = await client.get(f"/api/payment-status/{payment_id}")
    assert pending.json()["status"] == "pending"
    assert pending.json()["providerStatus"] == "processing"

    stripe_gateway.retrieve_payment_intent.return_value = {"id": "pi_test_1", "status": "succeeded"}
    done = await client.get(f"/api/payment-status/{payment_id}")
    assert done.json()["status"] == "completed"


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_admin_routes_unavailable_without_key_configured(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr(settings, "admin_api_key", "")
    response = await client.get("/api/admin/payments")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_admin_routes_reject_wrong_key(client: AsyncClient, admin_key) -> None:
    response = await client.get("/api/admin/payments", headers={"X-Admin-Key": "wrong"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_full_refund_relocks_report(
    client: AsyncClient, stripe_gateway, session_factory, admin_key,
) -> None:
    attempt_id = await _signup_with_attempt(client)
    created = await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    payment_id = created.json()["paymentId"]
    stripe_gateway.construct_event.return_value = _succeeded_event()
    await _post_webhook(client)

    too_much = await client.post(
        "/api/admin/refund", headers=admin_key,
        json={"paymentId": payment_id, "amount": 20, "reason": "duplicate"},
    )
    assert too_much.status_code == 400
    assert too_much.json()["refundableAmount"] == "9.99"

    refund = await client.post(
        "/api/admin/refund", headers=admin_key,
        json={"paymentId": payment_id, "amount": 9.99, "reason": "requested_by_customer"},
    )
    assert refund.status_code == 200, refund.text
    assert refund.json()["status"] == "succeeded"
    assert refund.json()["providerRefundId"] == "re_test_1"
    stripe_gateway.create_refund.assert_awaited_once()

    async with session_factory() as session:
        payment = await store.get_payment(session, payment_id)
        assert payment.status == "refunded"
        attempt = await store.get_quiz_attempt(session, attempt_id)
        assert attempt.is_paid is False

    listed = await client.get("/api/admin/refunds", headers=admin_key)
    assert len(listed.json()) == 1


@pytest.mark.asyncio
async def test_redelivered_webhook_after_full_refund_keeps_report_locked(
    client: AsyncClient, stripe_gateway, session_factory, admin_key,
) -> None:
    attempt_id = await _signup_with_attempt(client)
    created = await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    payment_id = created.json()["paymentId"]
    stripe_gateway.construct_event.return_value = _succeeded_event()
    await _post_webhook(client)
    refund = await client.post(
        "/api/admin/refund", headers=admin_key,
        json={"paymentId": payment_id, "amount": 9.99, "reason": "requested_by_customer"},
    )
    assert refund.status_code == 200, refund.text

    await _post_webhook(client)

    async with session_factory() as session:
        payment = await store.get_payment(session, payment_id)
        assert payment.status == "refunded"
        attempt = await store.get_quiz_attempt(session, attempt_id)
        assert attempt.is_paid is False

    forced = await client.post(
        "/api/admin/complete-payment", headers=admin_key, json={"paymentId": payment_id},
    )
    assert forced.status_code == 400
    assert forced.json()["status"] == "refunded"


@pytest.mark.asyncio
async def test_intent_that_failed_then_succeeded_completes(
    client: AsyncClient, stripe_gateway, session_factory,
) -> None:
    attempt_id = await _signup_with_attempt(client)
    created = await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    failed = _succeeded_event()
    failed["type"] = "payment_intent.payment_failed"
    stripe_gateway.construct_event.return_value = failed
    await _post_webhook(client)

    stripe_gateway.construct_event.return_value = _succeeded_event()
    await _post_webhook(client)

    async with session_factory() as session:
        payment = await store.get_payment(session, created.json()["paymentId"])
        assert payment.status == "completed"
        attempt = await store.get_quiz_attempt(session, attempt_id)
        assert attempt.is_paid is True


@pytest.mark.asyncio
async def test_admin_complete_payment(client: AsyncClient, session_factory, admin_key) -> None:
    attempt_id = await _signup_with_attempt(client)
    created = await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    response = await client.post(
        "/api/admin/complete-payment", headers=admin_key, json={"paymentId": created.json()["paymentId"]},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"


@pytest.mark.asyncio
async def test_admin_reconcile_and_cleanup(client: AsyncClient, admin_key) -> None:
    reconciled = await client.post("/api/admin/reconcile-payments", headers=admin_key)
    assert reconciled.json() == {"success": True, "repaired": 0}

    swept = await client.post("/api/admin/cleanup", headers=admin_key)
    assert swept.json() == {"success": True, "deletedAttempts": 0, "deletedUsers": 0}
