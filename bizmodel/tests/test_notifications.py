"""
Email tests.

  - EmailCooldown with a fake clock (1-minute gap, then 5-minute gap after five sends)
  - ResendClient against httpx.MockTransport
  - /api/send-quiz-results, /api/send-full-report, /api/email-link with the
    MagicMock Resend client from conftest.py

Run from the project root: pytest bizmodel/tests/test_notifications.py -v
"""
from __future__ import annotations

import json

import httpx
import pytest
from httpx import AsyncClient

from bizmodel.config import settings
from bizmodel.errors import UpstreamProviderError
from bizmodel.main import app
from bizmodel.notifications.cooldown import (
    ENTRY_IDLE_SECONDS,
    EXTENDED_COOLDOWN_SECONDS,
    INITIAL_COOLDOWN_SECONDS,
    INITIAL_EMAIL_LIMIT,
    EmailCooldown,
)
from bizmodel.notifications.resend_client import ResendClient
from bizmodel.tests.fakes import FakeClock

EMAIL = "jane@example.com"
QUIZ = {"mainMotivation": "financial-freedom", "weeklyTimeCommitment": 20}
ANALYSIS = {
    "recommendations": [
        {"businessModel": "Freelancing", "fitScore": 91, "analysis": "Fast start", "timeToProfit": "1-2 months"},
    ],
}


# ---------------------------------------------------------------------------
# Cooldown
# ---------------------------------------------------------------------------

def test_cooldown_spaces_first_sends_one_minute_apart() -> None:
    clock = FakeClock()
    cooldown = EmailCooldown(clock=clock)
    assert cooldown.check(EMAIL).allowed

    clock.advance(INITIAL_COOLDOWN_SECONDS - 1)
    denied = cooldown.check("JANE@example.com")
    assert not denied.allowed
    assert denied.kind == "cooldown"
    assert denied.remaining_seconds == 1

    clock.advance(1)
    assert cooldown.check(EMAIL).allowed


def test_cooldown_extends_after_initial_sends() -> None:
    clock = FakeClock()
    cooldown = EmailCooldown(clock=clock)
    for _ in range(INITIAL_EMAIL_LIMIT + 1):
        assert cooldown.check(EMAIL).allowed
        clock.advance(INITIAL_COOLDOWN_SECONDS)

    denied = cooldown.check(EMAIL)
    assert not denied.allowed
    assert denied.kind == "extended"
    assert denied.remaining_seconds == EXTENDED_COOLDOWN_SECONDS - INITIAL_COOLDOWN_SECONDS


def test_cooldown_is_per_address_and_swept_when_idle() -> None:
    clock = FakeClock()
    cooldown = EmailCooldown(clock=clock)
    cooldown.check(EMAIL)
    assert cooldown.check("other@example.com").allowed

    clock.advance(ENTRY_IDLE_SECONDS)
    assert cooldown.sweep() == 2
    assert len(cooldown) == 0


# ---------------------------------------------------------------------------
# Resend client
# ---------------------------------------------------------------------------

def _resend(handler) -> ResendClient:
    http = httpx.AsyncClient(base_url="https://resend.test", transport=httpx.MockTransport(handler))
    return ResendClient("re_key", "BizModelAI <team@bizmodelai.com>", "https://resend.test", http=http)


@pytest.mark.asyncio
async def test_resend_client_posts_email() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/emails"
        assert request.headers["Authorization"] == "Bearer re_key"
        body = json.loads(request.content)
        assert body["to"] == [EMAIL]
        assert body["from"] == "BizModelAI <team@bizmodelai.com>"
        return httpx.Response(200, json={"id": "em_1"})

    assert await _resend(handler).send(EMAIL, "Subject", "<p>hi</p>") == "em_1"


@pytest.mark.asyncio
async def test_resend_error_is_upstream_error() -> None:
    client = _resend(lambda request: httpx.Response(422, json={"message": "invalid from"}))
    with pytest.raises(UpstreamProviderError):
        await client.send(EMAIL, "Subject", "<p>hi</p>")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

async def _signup_with_attempt(client: AsyncClient) -> int:
    await client.post(
        "/api/auth/signup",
        json={"email": EMAIL, "password": "Sup3rSecret", "firstName": "Jane", "lastName": "Doe"},
    )
    saved = await client.post("/api/save-quiz-data", json={"quizData": QUIZ})
    return saved.json()["quizAttemptId"]


async def _unlock(client: AsyncClient, stripe_gateway, attempt_id: int) -> None:
    await client.post("/api/create-report-unlock-payment", json={"quizAttemptId": attempt_id})
    stripe_gateway.construct_event.return_value = {
        "id": "evt_email",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_test_1", "metadata": {}}},
    }
    await client.post("/api/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=sig"})


@pytest.mark.asyncio
async def test_send_quiz_results(client: AsyncClient, email_client) -> None:
    attempt_id = await _signup_with_attempt(client)
    response = await client.post(
        "/api/send-quiz-results", json={"email": EMAIL, "quizData": QUIZ, "attemptId": attempt_id},
    )
    assert response.status_code == 200, response.text
    assert response.json()["sent"] is True

    to, subject, html = email_client.send.await_args.args
    assert to == EMAIL
    assert subject == "Your BizModelAI Quiz Results"
    assert f"attempt={attempt_id}" in html
    assert "Unlock your full report" in html


@pytest.mark.asyncio
async def test_send_quiz_results_validates_input(client: AsyncClient, email_client) -> None:
    missing = await client.post("/api/send-quiz-results", json={"email": EMAIL})
    assert missing.status_code == 400

    bad = await client.post("/api/send-quiz-results", json={"email": "nope", "quizData": QUIZ})
    assert bad.status_code == 400
    assert bad.json()["details"][0]["field"] == "email"
    email_client.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_second_email_within_cooldown_is_429(client: AsyncClient, email_client) -> None:
    first = await client.post("/api/send-quiz-results", json={"email": EMAIL, "quizData": QUIZ})
    assert first.status_code == 200
    second = await client.post("/api/send-quiz-results", json={"email": EMAIL, "quizData": QUIZ})
    assert second.status_code == 429
    info = second.json()["rateLimitInfo"]
    assert info["type"] == "cooldown"
    assert 0 < info["remainingTime"] <= INITIAL_COOLDOWN_SECONDS
    email_client.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_unsubscribed_recipient_is_skipped(client: AsyncClient, email_client) -> None:
    await client.post(
        "/api/auth/signup",
        json={"email": EMAIL, "password": "Sup3rSecret", "firstName": "Jane", "lastName": "Doe"},
    )
    await client.post("/api/auth/unsubscribe", json={"email": EMAIL})

    response = await client.post("/api/send-quiz-results", json={"email": EMAIL, "quizData": QUIZ})
    assert response.status_code == 200
    assert response.json()["sent"] is False
    assert response.json()["skippedReason"] == "unsubscribed"
    email_client.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_provider_failure_is_500(client: AsyncClient, email_client) -> None:
    email_client.send.side_effect = UpstreamProviderError("Failed to send email")
    response = await client.post("/api/send-quiz-results", json={"email": EMAIL, "quizData": QUIZ})
    assert response.status_code == 500
    assert response.json()["code"] == "UPSTREAM_ERROR"


@pytest.mark.asyncio
async def test_send_quiz_results_for_another_users_attempt_is_403(client: AsyncClient, email_client) -> None:
    attempt_id = await _signup_with_attempt(client)
    client.cookies.clear()
    other_device = {"User-Agent": "another-browser"}
    await client.post(
        "/api/auth/signup",
        json={"email": "sam@example.com", "password": "Sup3rSecret", "firstName": "Sam", "lastName": "Roe"},
        headers=other_device,
    )
    response = await client.post(
        "/api/send-quiz-results",
        json={"email": "sam@example.com", "quizData": QUIZ, "attemptId": attempt_id},
        headers=other_device,
    )
    assert response.status_code == 403
    email_client.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_full_report_requires_unlock(client: AsyncClient, email_client) -> None:
    attempt_id = await _signup_with_attempt(client)
    response = await client.post("/api/send-full-report", json={"email": EMAIL, "attemptId": attempt_id})
    assert response.status_code == 402
    assert response.json()["suggestion"] == "unlock_report"
    email_client.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_full_report_after_unlock_includes_recommendations(
    client: AsyncClient, stripe_gateway, email_client,
) -> None:
    attempt_id = await _signup_with_attempt(client)
    await client.post(
        f"/api/quiz-attempts/attempt/{attempt_id}/ai-content",
        json={"contentType": "business-fit-analysis", "content": ANALYSIS},
    )
    await _unlock(client, stripe_gateway, attempt_id)

    response = await client.post("/api/send-full-report", json={"email": EMAIL, "attemptId": attempt_id})
    assert response.status_code == 200, response.text
    _, subject, html = email_client.send.await_args.args
    assert subject == "Your Complete Business Report - BizModelAI"
    assert "Freelancing" in html
    assert "Weekly time commitment" in html


@pytest.mark.asyncio
async def test_email_link(client: AsyncClient) -> None:
    response = await client.get(f"/api/email-link/12/{EMAIL}")
    assert response.status_code == 200
    assert response.json()["link"].endswith("/results?attempt=12&email=jane%40example.com")

    bad = await client.get("/api/email-link/12/not-an-email")
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_unconfigured_email_in_production_is_500(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr(settings, "debug", False)
    app.state.email_client = None
    response = await client.post("/api/send-quiz-results", json={"email": EMAIL, "quizData": QUIZ})
    assert response.status_code == 500
    assert response.json()["code"] == "UPSTREAM_ERROR"
