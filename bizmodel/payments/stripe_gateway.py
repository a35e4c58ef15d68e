"""
stripe_gateway.py — Stripe adapter for the payment orchestrator.

stripe-python is synchronous; every network call runs in a worker thread via
asyncio.to_thread so the event loop keeps serving other requests.

Error mapping:
  AuthenticationError / PermissionError → PaymentConfigurationError (bad or missing key)
  any other StripeError                 → UpstreamProviderError
  bad webhook signature / payload       → ValidationError (400)
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import stripe

from bizmodel.errors import PaymentConfigurationError, UpstreamProviderError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderPayment:
    """What a provider hands back when a payment object is created."""
    reference: str
    client_secret: Optional[str] = None
    approval_url: Optional[str] = None
    status: Optional[str] = None


class StripeGateway:
    provider = "stripe"

    def __init__(self, api_key: str, webhook_secret: str = "") -> None:
        self._api_key = api_key
        self.webhook_secret = webhook_secret

    async def _call(self, func, **params: Any):
        try:
            return await asyncio.to_thread(func, api_key=self._api_key, **params)
        except (stripe.AuthenticationError, stripe.PermissionError) as exc:
            logger.error("Stripe rejected credentials: %s", exc)
            raise PaymentConfigurationError(
                "Payment system configuration error. Please contact support.",
                details=str(exc),
            ) from exc
        except stripe.StripeError as exc:
            logger.error("Stripe call failed: %s", exc)
            raise UpstreamProviderError("Payment provider error", details=str(exc)) from exc

    async def create_payment(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        description: str,
        receipt_email: Optional[str] = None,
    ) -> ProviderPayment:
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "metadata": metadata,
            "description": description,
            "automatic_payment_methods": {"enabled": True},
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        intent = await self._call(stripe.PaymentIntent.create, **params)
        logger.info("Stripe PaymentIntent created intent_id=%s amount_cents=%d", intent["id"], amount_cents)
        return ProviderPayment(
            reference=intent["id"],
            client_secret=intent["client_secret"],
            status=intent["status"],
        )

    async def retrieve_payment_intent(self, intent_id: str) -> Any:
        return await self._call(stripe.PaymentIntent.retrieve, id=intent_id)

    async def list_succeeded_payment_intents(self, since: datetime) -> list[Any]:
        """Succeeded intents created at or after `since` (auto-paginated)."""
        def _list(api_key: str) -> list[Any]:
            page = stripe.PaymentIntent.list(
                api_key=api_key, created={"gte": int(since.timestamp())}, limit=100,
            )
            return [i for i in page.auto_paging_iter() if i["status"] == "succeeded"]

        return await self._call(_list)

    async def create_refund(
        self, payment_intent_id: str, amount_cents: int, metadata: dict[str, str]
    ) -> Any:
        refund = await self._call(
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=amount_cents,
            reason="requested_by_customer",
            metadata=metadata,
        )
        logger.info("Stripe refund created refund_id=%s status=%s", refund["id"], refund["status"])
        return refund

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Any:
        if not self.webhook_secret:
            raise ValidationError("Webhook secret not configured")
        if not signature:
            raise ValidationError("Missing Stripe-Signature header")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (stripe.SignatureVerificationError, ValueError) as exc:
            logger.warning("Stripe webhook signature verification failed: %s", exc)
            raise ValidationError("Webhook signature verification failed") from exc
