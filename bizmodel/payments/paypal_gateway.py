"""
paypal_gateway.py — PayPal Orders v2 adapter over httpx.

Two-phase flow:
  create_payment()  → POST /v2/checkout/orders (intent=CAPTURE) → order id + approve link
  capture_order()   → POST /v2/checkout/orders/{id}/capture   → COMPLETED | other

Order metadata ({userId, quizAttemptId, type}) rides in purchase_units[0].custom_id
as compact JSON (PayPal caps custom_id at 127 chars — keep it small).
The OAuth2 client-credentials token is cached until shortly before expiry.
"""
import json
import logging
import time
from typing import Any, Optional

import httpx

from bizmodel.errors import PaymentConfigurationError, UpstreamProviderError
from bizmodel.payments.stripe_gateway import ProviderPayment

logger = logging.getLogger(__name__)

_TOKEN_REFRESH_MARGIN = 60  # seconds


class PayPalGateway:
    provider = "paypal"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=30.0)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict:
        try:
            response = await self._http.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error("PayPal %s %s failed status=%d", method, url, status)
            if status in (401, 403):
                raise PaymentConfigurationError(
                    "Payment system configuration error. Please contact support.",
                    details=exc.response.text,
                ) from exc
            raise UpstreamProviderError("PayPal request failed", details=exc.response.text) from exc
        except httpx.HTTPError as exc:
            logger.error("PayPal %s %s transport error: %s", method, url, exc)
            raise UpstreamProviderError("PayPal is unreachable", details=str(exc)) from exc
        return response.json()

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        body = await self._request(
            "POST",
            "/v1/oauth2/token",
            auth=(self._client_id, self._client_secret),
            data={"grant_type": "client_credentials"},
        )
        self._token = body["access_token"]
        self._token_expires_at = time.monotonic() + int(body.get("expires_in", 0)) - _TOKEN_REFRESH_MARGIN
        return self._token

    async def _authorized(self, method: str, url: str, **kwargs: Any) -> dict:
        token = await self._access_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        return await self._request(method, url, headers=headers, **kwargs)

    async def create_payment(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        description: str,
        receipt_email: Optional[str] = None,
    ) -> ProviderPayment:
        order = await self._authorized(
            "POST",
            "/v2/checkout/orders",
            json={
                "intent": "CAPTURE",
                "purchase_units": [{
                    "amount": {
                        "currency_code": currency.upper(),
                        "value": f"{amount_cents / 100:.2f}",
                    },
                    "description": description,
                    "custom_id": json.dumps(metadata, separators=(",", ":")),
                }],
            },
        )
        approval_url = next(
            (link["href"] for link in order.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        logger.info("PayPal order created order_id=%s amount_cents=%d", order["id"], amount_cents)
        return ProviderPayment(reference=order["id"], approval_url=approval_url, status=order.get("status"))

    async def capture_order(self, order_id: str) -> dict:
        """Returns {status, capture_id, metadata} for the captured order."""
        body = await self._authorized("POST", f"/v2/checkout/orders/{order_id}/capture", json={})
        capture_id = None
        metadata: dict = {}
        for unit in body.get("purchase_units", []):
            if unit.get("custom_id"):
                try:
                    metadata = json.loads(unit["custom_id"])
                except ValueError:
                    logger.warning("Unparseable custom_id on order_id=%s", order_id)
            captures = unit.get("payments", {}).get("captures", [])
            if captures:
                capture_id = captures[0].get("id")
        logger.info("PayPal capture order_id=%s status=%s", order_id, body.get("status"))
        return {"status": body.get("status"), "capture_id": capture_id, "metadata": metadata}
