"""
resend_client.py — Resend transactional email adapter over httpx.

  send()  → POST /emails {from, to: [...], subject, html} → provider message id

Any non-2xx answer or transport failure is an UpstreamProviderError; the
caller decides whether the cooldown slot it reserved is still spent.
"""
import logging
from typing import Optional

import httpx

from bizmodel.errors import UpstreamProviderError

logger = logging.getLogger(__name__)


class ResendClient:
    def __init__(
        self,
        api_key: str,
        sender: str,
        base_url: str,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._sender = sender
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=15.0)
        self._headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    async def aclose(self) -> None:
        await self._http.aclose()

    async def send(self, to: str, subject: str, html: str) -> str:
        try:
            response = await self._http.post(
                "/emails",
                headers=self._headers,
                json={"from": self._sender, "to": [to], "subject": subject, "html": html},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("Resend send failed status=%d subject=%r", exc.response.status_code, subject)
            raise UpstreamProviderError("Failed to send email", details=exc.response.text) from exc
        except httpx.HTTPError as exc:
            logger.error("Resend transport error: %s", exc)
            raise UpstreamProviderError("Email service is unreachable", details=str(exc)) from exc

        message_id = response.json().get("id", "")
        logger.info("Email sent message_id=%s subject=%r", message_id, subject)
        return message_id
