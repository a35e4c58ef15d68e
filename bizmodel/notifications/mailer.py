"""
mailer.py — One delivery path for every outgoing email.

deliver() order:
  1. recipient has unsubscribed → skipped, no cooldown slot used
  2. cooldown denies            → RateLimited (429, rateLimitInfo)
  3. no Resend client           → skipped in debug, UpstreamProviderError otherwise
  4. Resend send                → UpstreamProviderError on failure
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.config import settings
from bizmodel.errors import RateLimited, UpstreamProviderError
from bizmodel.notifications.cooldown import EmailCooldown
from bizmodel.notifications.resend_client import ResendClient

logger = logging.getLogger(__name__)

SKIPPED_UNSUBSCRIBED = "unsubscribed"
SKIPPED_NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class DeliveryResult:
    sent: bool
    message_id: Optional[str] = None
    skipped_reason: Optional[str] = None


async def deliver(
    db: AsyncSession,
    client: Optional[ResendClient],
    cooldown: EmailCooldown,
    to: str,
    subject: str,
    html: str,
) -> DeliveryResult:
    user = await store.get_user_by_email(db, to)
    if user is not None and user.is_unsubscribed:
        logger.info("Email skipped user_id=%s has unsubscribed", user.id)
        return DeliveryResult(sent=False, skipped_reason=SKIPPED_UNSUBSCRIBED)

    decision = cooldown.check(to)
    if not decision.allowed:
        raise RateLimited(
            "Please wait before requesting another email.",
            extra={"rateLimitInfo": {"remainingTime": decision.remaining_seconds, "type": decision.kind}},
        )

    if client is None:
        if settings.debug:
            logger.info("Email service not configured; not sending subject=%r", subject)
            return DeliveryResult(sent=False, skipped_reason=SKIPPED_NOT_CONFIGURED)
        raise UpstreamProviderError("Email service is not configured")

    message_id = await client.send(store.normalize_email(to), subject, html)
    return DeliveryResult(sent=True, message_id=message_id)
