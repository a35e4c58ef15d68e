"""
webhook.py — Stripe webhook event dispatch.

  payment_intent.succeeded       → complete_payment()
  payment_intent.payment_failed  → fail_payment()
  anything else                  → logged and ignored

Redelivery is safe: complete_payment() is a no-op for completed payments and
its status transition is a conditional UPDATE.
"""
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel.payments.orchestrator import complete_payment, fail_payment, find_payment_by_reference

logger = logging.getLogger(__name__)


async def handle_stripe_event(db: AsyncSession, event: Any) -> None:
    event_type = event["type"]
    intent = event["data"]["object"]
    logger.info("Stripe webhook event_type=%s event_id=%s", event_type, event.get("id"))

    if event_type == "payment_intent.succeeded":
        payment = await find_payment_by_reference(db, "stripe", intent["id"])
        if payment is None:
            metadata = intent.get("metadata") or {}
            logger.warning(
                "No local payment for intent_id=%s user_id=%s attempt_id=%s — left for reconciliation",
                intent["id"], metadata.get("userId"), metadata.get("quizAttemptId"),
            )
            return
        await complete_payment(db, payment)

    elif event_type == "payment_intent.payment_failed":
        payment = await find_payment_by_reference(db, "stripe", intent["id"])
        await fail_payment(db, payment)

    else:
        logger.debug("Ignoring Stripe event_type=%s", event_type)
