"""
models/payment.py — SQLAlchemy ORM model for report-unlock payments.

Table: payments

Status machine: pending → completed | failed, completed → refunded (admin only).
A partial unique index allows at most ONE completed report_unlock per
(user_id, quiz_attempt_id) — the database backstop for the double-charge check.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from bizmodel.database import Base

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

# failed -> completed covers a Stripe intent that succeeds on a retried card
COMPLETABLE_STATUSES = (PAYMENT_PENDING, PAYMENT_FAILED)

REPORT_UNLOCK = "report_unlock"

_COMPLETED_UNLOCK = text("status = 'completed' AND type = 'report_unlock'")


class PaymentORM(Base):
    """
    ORM model for a payment against a quiz attempt.

    Exactly one of stripe_payment_intent_id / paypal_order_id is set,
    matching the provider that created the payment.
    """
    __tablename__ = "payments"
    __table_args__ = (
        Index(
            "uq_payments_completed_unlock",
            "user_id",
            "quiz_attempt_id",
            unique=True,
            postgresql_where=_COMPLETED_UNLOCK,
            sqlite_where=_COMPLETED_UNLOCK,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quiz_attempt_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("quiz_attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Charged amount in the smallest currency unit (499 / 999)",
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=REPORT_UNLOCK,
        comment="Purchase type — only 'report_unlock' today",
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=PAYMENT_PENDING,
        comment="'pending' | 'completed' | 'failed' | 'refunded'",
    )
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True,
    )
    paypal_order_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def amount(self) -> str:
        """Dollar amount as the API renders it, e.g. '9.99'."""
        return f"{self.amount_cents / 100:.2f}"

    @property
    def provider_reference(self) -> Optional[str]:
        return self.stripe_payment_intent_id or self.paypal_order_id
