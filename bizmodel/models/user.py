"""
models/user.py — SQLAlchemy ORM model for user accounts.

Table: users

Two tiers share this table:
  - temporary  (is_temporary=True):  email-only / signed-up but unpaid, expires_at set (90 days)
  - permanent  (is_temporary=False): promoted by a completed payment, expires_at NULL

Temporary rows may carry a password hash (signup) but cannot log in until promoted.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from bizmodel.database import Base


class UserORM(Base):
    """
    ORM model for a user account.

    session_id: the derived session key (IP + user-agent) that created a
                temporary record. Cleared on promotion.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(
        String(320),
        unique=True,
        nullable=False,
        comment="Lower-cased email. Unique across temporary and permanent users.",
    )
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        comment="bcrypt hash. NULL for email-only temporary users.",
    )
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_temporary: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="True until the first completed payment promotes the account",
    )
    is_paid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="True once any report unlock has completed — drives repeat-purchase pricing",
    )
    is_unsubscribed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    session_id: Mapped[Optional[str]] = mapped_column(
        String(512),
        nullable=True,
        comment="Session key that created the temporary record",
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        comment="Set only for temporary users; NULL once permanent",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
