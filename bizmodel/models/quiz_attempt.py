"""
models/quiz_attempt.py — SQLAlchemy ORM model for quiz submissions.

Table: quiz_attempts

Ownership: user_id (linked) XOR session_id (anonymous, claimable later).
Retention tier is materialised in expires_at:
  anonymous → completed_at + 24h, temporary owner → completed_at + 90d, permanent → NULL
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from bizmodel.database import Base, JSONType


class QuizAttemptORM(Base):
    """
    ORM model for one completed quiz submission.

    quiz_data: opaque answers payload as submitted by the frontend.
               Never logged.
    """
    __tablename__ = "quiz_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Owning user; NULL while the attempt is anonymous",
    )
    session_id: Mapped[Optional[str]] = mapped_column(
        String(512),
        nullable=True,
        index=True,
        comment="Session key of an anonymous submitter; cleared when claimed",
    )
    quiz_data: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        comment="Quiz answers payload (opaque)",
    )
    is_paid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="True once the report for this attempt has been unlocked",
    )
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        comment="Retention deadline by owner tier; NULL = keep forever",
    )
