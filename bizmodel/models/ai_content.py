"""
models/ai_content.py — SQLAlchemy ORM model for cached AI output.

Table: ai_contents

One row per (quiz_attempt_id, content_type). No TTL — rows live as long as
their quiz attempt (ON DELETE CASCADE). content_type values starting with
'model_' are business-model specific and are purged on promotion.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bizmodel.database import Base, JSONType


class AIContentORM(Base):
    __tablename__ = "ai_contents"
    __table_args__ = (
        UniqueConstraint("quiz_attempt_id", "content_type", name="uq_ai_contents_attempt_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quiz_attempt_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("quiz_attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Cache key within the attempt, e.g. 'results-preview', 'model_freelancing'",
    )
    content: Mapped[Any] = mapped_column(
        JSONType,
        nullable=False,
        comment="AI output payload (opaque JSON)",
    )
    content_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="SHA-256 of the canonical JSON content",
    )
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
