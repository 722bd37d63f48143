"""Append-only audit trail of automated moderation verdicts."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, SmallInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from media_gate.db.session import Base
from media_gate.db.time import utcnow

DECISION_APPROVED = "approved"
DECISION_REJECTED = "rejected"


class ModerationDecision(Base):
    """Immutable record of one completed analysis-to-verdict resolution."""

    __tablename__ = "moderation_decision"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    media_item_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("media_item.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    # Machine-readable code: AnalysisIncomplete, a visual category, or PolicyViolation.
    reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    categories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # Null means the verdict was automated.
    moderator_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    attempt: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
