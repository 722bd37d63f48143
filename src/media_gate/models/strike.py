"""Account strikes issued for rejected submissions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from media_gate.db.session import Base
from media_gate.db.time import utcnow


class Strike(Base):
    """A recorded policy violation against an account."""

    __tablename__ = "strike"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    subject_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("media_item.id", ondelete="CASCADE"),
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    # At most one strike per rejected decision.
    decision_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("moderation_decision.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
