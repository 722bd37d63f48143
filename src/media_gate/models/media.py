"""Media item records and their processing state machine."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import CHAR, JSON, DateTime, Float, SmallInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from media_gate.db.session import Base
from media_gate.db.time import utcnow

PROCESSING_RECEIVED = "received"
PROCESSING_UPLOADING_DURABLE = "uploading_durable"
PROCESSING_ANALYZING = "analyzing"
PROCESSING_APPROVED = "approved"
PROCESSING_REJECTED = "rejected"
PROCESSING_FAILED = "failed"

# States that must not persist past the recovery staleness window.
TRANSIENT_STATUSES = (PROCESSING_UPLOADING_DURABLE, PROCESSING_ANALYZING)
TERMINAL_STATUSES = (PROCESSING_APPROVED, PROCESSING_REJECTED, PROCESSING_FAILED)

MEDIA_KIND_POST = "post"
MEDIA_KIND_THREAD_MESSAGE = "thread-message"
MEDIA_KIND_COMMENT = "comment"
MEDIA_KINDS = (MEDIA_KIND_POST, MEDIA_KIND_THREAD_MESSAGE, MEDIA_KIND_COMMENT)


class MediaItem(Base):
    """One user submission moving through the upload-to-publish pipeline.

    The ``id`` doubles as the content key in the durable store. Only the
    orchestrator moves an item out of ``received``; the recovery sweep may
    re-arm transient items or fail them once they exhaust their attempts.
    """

    __tablename__ = "media_item"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default=MEDIA_KIND_POST)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Location/category metadata from the front door; opaque to the pipeline.
    metadata_: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        name="metadata",
    )
    content_type: Mapped[str] = mapped_column(String(100), nullable=False, default="video/mp4")
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    local_temp_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    durable_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_hash: Mapped[str | None] = mapped_column(CHAR(64), nullable=True)  # BLAKE3 hex
    # Set only once the item is approved and published.
    cdn_asset_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    processing_status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default=PROCESSING_RECEIVED,
        index=True,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    recovery_attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )

    @property
    def is_terminal(self) -> bool:
        return self.processing_status in TERMINAL_STATUSES
