# src/media_gate/schemas/media.py
"""Media status Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from media_gate.models.media import PROCESSING_APPROVED, PROCESSING_FAILED, PROCESSING_REJECTED

VISIBILITY_PROCESSING = "processing"
VISIBILITY_PUBLISHED = "published"
VISIBILITY_NOT_AVAILABLE = "not_available"


def visibility_for(processing_status: str) -> str:
    """Map an internal processing status onto what the owning account sees."""
    if processing_status == PROCESSING_APPROVED:
        return VISIBILITY_PUBLISHED
    if processing_status in (PROCESSING_REJECTED, PROCESSING_FAILED):
        return VISIBILITY_NOT_AVAILABLE
    return VISIBILITY_PROCESSING


class SubmitResponse(BaseModel):
    """Acknowledgement that an item was queued for moderation."""

    item_id: str
    accepted: bool
    visibility: str


class MediaStatusResponse(BaseModel):
    """Status view of a media item."""

    item_id: str
    visibility: str = Field(..., description="processing, published or not_available")
    processing_status: str
    rejection_reason: str | None = None
    cdn_asset_id: str | None = None
    recovery_attempts: int
    updated_at: datetime


class ModerationDecisionResponse(BaseModel):
    """One entry of an item's moderation history."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    media_item_id: str
    outcome: str
    reason: str | None
    reasoning: str
    confidence: float
    categories: list[str]
    moderator_id: str | None
    attempt: int
    created_at: datetime
