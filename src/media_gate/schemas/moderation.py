# src/media_gate/schemas/moderation.py
"""Text screening Pydantic schemas."""

from typing import Literal

from pydantic import BaseModel, Field

ScreeningContext = Literal["video", "comment", "chat"]


class TextScreenRequest(BaseModel):
    """Schema for screening a single comment or chat message."""

    text: str = Field(..., max_length=10000, description="Text to screen")
    context: ScreeningContext = Field("comment", description="Where the text will appear")


class TextScreenBatchRequest(BaseModel):
    """Schema for screening several comments or chat messages at once."""

    texts: list[str] = Field(..., min_length=1, max_length=100)
    context: ScreeningContext = Field("comment", description="Where the texts will appear")


class TextScreenResponse(BaseModel):
    """Result of screening one piece of text."""

    flagged: bool
    reason: str | None = None
    score: float
    matched_allow_list: bool
