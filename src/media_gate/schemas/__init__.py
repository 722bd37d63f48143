# src/media_gate/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .media import MediaStatusResponse, ModerationDecisionResponse, SubmitResponse
from .moderation import TextScreenBatchRequest, TextScreenRequest, TextScreenResponse

__all__ = [
    "MediaStatusResponse", "ModerationDecisionResponse", "SubmitResponse",
    "TextScreenBatchRequest", "TextScreenRequest", "TextScreenResponse",
]
