# src/media_gate/models/__init__.py
"""SQLAlchemy models for the Media Gate service."""

from .media import MediaItem
from .moderation import ModerationDecision
from .strike import Strike

__all__ = [
    "MediaItem",
    "ModerationDecision",
    "Strike",
]
