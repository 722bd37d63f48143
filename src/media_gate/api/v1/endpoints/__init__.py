# src/media_gate/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .media import router as media_router
from .moderation import router as moderation_router

__all__ = [
    "media_router",
    "moderation_router",
]
