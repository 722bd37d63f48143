# src/media_gate/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import media_router, moderation_router

__all__ = [
    "media_router",
    "moderation_router",
]
