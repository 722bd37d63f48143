"""Standalone text screening for comment and chat paths."""

from __future__ import annotations

from fastapi import APIRouter

from media_gate.api.v1.dependencies import TextScreenerDep
from media_gate.schemas.moderation import (
    TextScreenBatchRequest,
    TextScreenRequest,
    TextScreenResponse,
)
from media_gate.services.text_screening import ScreeningResult

router = APIRouter(prefix="/moderation", tags=["moderation"])


def _to_response(result: ScreeningResult) -> TextScreenResponse:
    return TextScreenResponse(
        flagged=result.flagged,
        reason=result.reason,
        score=result.score,
        matched_allow_list=result.matched_allow_list,
    )


@router.post("/text", response_model=TextScreenResponse)
async def screen_text(payload: TextScreenRequest, screener: TextScreenerDep) -> TextScreenResponse:
    """Screen one comment or chat message."""
    return _to_response(screener.screen(payload.text, payload.context))


@router.post("/text/batch", response_model=list[TextScreenResponse])
async def screen_text_batch(
    payload: TextScreenBatchRequest, screener: TextScreenerDep
) -> list[TextScreenResponse]:
    """Screen several comments or chat messages, preserving order."""
    return [_to_response(result) for result in screener.screen_many(payload.texts, payload.context)]
