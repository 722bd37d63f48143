"""Media submission and status endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from media_gate.api.v1.dependencies import SessionDep, WorkerPoolDep
from media_gate.db.time import as_utc
from media_gate.models import MediaItem, ModerationDecision
from media_gate.repositories.media_repo import MediaRepository
from media_gate.schemas.media import (
    MediaStatusResponse,
    ModerationDecisionResponse,
    SubmitResponse,
    visibility_for,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])


def _get_item_or_404(repo: MediaRepository, item_id: str) -> MediaItem:
    item = repo.get(item_id)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Media item not found",
        )
    return item


@router.post(
    "/{item_id}/submit",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_media(item_id: str, db: SessionDep, pool: WorkerPoolDep) -> SubmitResponse:
    """Queue an uploaded item for moderation and return without waiting."""
    item = _get_item_or_404(MediaRepository(db), item_id)

    if not item.is_terminal and not pool.submit(item_id):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Moderation queue is full, try again later",
        )

    return SubmitResponse(
        item_id=item_id,
        accepted=True,
        visibility=visibility_for(item.processing_status),
    )


@router.get("/{item_id}/status", response_model=MediaStatusResponse)
async def get_media_status(item_id: str, db: SessionDep) -> MediaStatusResponse:
    """Return the processing status of an item."""
    item = _get_item_or_404(MediaRepository(db), item_id)
    return MediaStatusResponse(
        item_id=item.id,
        visibility=visibility_for(item.processing_status),
        processing_status=item.processing_status,
        rejection_reason=item.rejection_reason,
        cdn_asset_id=item.cdn_asset_id,
        recovery_attempts=item.recovery_attempts,
        updated_at=as_utc(item.updated_at),
    )


@router.get("/{item_id}/decisions", response_model=list[ModerationDecisionResponse])
async def list_media_decisions(item_id: str, db: SessionDep) -> list[ModerationDecision]:
    """Return the append-only moderation history of an item."""
    repo = MediaRepository(db)
    _get_item_or_404(repo, item_id)
    return repo.list_decisions(item_id)
