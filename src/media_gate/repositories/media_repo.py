"""Data access helpers for media items and their moderation decisions."""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from media_gate.db.time import utcnow
from media_gate.models.media import MediaItem
from media_gate.models.moderation import ModerationDecision

__all__ = ["MediaRepository"]


class MediaRepository:
    """Thin wrapper around database access for media items.

    Every status change goes through a compare-and-swap: the UPDATE only
    matches when the row still holds the expected prior status, and the
    affected row count tells the caller whether it won.
    """

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get(self, item_id: str) -> MediaItem | None:
        """Return a media item, refreshed from the database."""
        return self.session.get(MediaItem, item_id, populate_existing=True)

    def compare_and_set_status(
        self,
        item_id: str,
        expected: str,
        new: str,
        *,
        commit: bool = True,
        **values: Any,
    ) -> bool:
        """Move ``item_id`` from ``expected`` to ``new`` and apply ``values``.

        Returns False, changing nothing, when the row is no longer in
        ``expected``.
        """
        stmt = (
            update(MediaItem)
            .where(MediaItem.id == item_id, MediaItem.processing_status == expected)
            .values(processing_status=new, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        won = self.session.execute(stmt).rowcount == 1
        if commit:
            self.session.commit()
        return won

    def touch(self, item_id: str, expected: str) -> bool:
        """Refresh ``updated_at`` while the item is still in ``expected``.

        A worker calls this before each remote call so the recovery sweep
        never sees a live item as stale.
        """
        stmt = (
            update(MediaItem)
            .where(MediaItem.id == item_id, MediaItem.processing_status == expected)
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        won = self.session.execute(stmt).rowcount == 1
        self.session.commit()
        return won

    def claim_stale(
        self,
        item_id: str,
        expected_status: str,
        expected_updated_at: datetime,
        new: str,
        **values: Any,
    ) -> bool:
        """CAS on both status and ``updated_at`` so that progress made since the
        stale read makes the claim fail."""
        stmt = (
            update(MediaItem)
            .where(
                MediaItem.id == item_id,
                MediaItem.processing_status == expected_status,
                MediaItem.updated_at == expected_updated_at,
            )
            .values(processing_status=new, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        won = self.session.execute(stmt).rowcount == 1
        self.session.commit()
        return won

    def list_stale(
        self,
        statuses: Iterable[str],
        older_than: datetime,
        limit: int,
    ) -> list[MediaItem]:
        """Return items parked in ``statuses`` with no progress since ``older_than``."""
        result = self.session.execute(
            select(MediaItem)
            .where(
                MediaItem.processing_status.in_(tuple(statuses)),
                MediaItem.updated_at < older_than,
            )
            .order_by(MediaItem.updated_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars())

    def add_decision(
        self,
        item_id: str,
        *,
        outcome: str,
        reason: str | None,
        reasoning: str,
        confidence: float,
        categories: Iterable[str],
        attempt: int,
        moderator_id: str | None = None,
    ) -> ModerationDecision:
        """Stage a new decision row and flush it so its id is available."""
        decision = ModerationDecision(
            media_item_id=item_id,
            outcome=outcome,
            reason=reason,
            reasoning=reasoning,
            confidence=confidence,
            categories=list(categories),
            attempt=attempt,
            moderator_id=moderator_id,
        )
        self.session.add(decision)
        self.session.flush()
        return decision

    def latest_decision(self, item_id: str) -> ModerationDecision | None:
        result = self.session.execute(
            select(ModerationDecision)
            .where(ModerationDecision.media_item_id == item_id)
            .order_by(ModerationDecision.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    def list_decisions(self, item_id: str) -> list[ModerationDecision]:
        result = self.session.execute(
            select(ModerationDecision)
            .where(ModerationDecision.media_item_id == item_id)
            .order_by(ModerationDecision.id)
        )
        return list(result.scalars())
