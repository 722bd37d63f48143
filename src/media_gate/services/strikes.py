"""Strike ledger: policy violations recorded against an account."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from media_gate.models.strike import Strike

logger = logging.getLogger(__name__)


class StrikeLedger:
    """Issues and counts strikes inside the caller's transaction.

    The ledger never commits; the orchestrator writes the strike together with
    the ``rejected`` status so that both land or neither does. A unique
    constraint on ``decision_id`` caps it at one strike per decision.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def issue_strike(
        self,
        owner_id: str,
        subject_kind: str,
        subject_id: str,
        reason: str,
        decision_id: int,
    ) -> int:
        """Stage a strike for ``decision_id`` and return its id."""
        strike = Strike(
            owner_id=owner_id,
            subject_kind=subject_kind,
            subject_id=subject_id,
            reason=reason,
            decision_id=decision_id,
        )
        self.db.add(strike)
        self.db.flush()
        logger.info(
            "Issued strike %s against %s for %s %s (%s)",
            strike.id,
            owner_id,
            subject_kind,
            subject_id,
            reason,
        )
        return strike.id

    def count_for_owner(self, owner_id: str) -> int:
        return self.db.scalar(
            select(func.count()).select_from(Strike).where(Strike.owner_id == owner_id)
        ) or 0
