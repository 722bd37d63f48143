"""Background recovery of items stuck mid-pipeline.

This module provides the RecoverySweep worker. On a fixed interval it looks
for items parked in a transient status (``uploading_durable`` or
``analyzing``) whose last update is older than the staleness window. Each one
is claimed with a compare-and-swap on its status and ``updated_at`` and then
either re-armed into the worker pool or, once it has used up its recovery
attempts, failed with ``AbandonedAfterMaxRetries``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from media_gate.core.settings import settings
from media_gate.db.session import SessionLocal
from media_gate.db.time import seconds_ago
from media_gate.models.media import (
    PROCESSING_FAILED,
    PROCESSING_RECEIVED,
    TRANSIENT_STATUSES,
)
from media_gate.repositories.media_repo import MediaRepository
from media_gate.services.errors import ErrorKind
from media_gate.services.worker_pool import WorkerPool, get_worker_pool
from media_gate.utils.files import discard_temp_file

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Item ids handled by one sweep."""

    rearmed: list[str] = field(default_factory=list)
    resubmitted: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class RecoverySweep:
    """Periodically re-arms or fails items abandoned in a transient status."""

    def __init__(
        self,
        pool: WorkerPool | None = None,
        db_session: Session | None = None,
        *,
        staleness_seconds: float | None = None,
        max_attempts: int | None = None,
        interval_seconds: float | None = None,
        batch_size: int | None = None,
    ) -> None:
        """Initialize the recovery sweep.

        Args:
            pool: Worker pool that receives re-armed items. Defaults to the global pool.
            db_session: Optional database session. If None, creates new sessions as needed.
            staleness_seconds: Age after which a transient item counts as abandoned.
            max_attempts: Recovery attempts allowed before an item is failed.
            interval_seconds: Delay between sweeps.
            batch_size: Maximum items examined per sweep.
        """
        self.pool = pool or get_worker_pool()
        self._db_session = db_session
        self.staleness_seconds = (
            settings.recovery_staleness_seconds if staleness_seconds is None else staleness_seconds
        )
        self.max_attempts = settings.recovery_max_attempts if max_attempts is None else max_attempts
        self.interval_seconds = (
            settings.recovery_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.batch_size = batch_size or settings.recovery_batch_size
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._sweep_lock = asyncio.Lock()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._db_session is not None:
            yield self._db_session
        else:
            with SessionLocal() as db:
                yield db

    async def start(self) -> None:
        """Start the background sweep loop."""

        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        interval = max(0.1, float(self.interval_seconds))

        while not self._stopping.is_set():
            try:
                await self.run_once()
            except SQLAlchemyError as e:
                logger.error("RecoverySweep encountered database error: %s", e, exc_info=True)
            except Exception as e:
                logger.error("RecoverySweep encountered unexpected error: %s", e, exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                continue

    async def run_once(self) -> SweepReport | None:
        """Run one sweep unless another is already in flight."""
        if self._sweep_lock.locked():
            logger.debug("RecoverySweep tick skipped; previous sweep still running")
            return None
        async with self._sweep_lock:
            return self.sweep_once()

    def sweep_once(self) -> SweepReport:
        """Claim every stale transient item once and resolve it."""
        report = SweepReport()
        cutoff = seconds_ago(self.staleness_seconds)

        with self._session() as db:
            repo = MediaRepository(db)
            # Items still waiting in received were submitted once but never picked up.
            waiting = [
                item.id
                for item in repo.list_stale((PROCESSING_RECEIVED,), cutoff, self.batch_size)
            ]
            for item_id in waiting:
                if self.pool.submit(item_id):
                    report.resubmitted.append(item_id)

            stale = repo.list_stale(TRANSIENT_STATUSES, cutoff, self.batch_size)
            if stale:
                logger.info("RecoverySweep found %d stale items", len(stale))

            # Snapshot before the first claim commits and expires the loaded rows.
            candidates = [
                (
                    item.id,
                    item.processing_status,
                    item.updated_at,
                    item.recovery_attempts,
                    item.local_temp_path,
                )
                for item in stale
            ]

            for item_id, status, updated_at, attempts, temp_path in candidates:
                if attempts >= self.max_attempts:
                    claimed = repo.claim_stale(
                        item_id,
                        status,
                        updated_at,
                        PROCESSING_FAILED,
                        rejection_reason=ErrorKind.ABANDONED.value,
                    )
                    if claimed:
                        discard_temp_file(temp_path)
                        logger.warning(
                            "Item %s abandoned in %s after %d recovery attempts",
                            item_id,
                            status,
                            attempts,
                        )
                        report.abandoned.append(item_id)
                    else:
                        report.skipped.append(item_id)
                    continue

                claimed = repo.claim_stale(
                    item_id,
                    status,
                    updated_at,
                    PROCESSING_RECEIVED,
                    recovery_attempts=attempts + 1,
                )
                if not claimed:
                    logger.debug("Item %s moved on before it could be claimed", item_id)
                    report.skipped.append(item_id)
                    continue

                logger.info(
                    "Re-arming item %s stuck in %s (attempt %d/%d)",
                    item_id,
                    status,
                    attempts + 1,
                    self.max_attempts,
                )
                self.pool.submit(item_id)
                report.rearmed.append(item_id)

        return report
