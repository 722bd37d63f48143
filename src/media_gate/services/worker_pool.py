"""Bounded pool of concurrent orchestrator invocations.

``submit`` only enqueues an item id and returns. The database row is the
source of truth, so an id lost from the queue (process exit, full queue) is
picked up again by the recovery sweep.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from media_gate.core.settings import settings
from media_gate.services.errors import MediaGateError
from media_gate.services.orchestrator import ModerationOrchestrator

logger = logging.getLogger(__name__)


class WorkerPool:
    """Feeds queued item ids to a fixed number of orchestrator workers."""

    def __init__(
        self,
        orchestrator: ModerationOrchestrator | None = None,
        *,
        worker_count: int | None = None,
        queue_size: int | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self.worker_count = worker_count or settings.worker_count
        self._queue: asyncio.Queue[str] = asyncio.Queue(
            maxsize=queue_size or settings.worker_queue_size
        )
        self._pending: set[str] = set()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def orchestrator(self) -> ModerationOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = ModerationOrchestrator()
        return self._orchestrator

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def submit(self, item_id: str) -> bool:
        """Enqueue ``item_id`` for processing and return immediately.

        Returns False when the queue is full; the item stays in the database
        and is retried by the recovery sweep.
        """
        if item_id in self._pending:
            return True
        try:
            self._queue.put_nowait(item_id)
        except asyncio.QueueFull:
            logger.warning("Worker queue full; %s left for recovery", item_id)
            return False
        self._pending.add(item_id)
        return True

    async def start(self) -> None:
        """Start the worker tasks."""

        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"media-worker-{index}")
            for index in range(self.worker_count)
        ]

    async def stop(self) -> None:
        """Cancel the worker tasks and wait for them to exit."""

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        # asyncio queues bind to the loop that first waits on them; carry any
        # unprocessed ids into a fresh queue so a later start() can use it.
        remaining: list[str] = []
        while not self._queue.empty():
            remaining.append(self._queue.get_nowait())
        self._queue = asyncio.Queue(maxsize=self._queue.maxsize)
        for item_id in remaining:
            self._queue.put_nowait(item_id)

    async def join(self) -> None:
        """Wait until every queued item has been processed."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            item_id = await self._queue.get()
            try:
                outcome = await self.orchestrator.process(item_id)
                logger.debug("Worker %d finished %s: %s", index, item_id, outcome.status)
            except MediaGateError as e:
                logger.warning("Worker %d could not process %s: %s", index, item_id, e)
            except SQLAlchemyError as e:
                logger.error(
                    "Worker %d hit a database error on %s: %s", index, item_id, e, exc_info=True
                )
            except Exception as e:
                # The item stays in its current status for the recovery sweep.
                logger.error(
                    "Worker %d failed unexpectedly on %s: %s", index, item_id, e, exc_info=True
                )
            finally:
                self._pending.discard(item_id)
                self._queue.task_done()


class _WorkerPoolSingleton:
    """Singleton wrapper for WorkerPool."""

    _instance: WorkerPool | None = None

    @classmethod
    def get_instance(cls) -> WorkerPool:
        if cls._instance is None:
            cls._instance = WorkerPool()
        return cls._instance


def get_worker_pool() -> WorkerPool:
    """Return the process-wide worker pool."""
    return _WorkerPoolSingleton.get_instance()
