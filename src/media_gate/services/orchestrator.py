"""Drives one media item from temp file to a published or rejected outcome.

The orchestrator owns every transition out of ``received``:

    received -> uploading_durable -> analyzing -> approved | rejected | failed

Each transition is a compare-and-swap on ``processing_status``; a worker that
loses a swap stops without further side effects. Remote steps that may be
repeated after a crash (durable upload, CDN publish) check for their own
effect before redoing it, so re-entering an item through the recovery sweep is
safe. While an item is held in a transient status the worker refreshes
its ``updated_at`` before every remote call, and stops as soon as that refresh
finds the item has moved on.

Database errors are not caught here. They propagate to the worker pool and
leave the item in a transient state for the recovery sweep.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy.orm import Session

from media_gate.db.session import SessionLocal
from media_gate.models.media import (
    PROCESSING_ANALYZING,
    PROCESSING_APPROVED,
    PROCESSING_FAILED,
    PROCESSING_RECEIVED,
    PROCESSING_REJECTED,
    PROCESSING_UPLOADING_DURABLE,
    TERMINAL_STATUSES,
    MediaItem,
)
from media_gate.models.moderation import DECISION_APPROVED, ModerationDecision
from media_gate.repositories.media_repo import MediaRepository
from media_gate.services.cdn import CdnPublisherClient, asset_title_for, get_cdn_client
from media_gate.services.errors import (
    ErrorKind,
    ItemNotFoundError,
    OwnershipLostError,
    ServiceError,
    SourceMissingError,
    TransientServiceError,
)
from media_gate.services.object_store import (
    ObjectStoreClient,
    get_object_store_client,
    key_for,
)
from media_gate.services.policy import Verdict, decide
from media_gate.services.retry import (
    RetryPolicy,
    publish_retry_policy,
    store_retry_policy,
    with_retry,
)
from media_gate.services.strikes import StrikeLedger
from media_gate.services.text_screening import CONTEXT_VIDEO, TextScreener, get_text_screener
from media_gate.services.transcription import TranscriptionClient, get_transcription_client
from media_gate.services.visual_analysis import VisualAnalysisClient, get_visual_client
from media_gate.utils.files import discard_temp_file, read_temp_file, temp_file_present
from media_gate.utils.hash import blake3_hexdigest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineOutcome:
    """What one ``process`` call observed or achieved.

    ``performed`` is False when the call lost a status swap or found the item
    already terminal; in that case it caused no side effects.
    """

    item_id: str
    status: str
    reason: str | None = None
    decision_id: int | None = None
    performed: bool = True

    @classmethod
    def from_item(cls, item: MediaItem, *, performed: bool) -> PipelineOutcome:
        return cls(
            item_id=item.id,
            status=item.processing_status,
            reason=item.rejection_reason,
            performed=performed,
        )

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class _DurableCopy:
    uri: str
    content_hash: str | None
    uploaded: bool


class ModerationOrchestrator:
    """Runs the upload-to-publish pipeline for one item per ``process`` call."""

    def __init__(
        self,
        *,
        object_store: ObjectStoreClient | None = None,
        cdn: CdnPublisherClient | None = None,
        visual: VisualAnalysisClient | None = None,
        transcriber: TranscriptionClient | None = None,
        screener: TextScreener | None = None,
        store_policy: RetryPolicy | None = None,
        publish_policy: RetryPolicy | None = None,
        db_session: Session | None = None,
    ) -> None:
        self.object_store = object_store or get_object_store_client()
        self.cdn = cdn or get_cdn_client()
        self.visual = visual or get_visual_client()
        self.transcriber = transcriber or get_transcription_client()
        self.screener = screener or get_text_screener()
        self.store_policy = store_policy or store_retry_policy()
        self.publish_policy = publish_policy or publish_retry_policy()
        self._db_session = db_session

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._db_session is not None:
            yield self._db_session
        else:
            with SessionLocal() as db:
                yield db

    async def process(self, item_id: str) -> PipelineOutcome:
        """Move ``item_id`` through the pipeline to a terminal status.

        Raises:
            ItemNotFoundError: no media record exists for ``item_id``.
        """
        with self._session() as db:
            repo = MediaRepository(db)
            item = repo.get(item_id)
            if item is None:
                raise ItemNotFoundError(f"media item {item_id} does not exist")
            if item.is_terminal or item.processing_status != PROCESSING_RECEIVED:
                return PipelineOutcome.from_item(item, performed=False)

            temp_path = item.local_temp_path
            if not repo.compare_and_set_status(
                item_id, PROCESSING_RECEIVED, PROCESSING_UPLOADING_DURABLE
            ):
                logger.info("Item %s claimed by another worker", item_id)
                current = repo.get(item_id)
                return PipelineOutcome.from_item(current or item, performed=False)

            outcome: PipelineOutcome | None = None
            try:
                try:
                    outcome = await self._drive(db, repo, item_id)
                except OwnershipLostError as exc:
                    logger.info("Stopping %s: %s", item_id, exc)
                    outcome = self._lost(repo, item_id)
                return outcome
            finally:
                if outcome is not None and outcome.terminal:
                    discard_temp_file(temp_path)

    async def _drive(self, db: Session, repo: MediaRepository, item_id: str) -> PipelineOutcome:
        item = repo.get(item_id)
        if item is None:
            raise ItemNotFoundError(f"media item {item_id} disappeared")

        try:
            durable = await self._ensure_durable(repo, item)
        except SourceMissingError as exc:
            logger.error("Item %s has no source: %s", item_id, exc)
            return self._fail(repo, item_id, PROCESSING_UPLOADING_DURABLE, exc.kind)
        except ServiceError as exc:
            logger.error("Durable upload of %s failed: %s", item_id, exc)
            return self._fail(repo, item_id, PROCESSING_UPLOADING_DURABLE, _failure_kind(exc))

        temp_path = item.local_temp_path
        values: dict[str, object] = {"durable_uri": durable.uri, "local_temp_path": None}
        if durable.content_hash:
            values["content_hash"] = durable.content_hash
        if not repo.compare_and_set_status(
            item_id, PROCESSING_UPLOADING_DURABLE, PROCESSING_ANALYZING, **values
        ):
            return self._lost(repo, item_id)
        if durable.uploaded:
            discard_temp_file(temp_path)

        item = repo.get(item_id)
        if item is None:
            raise ItemNotFoundError(f"media item {item_id} disappeared")

        latest = repo.latest_decision(item_id)
        if latest is not None and latest.outcome == DECISION_APPROVED:
            logger.info("Reusing approved decision %s for %s", latest.id, item_id)
            return await self._publish(repo, item, latest)

        verdict = await self._analyze(durable.uri)
        if not verdict.approved:
            return await self._reject(db, repo, item, verdict)

        decision = repo.add_decision(
            item_id,
            outcome=verdict.outcome,
            reason=verdict.reason,
            reasoning=verdict.reasoning,
            confidence=verdict.confidence,
            categories=verdict.categories,
            attempt=item.recovery_attempts,
        )
        db.commit()
        return await self._publish(repo, item, decision)

    def _heartbeat(self, repo: MediaRepository, item_id: str, status: str) -> None:
        if not repo.touch(item_id, status):
            raise OwnershipLostError(f"item {item_id} is no longer {status}")

    async def _ensure_durable(self, repo: MediaRepository, item: MediaItem) -> _DurableCopy:
        key = key_for(item.id)

        async def check_once() -> bool:
            self._heartbeat(repo, item.id, PROCESSING_UPLOADING_DURABLE)
            return await self.object_store.exists(key)

        if item.durable_uri:
            exists = await with_retry(
                check_once, self.store_policy, operation=f"durable check {item.id}"
            )
            if exists:
                return _DurableCopy(uri=item.durable_uri, content_hash=None, uploaded=False)

        path = item.local_temp_path
        if path is None or not temp_file_present(path):
            raise SourceMissingError(f"temp file for {item.id} is missing: {path!r}")
        data = await read_temp_file(path)

        async def upload_once() -> str:
            self._heartbeat(repo, item.id, PROCESSING_UPLOADING_DURABLE)
            return await self.object_store.put(key, data, item.content_type)

        uri = await with_retry(
            upload_once, self.store_policy, operation=f"durable upload {item.id}"
        )
        return _DurableCopy(uri=uri, content_hash=blake3_hexdigest(data), uploaded=True)

    async def _analyze(self, source_ref: str) -> Verdict:
        visual, transcript = await asyncio.gather(
            self.visual.analyze(source_ref),
            self.transcriber.transcribe(source_ref),
        )
        text = None
        if transcript.ok and transcript.value is not None:
            text = self.screener.screen(transcript.value.text, CONTEXT_VIDEO)
        return decide(visual, transcript, text)

    async def _publish(
        self, repo: MediaRepository, item: MediaItem, decision: ModerationDecision
    ) -> PipelineOutcome:
        title = asset_title_for(item.id)
        key = key_for(item.id)

        def beat() -> None:
            self._heartbeat(repo, item.id, PROCESSING_ANALYZING)

        async def publish_once() -> str:
            beat()
            asset_id = await self.cdn.find_asset(title)
            if asset_id is None:
                beat()
                asset_id = await self.cdn.create_asset(title)
            beat()
            data = await self.object_store.get(key)
            beat()
            await self.cdn.upload_content(asset_id, data, idempotency_key=item.content_hash)
            return asset_id

        try:
            asset_id = await with_retry(
                publish_once, self.publish_policy, operation=f"publish {item.id}"
            )
        except ServiceError as exc:
            logger.error("Publishing %s failed: %s", item.id, exc)
            return self._fail(
                repo,
                item.id,
                PROCESSING_ANALYZING,
                ErrorKind.PUBLISH_FAILED,
                decision_id=decision.id,
            )

        if not repo.compare_and_set_status(
            item.id,
            PROCESSING_ANALYZING,
            PROCESSING_APPROVED,
            cdn_asset_id=asset_id,
            rejection_reason=None,
        ):
            return self._lost(repo, item.id)
        logger.info("Item %s approved and published as %s", item.id, asset_id)
        return PipelineOutcome(
            item_id=item.id,
            status=PROCESSING_APPROVED,
            decision_id=decision.id,
        )

    async def _purge(self, repo: MediaRepository, item: MediaItem) -> None:
        """Remove durable and CDN copies of rejected content."""
        item_id = item.id
        key = key_for(item_id)

        def beat() -> None:
            self._heartbeat(repo, item_id, PROCESSING_ANALYZING)

        async def delete_durable() -> None:
            beat()
            await self.object_store.delete(key)

        async def delete_asset(asset_id: str) -> None:
            beat()
            await self.cdn.delete_asset(asset_id)

        asset_ids = {item.cdn_asset_id} if item.cdn_asset_id else set()
        try:
            await with_retry(
                delete_durable, self.store_policy, operation=f"purge durable {item_id}"
            )
        except ServiceError as exc:
            logger.error("Could not purge durable copy of %s: %s", item_id, exc)

        try:
            beat()
            found = await self.cdn.find_asset(asset_title_for(item_id))
            if found:
                asset_ids.add(found)
            for asset_id in asset_ids:
                await with_retry(
                    lambda asset_id=asset_id: delete_asset(asset_id),
                    self.publish_policy,
                    operation=f"purge cdn {item_id}",
                )
        except ServiceError as exc:
            logger.error("Could not purge CDN copy of %s: %s", item_id, exc)

    async def _reject(
        self, db: Session, repo: MediaRepository, item: MediaItem, verdict: Verdict
    ) -> PipelineOutcome:
        await self._purge(repo, item)

        reason = verdict.reason or ErrorKind.POLICY_VIOLATION.value
        # Status, decision and strike commit together or not at all.
        if not repo.compare_and_set_status(
            item.id,
            PROCESSING_ANALYZING,
            PROCESSING_REJECTED,
            commit=False,
            rejection_reason=reason,
            cdn_asset_id=None,
        ):
            db.rollback()
            return self._lost(repo, item.id)

        decision = repo.add_decision(
            item.id,
            outcome=verdict.outcome,
            reason=verdict.reason,
            reasoning=verdict.reasoning,
            confidence=verdict.confidence,
            categories=verdict.categories,
            attempt=item.recovery_attempts,
        )
        StrikeLedger(db).issue_strike(
            owner_id=item.owner_id,
            subject_kind=item.kind,
            subject_id=item.id,
            reason=reason,
            decision_id=decision.id,
        )
        db.commit()
        logger.info("Item %s rejected: %s", item.id, reason)
        return PipelineOutcome(
            item_id=item.id,
            status=PROCESSING_REJECTED,
            reason=reason,
            decision_id=decision.id,
        )

    def _fail(
        self,
        repo: MediaRepository,
        item_id: str,
        expected: str,
        kind: ErrorKind,
        *,
        decision_id: int | None = None,
    ) -> PipelineOutcome:
        if not repo.compare_and_set_status(
            item_id, expected, PROCESSING_FAILED, rejection_reason=kind.value
        ):
            return self._lost(repo, item_id)
        logger.warning("Item %s failed: %s", item_id, kind.value)
        return PipelineOutcome(
            item_id=item_id,
            status=PROCESSING_FAILED,
            reason=kind.value,
            decision_id=decision_id,
        )

    def _lost(self, repo: MediaRepository, item_id: str) -> PipelineOutcome:
        logger.info("Item %s changed status underneath this worker; stopping", item_id)
        current = repo.get(item_id)
        if current is None:
            raise ItemNotFoundError(f"media item {item_id} disappeared")
        return PipelineOutcome.from_item(current, performed=False)


def _failure_kind(exc: ServiceError) -> ErrorKind:
    if isinstance(exc, TransientServiceError):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT
