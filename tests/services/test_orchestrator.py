import asyncio
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import func, select, update

from media_gate.db.time import as_utc, utcnow
from media_gate.models import MediaItem, ModerationDecision, Strike
from media_gate.models.media import (
    PROCESSING_ANALYZING,
    PROCESSING_APPROVED,
    PROCESSING_FAILED,
    PROCESSING_RECEIVED,
    PROCESSING_REJECTED,
    PROCESSING_UPLOADING_DURABLE,
)
from media_gate.models.moderation import DECISION_APPROVED, DECISION_REJECTED
from media_gate.repositories.media_repo import MediaRepository
from media_gate.services.analysis import (
    ChannelResult,
    TranscriptResult,
    VisualDetection,
    VisualResult,
)
from media_gate.services.cdn import asset_title_for
from media_gate.services.errors import (
    ErrorKind,
    ItemNotFoundError,
    PermanentServiceError,
    TransientServiceError,
)
from media_gate.services.object_store import key_for
from media_gate.services.recovery import RecoverySweep
from media_gate.services.strikes import StrikeLedger
from media_gate.services.worker_pool import WorkerPool


def _strike_count(db_session):
    return db_session.execute(select(func.count()).select_from(Strike)).scalar_one()


def _violent():
    return ChannelResult.succeeded(
        VisualResult(categories=(VisualDetection(category="violence", likelihood=0.9),))
    )


@pytest.mark.asyncio
async def test_greeting_with_clean_visual_is_approved_and_published(
    orchestrator, make_item, db_session, fetch_item, object_store, cdn
):
    item = make_item()
    temp_path = Path(item.local_temp_path)

    outcome = await orchestrator.process(item.id)

    assert outcome.performed
    assert outcome.status == PROCESSING_APPROVED
    stored = fetch_item(item.id)
    assert stored.processing_status == PROCESSING_APPROVED
    assert stored.cdn_asset_id == cdn.assets[asset_title_for(item.id)]
    assert stored.durable_uri == f"store://test-bucket/{key_for(item.id)}"
    assert stored.local_temp_path is None
    assert len(stored.content_hash) == 64
    assert not temp_path.exists()
    assert key_for(item.id) in object_store.blobs

    decisions = MediaRepository(db_session).list_decisions(item.id)
    assert [d.outcome for d in decisions] == [DECISION_APPROVED]
    assert outcome.decision_id == decisions[0].id
    assert _strike_count(db_session) == 0

    upload = cdn.upload_content.await_args
    assert upload.kwargs["idempotency_key"] == stored.content_hash


@pytest.mark.asyncio
async def test_visual_violation_rejects_purges_and_issues_strike(
    orchestrator, make_item, db_session, fetch_item, object_store, cdn, visual
):
    visual.analyze.return_value = _violent()
    item = make_item(owner_id="owner-7")

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_REJECTED
    assert outcome.reason == "violence"
    stored = fetch_item(item.id)
    assert stored.processing_status == PROCESSING_REJECTED
    assert stored.rejection_reason == "violence"
    assert stored.cdn_asset_id is None
    assert key_for(item.id) not in object_store.blobs
    cdn.create_asset.assert_not_awaited()
    cdn.upload_content.assert_not_awaited()

    decision = MediaRepository(db_session).latest_decision(item.id)
    assert decision.outcome == DECISION_REJECTED
    assert decision.categories == ["violence"]
    assert StrikeLedger(db_session).count_for_owner("owner-7") == 1
    strike = db_session.execute(select(Strike)).scalar_one()
    assert strike.decision_id == decision.id
    assert strike.subject_id == item.id


@pytest.mark.asyncio
async def test_rejection_removes_cdn_asset_left_by_earlier_attempt(
    orchestrator, make_item, cdn, visual
):
    visual.analyze.return_value = _violent()
    item = make_item()
    cdn.assets[asset_title_for(item.id)] = "asset-stale"

    await orchestrator.process(item.id)

    cdn.delete_asset.assert_awaited_once_with("asset-stale")
    assert asset_title_for(item.id) not in cdn.assets


@pytest.mark.asyncio
async def test_transcription_timeout_rejects_as_analysis_incomplete(
    orchestrator, make_item, db_session, fetch_item, transcriber
):
    transcriber.transcribe.return_value = ChannelResult.failed(ErrorKind.TIMEOUT, "timed out")
    item = make_item()

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_REJECTED
    assert outcome.reason == ErrorKind.ANALYSIS_INCOMPLETE.value
    decision = MediaRepository(db_session).latest_decision(item.id)
    assert decision.confidence == 0.0
    assert _strike_count(db_session) == 1


@pytest.mark.asyncio
async def test_abusive_transcript_rejects_as_policy_violation(
    orchestrator, make_item, transcriber
):
    transcriber.transcribe.return_value = ChannelResult.succeeded(
        TranscriptResult(text="Hello. Hi. How are you, you fucking idiot", language="en")
    )
    item = make_item()

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_REJECTED
    assert outcome.reason == ErrorKind.POLICY_VIOLATION.value


@pytest.mark.asyncio
async def test_transient_store_failures_are_retried(
    orchestrator, make_item, db_session, fetch_item, object_store
):
    store_put = object_store.put.side_effect
    failures = iter([TransientServiceError("503", service="object-store")] * 3)

    async def flaky_put(key, data, content_type):
        error = next(failures, None)
        if error is not None:
            raise error
        return await store_put(key, data, content_type)

    object_store.put.side_effect = flaky_put
    item = make_item()

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_APPROVED
    assert object_store.put.await_count == 4
    assert fetch_item(item.id).processing_status == PROCESSING_APPROVED


@pytest.mark.asyncio
async def test_permanent_store_failure_fails_item(
    orchestrator, make_item, db_session, fetch_item, object_store, visual
):
    object_store.put.side_effect = PermanentServiceError(
        "403", service="object-store", status_code=403
    )
    item = make_item()
    temp_path = Path(item.local_temp_path)

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_FAILED
    assert outcome.reason == ErrorKind.PERMANENT.value
    assert object_store.put.await_count == 1
    visual.analyze.assert_not_awaited()
    assert not temp_path.exists()
    assert fetch_item(item.id).durable_uri is None


@pytest.mark.asyncio
async def test_missing_temp_file_fails_with_source_missing(
    orchestrator, make_item, db_session, fetch_item, object_store, visual
):
    item = make_item(with_file=False)

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_FAILED
    stored = fetch_item(item.id)
    assert stored.rejection_reason == ErrorKind.SOURCE_MISSING.value
    object_store.put.assert_not_awaited()
    visual.analyze.assert_not_awaited()


@pytest.mark.asyncio
async def test_publish_failure_fails_item_without_asset(
    orchestrator, make_item, db_session, fetch_item, cdn
):
    cdn.create_asset.side_effect = TransientServiceError("502", service="cdn", status_code=502)
    item = make_item()

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_FAILED
    assert outcome.reason == ErrorKind.PUBLISH_FAILED.value
    assert cdn.create_asset.await_count == 3
    stored = fetch_item(item.id)
    assert stored.cdn_asset_id is None
    assert MediaRepository(db_session).latest_decision(item.id).outcome == DECISION_APPROVED
    assert _strike_count(db_session) == 0


@pytest.mark.asyncio
async def test_terminal_item_is_left_alone(orchestrator, make_item, object_store, visual):
    item = make_item()
    await orchestrator.process(item.id)

    again = await orchestrator.process(item.id)

    assert again.performed is False
    assert again.status == PROCESSING_APPROVED
    assert object_store.put.await_count == 1
    assert visual.analyze.await_count == 1


@pytest.mark.asyncio
async def test_item_owned_by_another_worker_is_not_touched(orchestrator, make_item, object_store):
    item = make_item(status=PROCESSING_UPLOADING_DURABLE)

    outcome = await orchestrator.process(item.id)

    assert outcome.performed is False
    assert outcome.status == PROCESSING_UPLOADING_DURABLE
    object_store.put.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_item_raises(orchestrator):
    with pytest.raises(ItemNotFoundError):
        await orchestrator.process("missing-item")


@pytest.mark.asyncio
async def test_concurrent_duplicates_have_one_effect(
    orchestrator, make_item, db_session, fetch_item, object_store, visual
):
    visual.analyze.return_value = _violent()
    item = make_item()

    outcomes = await asyncio.gather(
        orchestrator.process(item.id),
        orchestrator.process(item.id),
    )

    assert sorted(o.performed for o in outcomes) == [False, True]
    assert object_store.put.await_count == 1
    assert visual.analyze.await_count == 1
    assert _strike_count(db_session) == 1
    assert fetch_item(item.id).processing_status == PROCESSING_REJECTED


@pytest.mark.asyncio
async def test_reentry_reuses_durable_copy_and_approved_decision(
    orchestrator, make_item, db_session, fetch_item, object_store, cdn, visual, transcriber
):
    item = make_item(
        with_file=False,
        durable_uri="store://test-bucket/raw-media/reentry",
        content_hash="ab" * 32,
        recovery_attempts=1,
    )
    object_store.blobs[key_for(item.id)] = b"durable-bytes"
    db_session.add(
        ModerationDecision(
            media_item_id=item.id,
            outcome=DECISION_APPROVED,
            reasoning="No disallowed content detected",
            confidence=0.9,
            categories=[],
            attempt=0,
        )
    )
    db_session.commit()

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_APPROVED
    object_store.put.assert_not_awaited()
    visual.analyze.assert_not_awaited()
    transcriber.transcribe.assert_not_awaited()
    assert cdn.uploads[cdn.assets[asset_title_for(item.id)]] == b"durable-bytes"
    assert cdn.upload_content.await_args.kwargs["idempotency_key"] == "ab" * 32
    assert len(MediaRepository(db_session).list_decisions(item.id)) == 1


@pytest.mark.asyncio
async def test_reentry_reuses_existing_cdn_asset(orchestrator, make_item, cdn):
    item = make_item()
    cdn.assets[asset_title_for(item.id)] = "asset-from-crash"

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_APPROVED
    cdn.create_asset.assert_not_awaited()
    assert "asset-from-crash" in cdn.uploads


@pytest.mark.asyncio
async def test_reentry_reuploads_when_durable_copy_vanished(
    orchestrator, make_item, db_session, fetch_item, object_store
):
    item = make_item(durable_uri="store://test-bucket/raw-media/gone", status=PROCESSING_RECEIVED)

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_APPROVED
    object_store.exists.assert_awaited_once_with(key_for(item.id))
    assert object_store.put.await_count == 1
    assert fetch_item(item.id).durable_uri == f"store://test-bucket/{key_for(item.id)}"


def _backdate(db_session, item_id):
    db_session.execute(
        update(MediaItem)
        .where(MediaItem.id == item_id)
        .values(updated_at=utcnow() - timedelta(hours=1))
        .execution_options(synchronize_session=False)
    )
    db_session.commit()


@pytest.mark.asyncio
async def test_sweep_during_slow_publish_leaves_live_item_alone(
    orchestrator, make_item, db_session, fetch_item, cdn, visual, mocker
):
    item = make_item()
    uploading = asyncio.Event()
    release = asyncio.Event()
    record_upload = cdn.upload_content.side_effect

    async def long_analysis(source_ref):
        # Earlier steps used up more than the staleness window.
        _backdate(db_session, item.id)
        return ChannelResult.succeeded(VisualResult())

    async def slow_upload(asset_id, data, *, idempotency_key=None):
        uploading.set()
        await release.wait()
        await record_upload(asset_id, data, idempotency_key=idempotency_key)

    visual.analyze.side_effect = long_analysis
    cdn.upload_content.side_effect = slow_upload
    pool = mocker.MagicMock(spec=WorkerPool)
    sweep = RecoverySweep(pool, db_session, staleness_seconds=900, max_attempts=3)

    task = asyncio.create_task(orchestrator.process(item.id))
    await asyncio.wait_for(uploading.wait(), timeout=1.0)
    report = sweep.sweep_once()
    release.set()
    outcome = await asyncio.wait_for(task, timeout=1.0)

    assert report.rearmed == []
    pool.submit.assert_not_called()
    assert outcome.performed is True
    assert outcome.status == PROCESSING_APPROVED
    assert cdn.upload_content.await_count == 1
    assert fetch_item(item.id).recovery_attempts == 0


@pytest.mark.asyncio
async def test_worker_stops_once_its_item_was_rearmed(
    orchestrator, make_item, db_session, fetch_item, cdn
):
    item = make_item()

    async def rearmed_during_lookup(title):
        MediaRepository(db_session).compare_and_set_status(
            item.id, PROCESSING_ANALYZING, PROCESSING_RECEIVED, recovery_attempts=1
        )
        return None

    cdn.find_asset.side_effect = rearmed_during_lookup

    outcome = await orchestrator.process(item.id)

    assert outcome.performed is False
    assert outcome.status == PROCESSING_RECEIVED
    cdn.create_asset.assert_not_awaited()
    cdn.upload_content.assert_not_awaited()
    assert fetch_item(item.id).cdn_asset_id is None


@pytest.mark.asyncio
async def test_each_upload_attempt_refreshes_update_time(
    orchestrator, make_item, db_session, fetch_item, object_store
):
    item = make_item()
    seen = []
    record_put = object_store.put.side_effect

    async def put(key, data, content_type):
        seen.append(as_utc(fetch_item(item.id).updated_at))
        if len(seen) == 1:
            _backdate(db_session, item.id)
            raise TransientServiceError("store busy", service="object-store")
        return await record_put(key, data, content_type)

    object_store.put.side_effect = put

    outcome = await orchestrator.process(item.id)

    assert outcome.status == PROCESSING_APPROVED
    assert len(seen) == 2
    assert seen[1] > utcnow() - timedelta(minutes=1)
