# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from itertools import count
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RECOVERY_ENABLED", "false")
os.environ.setdefault("WORKER_COUNT", "1")

from media_gate.db.session import Base
from media_gate.db.session import get_db as app_get_session
from media_gate.main import app as fastapi_app
from media_gate.models import MediaItem
from media_gate.models.media import MEDIA_KIND_POST, PROCESSING_RECEIVED
from media_gate.services.analysis import (
    ChannelResult,
    TranscriptResult,
    VisualResult,
)
from media_gate.services.cdn import CdnPublisherClient
from media_gate.services.object_store import ObjectStoreClient
from media_gate.services.orchestrator import ModerationOrchestrator
from media_gate.services.retry import RetryPolicy
from media_gate.services.text_screening import TextScreener
from media_gate.services.transcription import TranscriptionClient
from media_gate.services.visual_analysis import VisualAnalysisClient
from media_gate.services.worker_pool import WorkerPool, get_worker_pool

TEST_DB_URL = "sqlite://"
TEST_BUCKET = "test-bucket"
GREETING = "Hello. Hi. How are you doing?"

_ITEM_COUNTER = count(1)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def mock_pool(app: FastAPI) -> Iterator[MagicMock]:
    """Replace the worker pool behind the API with a recording double."""
    pool = MagicMock(spec=WorkerPool)
    pool.submit.return_value = True
    app.dependency_overrides[get_worker_pool] = lambda: pool
    try:
        yield pool
    finally:
        app.dependency_overrides.pop(get_worker_pool, None)


@pytest.fixture()
def client(app: FastAPI, mock_pool: MagicMock) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def fetch_item(db_session: Session) -> Callable[[str], MediaItem]:
    """Return a loader for the current database state of an item."""

    def _fetch(item_id: str) -> MediaItem:
        item = db_session.get(MediaItem, item_id, populate_existing=True)
        assert item is not None
        return item

    return _fetch


@pytest.fixture()
def make_item(db_session: Session, tmp_path: Path) -> Callable[..., MediaItem]:
    """Create a persisted media item with a temp file on disk."""

    def _make(
        item_id: str | None = None,
        *,
        status: str = PROCESSING_RECEIVED,
        with_file: bool = True,
        owner_id: str = "owner-1",
        **fields: Any,
    ) -> MediaItem:
        item_id = item_id or f"item-{next(_ITEM_COUNTER)}"
        path = tmp_path / f"{item_id}.mp4"
        if with_file:
            path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + item_id.encode())
        fields.setdefault("local_temp_path", str(path))
        item = MediaItem(
            id=item_id,
            owner_id=owner_id,
            kind=fields.pop("kind", MEDIA_KIND_POST),
            processing_status=status,
            **fields,
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture()
def object_store() -> AsyncMock:
    """Object store double backed by a dict of blobs."""
    store = AsyncMock(spec=ObjectStoreClient)
    blobs: dict[str, bytes] = {}

    async def put(key: str, data: bytes, content_type: str) -> str:
        blobs[key] = data
        return f"store://{TEST_BUCKET}/{key}"

    async def exists(key: str) -> bool:
        return key in blobs

    async def get(key: str) -> bytes:
        return blobs[key]

    async def delete(key: str) -> None:
        blobs.pop(key, None)

    store.put.side_effect = put
    store.exists.side_effect = exists
    store.get.side_effect = get
    store.delete.side_effect = delete
    store.blobs = blobs
    return store


@pytest.fixture()
def cdn() -> AsyncMock:
    """CDN double that remembers assets by title."""
    publisher = AsyncMock(spec=CdnPublisherClient)
    assets: dict[str, str] = {}
    uploads: dict[str, bytes] = {}

    async def find_asset(title: str) -> str | None:
        return assets.get(title)

    async def create_asset(title: str) -> str:
        asset_id = f"asset-{len(assets) + 1}"
        assets[title] = asset_id
        return asset_id

    async def upload_content(asset_id: str, data: bytes, *, idempotency_key: str | None = None) -> None:
        uploads[asset_id] = data

    async def delete_asset(asset_id: str) -> None:
        for title, existing in list(assets.items()):
            if existing == asset_id:
                del assets[title]
        uploads.pop(asset_id, None)

    publisher.find_asset.side_effect = find_asset
    publisher.create_asset.side_effect = create_asset
    publisher.upload_content.side_effect = upload_content
    publisher.delete_asset.side_effect = delete_asset
    publisher.assets = assets
    publisher.uploads = uploads
    return publisher


@pytest.fixture()
def visual() -> AsyncMock:
    client = AsyncMock(spec=VisualAnalysisClient)
    client.analyze.return_value = ChannelResult.succeeded(VisualResult())
    return client


@pytest.fixture()
def transcriber() -> AsyncMock:
    client = AsyncMock(spec=TranscriptionClient)
    client.transcribe.return_value = ChannelResult.succeeded(
        TranscriptResult(text=GREETING, language="en", language_confidence=0.98)
    )
    return client


@pytest.fixture()
def orchestrator(
    db_session: Session,
    object_store: AsyncMock,
    cdn: AsyncMock,
    visual: AsyncMock,
    transcriber: AsyncMock,
) -> ModerationOrchestrator:
    return ModerationOrchestrator(
        object_store=object_store,
        cdn=cdn,
        visual=visual,
        transcriber=transcriber,
        screener=TextScreener(threshold=0.7, video_threshold=0.5),
        store_policy=RetryPolicy(max_attempts=5, base_delay=0.0, max_delay=0.0, jitter=0.0),
        publish_policy=RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0),
        db_session=db_session,
    )
