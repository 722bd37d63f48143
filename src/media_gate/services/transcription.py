"""Client for the audio transcription and language detection service."""

from __future__ import annotations

import logging

import httpx

from media_gate.core.settings import settings
from media_gate.services.analysis import ChannelResult, TranscriptResult, run_channel
from media_gate.services.errors import ErrorKind, PermanentServiceError
from media_gate.services.http import RequestParams, ServiceClient, ServiceConfig

logger = logging.getLogger(__name__)


def load_transcription_config() -> ServiceConfig:
    """Build configuration object from global settings."""

    return ServiceConfig(
        name="transcription",
        base_url=settings.transcription_base_url,
        timeout_seconds=float(settings.transcription_http_timeout_seconds),
        api_key=settings.transcription_api_key,
        shared_secret=settings.analysis_shared_secret,
        audience=settings.analysis_audience,
        token_ttl_seconds=settings.analysis_token_ttl_seconds,
    )


class TranscriptionClient(ServiceClient):
    """Turns the audio track of a stored media object into text."""

    def __init__(
        self,
        config: ServiceConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config or load_transcription_config(), transport=transport)

    async def fetch(self, source_ref: str) -> TranscriptResult:
        response = await self._request(
            RequestParams(method="POST", path="/v1/transcribe", json_data={"source": source_ref})
        )
        payload = self._json(response, self.name)
        if not isinstance(payload, dict):
            raise PermanentServiceError(
                "transcription response is not an object",
                service=self.name,
                kind=ErrorKind.MALFORMED_RESPONSE,
            )
        return TranscriptResult.from_payload(payload)

    async def transcribe(
        self, source_ref: str, *, timeout: float | None = None
    ) -> ChannelResult[TranscriptResult]:
        """Transcribe ``source_ref``; never raises, failures come back as ``failed``."""
        limit = timeout if timeout is not None else settings.transcription_timeout_seconds
        return await run_channel("transcription", lambda: self.fetch(source_ref), limit)


class _TranscriptionSingleton:
    """Singleton wrapper for TranscriptionClient."""

    _instance: TranscriptionClient | None = None

    @classmethod
    def get_instance(cls) -> TranscriptionClient:
        if cls._instance is None:
            cls._instance = TranscriptionClient()
        return cls._instance


def get_transcription_client() -> TranscriptionClient:
    """Return a singleton transcription client instance."""
    return _TranscriptionSingleton.get_instance()
