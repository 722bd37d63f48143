"""Client for the image/video object- and pose-detection service."""

from __future__ import annotations

import logging

import httpx

from media_gate.core.settings import settings
from media_gate.services.analysis import ChannelResult, VisualResult, run_channel
from media_gate.services.errors import ErrorKind, PermanentServiceError
from media_gate.services.http import RequestParams, ServiceClient, ServiceConfig

logger = logging.getLogger(__name__)


def load_visual_config() -> ServiceConfig:
    """Build configuration object from global settings."""

    return ServiceConfig(
        name="visual-analysis",
        base_url=settings.visual_base_url,
        timeout_seconds=float(settings.visual_http_timeout_seconds),
        api_key=settings.visual_api_key,
        shared_secret=settings.analysis_shared_secret,
        audience=settings.analysis_audience,
        token_ttl_seconds=settings.analysis_token_ttl_seconds,
    )


class VisualAnalysisClient(ServiceClient):
    """Detects disallowed categories and gestures in a stored media object."""

    def __init__(
        self,
        config: ServiceConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config or load_visual_config(), transport=transport)

    async def fetch(self, source_ref: str) -> VisualResult:
        """Call the service and parse its response; raises taxonomy errors."""
        response = await self._request(
            RequestParams(method="POST", path="/v1/analyze", json_data={"source": source_ref})
        )
        payload = self._json(response, self.name)
        if not isinstance(payload, dict):
            raise PermanentServiceError(
                "visual analysis response is not an object",
                service=self.name,
                kind=ErrorKind.MALFORMED_RESPONSE,
            )
        return VisualResult.from_payload(payload)

    async def analyze(
        self, source_ref: str, *, timeout: float | None = None
    ) -> ChannelResult[VisualResult]:
        """Analyze ``source_ref``; never raises, failures come back as ``failed``."""
        limit = timeout if timeout is not None else settings.visual_analysis_timeout_seconds
        return await run_channel("visual", lambda: self.fetch(source_ref), limit)


class _VisualAnalysisSingleton:
    """Singleton wrapper for VisualAnalysisClient."""

    _instance: VisualAnalysisClient | None = None

    @classmethod
    def get_instance(cls) -> VisualAnalysisClient:
        if cls._instance is None:
            cls._instance = VisualAnalysisClient()
        return cls._instance


def get_visual_client() -> VisualAnalysisClient:
    """Return a singleton visual analysis client instance."""
    return _VisualAnalysisSingleton.get_instance()
