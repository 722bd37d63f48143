"""CDN publisher for approved media (Bunny Stream style library API)."""

from __future__ import annotations

import logging

import httpx

from media_gate.core.settings import settings
from media_gate.services.errors import ErrorKind, PermanentServiceError
from media_gate.services.http import RequestParams, ServiceClient, ServiceConfig

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


def asset_title_for(item_id: str) -> str:
    """Deterministic asset title used to find an asset created by an earlier attempt."""
    return f"media-{item_id}"


def load_cdn_config() -> ServiceConfig:
    """Build configuration object from global settings."""

    return ServiceConfig(
        name="cdn",
        base_url=settings.cdn_base_url,
        timeout_seconds=float(settings.cdn_http_timeout_seconds),
        api_key=settings.cdn_api_key,
    )


class CdnPublisherClient(ServiceClient):
    """Creates streamable assets in one video library."""

    def __init__(
        self,
        config: ServiceConfig | None = None,
        *,
        library_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config or load_cdn_config(), transport=transport)
        self.library_id = library_id or settings.cdn_library_id

    def _build_auth_headers(self, *, idempotency_key: str | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.config.api_key:
            headers["AccessKey"] = self.config.api_key
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _videos_path(self, asset_id: str | None = None) -> str:
        path = f"/library/{self.library_id}/videos"
        return f"{path}/{asset_id}" if asset_id else path

    async def create_asset(self, title: str) -> str:
        """Create an empty asset and return its playback identifier."""
        response = await self._request(
            RequestParams(method="POST", path=self._videos_path(), json_data={"title": title})
        )
        payload = self._json(response, self.name)
        asset_id = payload.get("guid") if isinstance(payload, dict) else None
        if not asset_id:
            raise PermanentServiceError(
                "CDN create response carried no asset id",
                service=self.name,
                kind=ErrorKind.MALFORMED_RESPONSE,
            )
        logger.info("Created CDN asset %s (%s)", asset_id, title)
        return str(asset_id)

    async def find_asset(self, title: str) -> str | None:
        """Return the id of an existing asset with exactly ``title``, if any."""
        response = await self._request(
            RequestParams(
                method="GET",
                path=self._videos_path(),
                params={"search": title, "itemsPerPage": 10},
            )
        )
        payload = self._json(response, self.name)
        items = payload.get("items", []) if isinstance(payload, dict) else []
        for item in items:
            if item.get("title") == title and item.get("guid"):
                return str(item["guid"])
        return None

    async def upload_content(
        self, asset_id: str, data: bytes, *, idempotency_key: str | None = None
    ) -> None:
        await self._request(
            RequestParams(
                method="PUT",
                path=self._videos_path(asset_id),
                content=data,
                headers={"Content-Type": "application/octet-stream"},
                idempotency_key=idempotency_key,
            )
        )
        logger.info("Uploaded %d bytes to CDN asset %s", len(data), asset_id)

    async def delete_asset(self, asset_id: str) -> None:
        await self._request(
            RequestParams(
                method="DELETE",
                path=self._videos_path(asset_id),
                expected_statuses=frozenset({HTTP_NOT_FOUND}),
            )
        )
        logger.info("Deleted CDN asset %s", asset_id)


class _CdnPublisherSingleton:
    """Singleton wrapper for CdnPublisherClient."""

    _instance: CdnPublisherClient | None = None

    @classmethod
    def get_instance(cls) -> CdnPublisherClient:
        if cls._instance is None:
            cls._instance = CdnPublisherClient()
        return cls._instance


def get_cdn_client() -> CdnPublisherClient:
    """Return a singleton CDN publisher client instance."""
    return _CdnPublisherSingleton.get_instance()
