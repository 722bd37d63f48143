"""Durable object storage for raw media."""

from __future__ import annotations

import logging

import httpx

from media_gate.core.settings import settings
from media_gate.services.http import RequestParams, ServiceClient, ServiceConfig

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404
RAW_MEDIA_PREFIX = "raw-media"
URI_SCHEME = "store://"


def key_for(item_id: str) -> str:
    """Return the storage key for an item's raw bytes."""
    return f"{RAW_MEDIA_PREFIX}/{item_id}"


def load_object_store_config() -> ServiceConfig:
    """Build configuration object from global settings."""

    return ServiceConfig(
        name="object-store",
        base_url=settings.object_store_base_url,
        timeout_seconds=float(settings.object_store_http_timeout_seconds),
        api_key=settings.object_store_api_key,
    )


class ObjectStoreClient(ServiceClient):
    """Upload, check, read back and delete objects in a single bucket.

    ``put`` is idempotent: writing the same key twice leaves one object.
    ``delete`` treats an absent object as already deleted.
    """

    def __init__(
        self,
        config: ServiceConfig | None = None,
        *,
        bucket: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config or load_object_store_config(), transport=transport)
        self.bucket = bucket or settings.object_store_bucket

    def _path(self, key: str) -> str:
        return f"/{self.bucket}/{key}"

    def uri_for(self, key: str) -> str:
        return f"{URI_SCHEME}{self.bucket}/{key}"

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return its URI."""
        await self._request(
            RequestParams(
                method="PUT",
                path=self._path(key),
                content=data,
                headers={"Content-Type": content_type},
            )
        )
        logger.info("Stored %d bytes at %s/%s", len(data), self.bucket, key)
        return self.uri_for(key)

    async def exists(self, key: str) -> bool:
        response = await self._request(
            RequestParams(
                method="HEAD",
                path=self._path(key),
                expected_statuses=frozenset({HTTP_NOT_FOUND}),
            )
        )
        return response.status_code != HTTP_NOT_FOUND

    async def get(self, key: str) -> bytes:
        response = await self._request(RequestParams(method="GET", path=self._path(key)))
        return response.content

    async def delete(self, key: str) -> None:
        await self._request(
            RequestParams(
                method="DELETE",
                path=self._path(key),
                expected_statuses=frozenset({HTTP_NOT_FOUND}),
            )
        )
        logger.info("Deleted %s/%s", self.bucket, key)


class _ObjectStoreSingleton:
    """Singleton wrapper for ObjectStoreClient."""

    _instance: ObjectStoreClient | None = None

    @classmethod
    def get_instance(cls) -> ObjectStoreClient:
        if cls._instance is None:
            cls._instance = ObjectStoreClient()
        return cls._instance


def get_object_store_client() -> ObjectStoreClient:
    """Return a singleton object store client instance."""
    return _ObjectStoreSingleton.get_instance()
