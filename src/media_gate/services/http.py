"""Shared HTTP plumbing for the external service adapters.

Every adapter (object store, CDN, visual analysis, transcription) talks to its
service through ``ServiceClient``. It provides:

- A lazily created ``httpx.AsyncClient`` per adapter
- Bearer authentication with a static API key or a short-lived HS256 JWT
- A circuit breaker that fails fast while a service is unhealthy
- Translation of transport errors and HTTP statuses into the error taxonomy
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
from jose import jwt

from media_gate.core.settings import settings
from media_gate.services.errors import (
    HTTP_BAD_REQUEST,
    CircuitOpenError,
    ErrorKind,
    PermanentServiceError,
    TransientServiceError,
    error_for_status,
    is_transient_status,
)

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states for fault tolerance."""

    CLOSED = "closed"      # Normal operation - requests allowed
    OPEN = "open"          # Circuit is open - requests blocked
    HALF_OPEN = "half_open"  # Probing whether the service is back


@dataclass
class CircuitBreaker:
    """Circuit breaker guarding one external service."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 1

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        """Check if circuit is open."""
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        """Record a successful operation."""
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed operation."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    def get_state(self) -> CircuitState:
        """Get the current circuit breaker state."""
        return self._state


@dataclass(frozen=True)
class ServiceConfig:
    """Immutable connection settings for one external service."""

    name: str
    base_url: str
    timeout_seconds: float
    api_key: str | None = None
    shared_secret: str | None = None
    audience: str = "media-analysis"
    token_ttl_seconds: int = 300
    issuer: str = "media-gate"


@dataclass
class RequestParams:
    """Parameters for HTTP requests."""

    method: str
    path: str
    json_data: Any | None = None
    content: bytes | None = None
    params: Mapping[str, Any] | None = None
    headers: dict[str, str] | None = None
    idempotency_key: str | None = None
    # Non-2xx statuses the caller handles itself, e.g. 404 on an existence check.
    expected_statuses: frozenset[int] = field(default_factory=frozenset)


class ServiceClient:
    """HTTP client wrapper with authentication, circuit breaking and error mapping."""

    def __init__(
        self,
        config: ServiceConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.circuit_recovery_seconds,
        )

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def circuit_state(self) -> CircuitState:
        return self._circuit_breaker.get_state()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _build_auth_headers(self, *, idempotency_key: str | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}

        if self.config.shared_secret:
            now = int(time.time())
            payload = {
                "iss": self.config.issuer,
                "aud": self.config.audience,
                "iat": now,
                "exp": now + max(1, self.config.token_ttl_seconds),
                "jti": secrets.token_hex(8),
            }
            token = jwt.encode(payload, self.config.shared_secret, algorithm="HS256")
            headers["Authorization"] = f"Bearer {token}"
        elif self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        return headers

    async def _request(self, params: RequestParams) -> httpx.Response:
        if self._circuit_breaker.is_open():
            raise CircuitOpenError(
                f"{self.name} circuit breaker is open - service unavailable",
                service=self.name,
            )

        client = await self._ensure_client()
        headers = self._build_auth_headers(idempotency_key=params.idempotency_key)
        if params.headers:
            headers.update(params.headers)

        # httpx applies its timeout per network operation; wait_for bounds the whole call.
        try:
            response = await asyncio.wait_for(
                client.request(
                    params.method,
                    params.path,
                    json=params.json_data,
                    content=params.content,
                    params=params.params,
                    headers=headers,
                ),
                timeout=self.config.timeout_seconds,
            )
        except (httpx.TimeoutException, TimeoutError) as exc:
            self._circuit_breaker.record_failure()
            raise TransientServiceError(
                f"{self.name} request timed out: {exc}",
                service=self.name,
                kind=ErrorKind.TIMEOUT,
            ) from exc
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            raise TransientServiceError(
                f"{self.name} request failed: {exc}",
                service=self.name,
                kind=ErrorKind.NETWORK,
            ) from exc

        status_code = response.status_code
        if status_code < HTTP_BAD_REQUEST or status_code in params.expected_statuses:
            self._circuit_breaker.record_success()
            return response

        if is_transient_status(status_code):
            self._circuit_breaker.record_failure()
        else:
            # 4xx responses do not count against the breaker.
            self._circuit_breaker.record_success()
        logger.warning("%s %s %s -> %s", self.name, params.method, params.path, status_code)
        raise error_for_status(self.name, status_code, response.text[:200])

    @staticmethod
    def _json(response: httpx.Response, service: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise PermanentServiceError(
                f"{service} returned a non-JSON body",
                service=service,
                kind=ErrorKind.MALFORMED_RESPONSE,
            ) from exc

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
