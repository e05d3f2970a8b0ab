"""
httpx-backed RequestPerformer for the transactional and marketing APIs.

This module provides a pooled HTTP client that injects credentials for the
API an Endpoint belongs to and converts failures into the local error
taxonomy. It does not retry: whether a call may be repeated is decided by
the component issuing it.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from .errors import ErrorCode, ServiceError, TransportError, map_remote_error
from .protocols import Endpoint, ExportApi
from .retry import RetryPolicy


class ApiHttpClient:
    """Shared HTTP client implementing the RequestPerformer protocol.

    Features:
    - Connection pooling via httpx.AsyncClient
    - API key injection (request body for transactional, basic auth for marketing)
    - Transient status classification (429, 502, 503, 504 and other 5xx)
    - Structured error conversion

    Example:
        async with ApiHttpClient.from_settings() as client:
            job = await client.perform_request(Endpoints.EXPORT_INFO, {"id": "abc"})
    """

    def __init__(
        self,
        transactional_url: str,
        marketing_url: str,
        transactional_key: str = "",
        marketing_key: str = "",
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        max_connections: int = 100,
        max_keepalive: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the HTTP client.

        Args:
            transactional_url: Base URL of the transactional API.
            marketing_url: Base URL of the marketing API.
            transactional_key: API key sent in every transactional request body.
            marketing_key: API key used for marketing basic auth.
            timeout: Default timeout in seconds.
            retry_policy: Policy whose ``transient_statuses`` marks transient statuses.
            max_connections: Maximum total connections in pool.
            max_keepalive: Maximum keepalive connections.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.base_urls = {
            ExportApi.TRANSACTIONAL: transactional_url.rstrip("/"),
            ExportApi.MARKETING: marketing_url.rstrip("/"),
        }
        self._keys = {
            ExportApi.TRANSACTIONAL: transactional_key,
            ExportApi.MARKETING: marketing_key,
        }
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()

        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
            keepalive_expiry=30.0,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, **overrides: Any) -> "ApiHttpClient":
        """Build a client from the global settings."""
        from mailexport_core.config import settings

        kwargs: dict[str, Any] = {
            "transactional_url": settings.TRANSACTIONAL_API_URL,
            "marketing_url": settings.MARKETING_API_URL,
            "transactional_key": settings.TRANSACTIONAL_API_KEY,
            "marketing_key": settings.MARKETING_API_KEY,
            "timeout": settings.HTTP_TIMEOUT_SECONDS,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=self._limits,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ApiHttpClient":
        """Enter async context manager."""
        await self._get_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context manager."""
        await self.close()

    def _build_url(self, endpoint: Endpoint) -> str:
        """Build full URL for an endpoint.

        Args:
            endpoint: Endpoint whose path may or may not start with a slash.

        Returns:
            Full URL including the API's base URL.
        """
        path = endpoint.path.lstrip("/")
        return f"{self.base_urls[endpoint.api]}/{path}"

    def _request_kwargs(
        self, endpoint: Endpoint, payload: dict[str, Any] | None
    ) -> dict[str, Any]:
        body = dict(payload or {})
        if endpoint.api is ExportApi.TRANSACTIONAL:
            return {"json": {"key": self._keys[endpoint.api], **body}}

        kwargs: dict[str, Any] = {"auth": ("anystring", self._keys[endpoint.api])}
        if endpoint.method == "GET":
            kwargs["params"] = body
        else:
            kwargs["json"] = body
        return kwargs

    async def perform_request(
        self, endpoint: Endpoint, payload: dict[str, Any] | None = None
    ) -> Any:
        """Execute one request and return the decoded JSON body.

        Args:
            endpoint: The remote operation.
            payload: Body (POST) or query parameters (GET).

        Returns:
            The decoded JSON response.

        Raises:
            TransportError: Timeouts, connection failures, transient statuses.
            ServiceError: Mapped remote rejections (validation, not found, ...).
        """
        client = await self._get_client()
        url = self._build_url(endpoint)
        label = f"{endpoint.method} {endpoint.path}"

        try:
            response = await client.request(
                method=endpoint.method,
                url=url,
                **self._request_kwargs(endpoint, payload),
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                f"Request timed out after {self.timeout}s",
                code=ErrorCode.TIMEOUT,
                message_debug=label,
                cause=e,
            )
        except httpx.TransportError as e:
            raise TransportError(
                "Failed to connect to service",
                code=ErrorCode.CONNECTION_ERROR,
                message_debug=f"{label}: {e}",
                cause=e,
            )

        logger.debug(f"{label} -> {response.status_code}")

        if response.status_code >= 400:
            raise self._convert_error(response)

        try:
            return response.json()
        except ValueError as e:
            raise ServiceError(
                code=ErrorCode.INTERNAL_ERROR,
                message_safe="Response body is not valid JSON",
                message_debug=response.text[:500] if response.text else None,
                cause=e,
            )

    def _convert_error(self, response: httpx.Response) -> ServiceError:
        """Turn an error response into a ServiceError.

        The transactional API reports every failure as
        ``{"status": "error", "code", "name", "message"}`` (usually with HTTP
        500); the marketing API uses problem-details bodies
        ``{"type", "title", "status", "detail"}``.
        """
        status = response.status_code
        if self.retry_policy.is_transient_status(status):
            return TransportError(
                f"Service returned {status}",
                code=ErrorCode.RATE_LIMITED if status == 429 else ErrorCode.SERVICE_UNAVAILABLE,
                message_debug=response.text[:500] if response.text else None,
            )

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            text = response.text[:500] if response.text else f"HTTP {status}"
            return map_remote_error(f"HTTP_{status}", text, status=status)

        if body.get("status") == "error" and "name" in body:
            name = str(body["name"])
            message = str(body.get("message") or name)
            # GeneralError is the transactional API's transient failure
            mapped_status = 503 if name == "GeneralError" else None
            return map_remote_error(name, message, status=mapped_status)

        remote_code = str(body.get("title") or body.get("code") or f"HTTP_{status}")
        message = str(body.get("detail") or body.get("message") or remote_code)
        return map_remote_error(remote_code, message, status=status)
