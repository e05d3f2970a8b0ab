"""
Protocols for the remote request-executing capability.

The orchestration layer never talks HTTP itself. It hands an Endpoint and a
JSON-compatible payload to a RequestPerformer, which returns the decoded
response body or raises a ServiceError (TransportError for network
failures, a mapped remote error for ``{code, message}`` rejections).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, NamedTuple, Protocol, runtime_checkable


class ExportApi(str, Enum):
    """The two remote APIs. Their job identifier spaces never mix."""

    TRANSACTIONAL = "transactional"
    MARKETING = "marketing"


class Endpoint(NamedTuple):
    """A remote operation: which API, which HTTP method, which path."""

    api: ExportApi
    method: str
    path: str

    def with_path(self, **params: Any) -> "Endpoint":
        """Return a copy with ``{placeholders}`` in the path filled in."""
        return self._replace(path=self.path.format(**params))


class Endpoints:
    """Endpoints used by the export and allow-list components."""

    # Transactional exports
    EXPORT_ACTIVITY = Endpoint(ExportApi.TRANSACTIONAL, "POST", "/exports/activity")
    EXPORT_REJECTS = Endpoint(ExportApi.TRANSACTIONAL, "POST", "/exports/rejects")
    EXPORT_ALLOWLIST = Endpoint(ExportApi.TRANSACTIONAL, "POST", "/exports/allowlist")
    EXPORT_INFO = Endpoint(ExportApi.TRANSACTIONAL, "POST", "/exports/info")
    EXPORT_LIST = Endpoint(ExportApi.TRANSACTIONAL, "POST", "/exports/list")

    # Allow-list
    ALLOWLIST_ADD = Endpoint(ExportApi.TRANSACTIONAL, "POST", "/allowlists/add")
    ALLOWLIST_DELETE = Endpoint(ExportApi.TRANSACTIONAL, "POST", "/allowlists/delete")
    ALLOWLIST_LIST = Endpoint(ExportApi.TRANSACTIONAL, "POST", "/allowlists/list")

    # Marketing account exports
    ACCOUNT_EXPORT_CREATE = Endpoint(ExportApi.MARKETING, "POST", "/account-exports")
    ACCOUNT_EXPORT_INFO = Endpoint(
        ExportApi.MARKETING, "GET", "/account-exports/{export_id}"
    )
    ACCOUNT_EXPORT_LIST = Endpoint(ExportApi.MARKETING, "GET", "/account-exports")


@runtime_checkable
class RequestPerformer(Protocol):
    """Protocol for the transport that executes remote requests."""

    async def perform_request(
        self, endpoint: Endpoint, payload: dict[str, Any] | None = None
    ) -> Any:
        """
        Execute a single remote request.

        Args:
            endpoint: The remote operation to call.
            payload: Request body (POST) or query parameters (GET).

        Returns:
            The decoded JSON response body.

        Raises:
            TransportError: Network or transient remote failure.
            ServiceError: The remote API rejected the request.
        """
        ...
