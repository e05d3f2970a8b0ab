"""
Runtime layer for mailexport.

This package provides shared infrastructure for talking to the remote APIs:
- ServiceError hierarchy: Standardized errors with retry semantics
- RequestPerformer / Endpoint: The transport seam used by every component
- ApiHttpClient: Pooled async httpx implementation of RequestPerformer
- RetryPolicy: Configurable retry behavior for idempotent operations
"""

from .errors import (
    ArtifactExpiredError,
    ArtifactNotReadyError,
    ErrorCode,
    InconsistentStateError,
    NotFoundError,
    PollCancelledError,
    PollTimeoutError,
    RemoteApiError,
    RetryableError,
    ServiceError,
    TerminalError,
    TransportError,
    ValidationError,
)
from .http_client import ApiHttpClient
from .protocols import Endpoint, Endpoints, ExportApi, RequestPerformer
from .retry import RetryPolicy, wait_or_cancel, with_retry

__all__ = [
    "ApiHttpClient",
    "ArtifactExpiredError",
    "ArtifactNotReadyError",
    "Endpoint",
    "Endpoints",
    "ErrorCode",
    "ExportApi",
    "InconsistentStateError",
    "NotFoundError",
    "PollCancelledError",
    "PollTimeoutError",
    "RemoteApiError",
    "RequestPerformer",
    "RetryPolicy",
    "RetryableError",
    "ServiceError",
    "TerminalError",
    "TransportError",
    "ValidationError",
    "wait_or_cancel",
    "with_retry",
]
