"""
Standardized error model with retry semantics.

Every failure raised by the export orchestration layer is a ServiceError.
The ``retryable`` flag tells callers whether asking again later can help
(timeouts, transport failures) or whether the input or the remote data has
to change first (validation, inconsistent state, expired artifacts).
"""

from __future__ import annotations

import uuid
from typing import Any


class ServiceError(Exception):
    """Standardized service error with retry classification.

    Attributes:
        code: Error code for programmatic handling.
        message_safe: Safe message for logging and user display.
        message_debug: Optional detailed message for debugging.
        retryable: Whether this error can be retried.
        cause: Optional underlying exception.
        debug_id: Unique identifier for support tickets.
        operation: Name of the operation that failed (e.g. "submit").
        job_id: Export job identifier involved, if any.
    """

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
        debug_id: str | None = None,
        operation: str | None = None,
        job_id: str | int | None = None,
    ):
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = retryable
        self.cause = cause
        self.debug_id = debug_id or str(uuid.uuid4())[:8]
        self.operation = operation
        self.job_id = job_id

    def __str__(self) -> str:
        """Return string representation."""
        prefix = f"[{self.code}]"
        if self.operation:
            prefix += f"[{self.operation}]"
        if self.job_id is not None:
            prefix += f"[job={self.job_id}]"
        return f"{prefix} {self.message_safe}"

    def __repr__(self) -> str:
        """Return detailed representation."""
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, "
            f"operation={self.operation!r}, "
            f"job_id={self.job_id!r}, "
            f"debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging or API responses.

        Returns:
            Dictionary with error details (excludes debug info).
        """
        return {
            "code": self.code,
            "message": self.message_safe,
            "debug_id": self.debug_id,
            "operation": self.operation,
            "job_id": self.job_id,
        }

    def with_context(
        self, operation: str | None = None, job_id: str | int | None = None
    ) -> "ServiceError":
        """Fill in missing operation/job context and return self."""
        if self.operation is None:
            self.operation = operation
        if self.job_id is None:
            self.job_id = job_id
        return self


class RetryableError(ServiceError):
    """Error that indicates the operation can be retried later.

    Use this for transient failures like:
    - Network timeouts
    - Rate limiting (429)
    - Temporary service unavailability (503)
    """

    def __init__(self, code: str, message_safe: str, **kwargs: Any):
        kwargs.pop("retryable", None)
        super().__init__(code=code, message_safe=message_safe, retryable=True, **kwargs)


class TerminalError(ServiceError):
    """Error that indicates the operation should not be retried.

    Use this for permanent failures like invalid input, authorization
    failures, unknown resources or contract violations.
    """

    def __init__(self, code: str, message_safe: str, **kwargs: Any):
        kwargs.pop("retryable", None)
        super().__init__(code=code, message_safe=message_safe, retryable=False, **kwargs)


# Common error codes
class ErrorCode:
    """Standard error codes for common failure scenarios."""

    # Network/connectivity
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"

    # Authentication/Authorization
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Validation
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"

    # Remote contract
    REMOTE_ERROR = "REMOTE_ERROR"
    INCONSISTENT_STATE = "INCONSISTENT_STATE"

    # Polling
    POLL_TIMEOUT = "POLL_TIMEOUT"
    POLL_CANCELLED = "POLL_CANCELLED"

    # Artifacts
    ARTIFACT_NOT_READY = "ARTIFACT_NOT_READY"
    ARTIFACT_EXPIRED = "ARTIFACT_EXPIRED"

    # Internal
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ValidationError(TerminalError):
    """Malformed or missing input, detected before any remote call."""

    def __init__(self, message_safe: str, **kwargs: Any):
        super().__init__(code=ErrorCode.INVALID_INPUT, message_safe=message_safe, **kwargs)


class TransportError(RetryableError):
    """Network, timeout or transient remote failure."""

    def __init__(
        self,
        message_safe: str,
        code: str = ErrorCode.CONNECTION_ERROR,
        **kwargs: Any,
    ):
        super().__init__(code=code, message_safe=message_safe, **kwargs)


class RemoteApiError(TerminalError):
    """The remote API rejected the request with a ``{code, message}`` body.

    Attributes:
        remote_code: The error name reported by the remote service.
        status: HTTP status, when known.
    """

    def __init__(
        self,
        remote_code: str,
        message_safe: str,
        status: int | None = None,
        code: str = ErrorCode.REMOTE_ERROR,
        **kwargs: Any,
    ):
        super().__init__(code=code, message_safe=message_safe, **kwargs)
        self.remote_code = remote_code
        self.status = status


class NotFoundError(TerminalError):
    """The export job or allow-list entry is not known locally or remotely."""

    def __init__(self, message_safe: str, **kwargs: Any):
        super().__init__(code=ErrorCode.NOT_FOUND, message_safe=message_safe, **kwargs)


class InconsistentStateError(TerminalError):
    """A remote-reported state violates the export job state machine."""

    def __init__(self, message_safe: str, **kwargs: Any):
        super().__init__(
            code=ErrorCode.INCONSISTENT_STATE, message_safe=message_safe, **kwargs
        )


class PollTimeoutError(RetryableError):
    """The polling budget ran out while the job was still non-terminal.

    Attributes:
        last_snapshot: The last observed record, if any.
        waited_ms: Total time spent sleeping between status queries.
    """

    def __init__(
        self,
        message_safe: str,
        last_snapshot: Any = None,
        waited_ms: float = 0.0,
        **kwargs: Any,
    ):
        super().__init__(code=ErrorCode.POLL_TIMEOUT, message_safe=message_safe, **kwargs)
        self.last_snapshot = last_snapshot
        self.waited_ms = waited_ms


class PollCancelledError(RetryableError):
    """The caller cancelled polling; the job itself is unaffected."""

    def __init__(self, message_safe: str, last_snapshot: Any = None, **kwargs: Any):
        super().__init__(
            code=ErrorCode.POLL_CANCELLED, message_safe=message_safe, **kwargs
        )
        self.last_snapshot = last_snapshot


class ArtifactNotReadyError(ServiceError):
    """The job has no downloadable artifact (yet)."""

    def __init__(self, message_safe: str, retryable: bool = True, **kwargs: Any):
        super().__init__(
            code=ErrorCode.ARTIFACT_NOT_READY,
            message_safe=message_safe,
            retryable=retryable,
            **kwargs,
        )


class ArtifactExpiredError(TerminalError):
    """The artifact's validity window has elapsed."""

    def __init__(self, message_safe: str, **kwargs: Any):
        super().__init__(
            code=ErrorCode.ARTIFACT_EXPIRED, message_safe=message_safe, **kwargs
        )


# Remote error names that mean the caller sent bad input
_VALIDATION_CODES = frozenset(
    {"ValidationError", "Invalid_Key", "Invalid_Email", "invalid", "Invalid Resource"}
)
_NOT_FOUND_CODES = frozenset(
    {"Unknown_Export", "Unknown_Email", "Resource Not Found", "not_found"}
)


def map_remote_error(
    remote_code: str,
    message: str,
    status: int | None = None,
    operation: str | None = None,
    job_id: str | int | None = None,
) -> ServiceError:
    """Map a remote ``{code, message}`` error to the local taxonomy.

    Args:
        remote_code: Error name reported by the remote API.
        message: Human readable message from the remote API.
        status: HTTP status code, if known.
        operation: Operation being performed.
        job_id: Job identifier involved, if any.

    Returns:
        The ServiceError subclass matching the remote error.
    """
    context = {"operation": operation, "job_id": job_id}
    if status is not None and (status >= 500 or status == 429):
        code = ErrorCode.RATE_LIMITED if status == 429 else ErrorCode.SERVICE_UNAVAILABLE
        return TransportError(
            f"Remote service unavailable: {message}",
            code=code,
            message_debug=remote_code,
            **context,
        )
    if remote_code in _NOT_FOUND_CODES or status == 404:
        return NotFoundError(message, message_debug=remote_code, **context)
    if remote_code in _VALIDATION_CODES or status in (400, 422):
        return ValidationError(message, message_debug=remote_code, **context)
    if status == 401:
        return RemoteApiError(
            remote_code, message, status=status, code=ErrorCode.UNAUTHORIZED, **context
        )
    if status == 403:
        return RemoteApiError(
            remote_code, message, status=status, code=ErrorCode.FORBIDDEN, **context
        )
    return RemoteApiError(remote_code, message, status=status, **context)
