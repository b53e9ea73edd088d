"""Custom exceptions for Toolgate.

Every fault raised by the registry, the dispatcher and the invocation proxy is
a ``ToolgateException``. Each class carries an HTTP status for the management
API and a JSON-RPC error code for the protocol surface, so a single exception
can be rendered by either transport.
"""

from typing import Any

# JSON-RPC 2.0 reserved codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Server-defined codes
UNAUTHENTICATED = -32001
NOT_INITIALIZED = -32002
FORBIDDEN = -32003
NOT_FOUND = -32004
CONFLICT = -32009
TOOL_INVOCATION_FAILED = -32010
RATE_LIMITED = -32029


class ToolgateException(Exception):
    """Base exception class for Toolgate."""

    rpc_code: int = INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def is_client_error(self) -> bool:
        """Whether the fault was caused by the caller's input."""
        return self.status_code < 500


# Caller input faults
class InvalidContextError(ToolgateException):
    """Raised when a context type/id pair is missing, partial or malformed."""

    rpc_code = INVALID_PARAMS

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Invalid context: {reason}",
            error_code="INVALID_CONTEXT",
            status_code=400,
            details=details,
        )


class MalformedFqnError(ToolgateException):
    """Raised when a tool name does not follow the fully-qualified name grammar."""

    rpc_code = INVALID_PARAMS

    def __init__(self, name: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Malformed tool name '{name}'",
            error_code="MALFORMED_FQN",
            status_code=400,
            details=details or {"name": name},
        )


class InvalidArgumentsError(ToolgateException):
    """Raised when tool arguments or request fields fail validation."""

    rpc_code = INVALID_PARAMS

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="INVALID_ARGUMENTS",
            status_code=422,
            details=details,
        )


class InvalidSchemaError(ToolgateException):
    """Raised when a submitted JSON schema is invalid or uses unsupported keywords."""

    rpc_code = INVALID_PARAMS

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="INVALID_SCHEMA",
            status_code=422,
            details=details,
        )


class NotFoundError(ToolgateException):
    """Raised when a plugin or tool cannot be found."""

    rpc_code = NOT_FOUND

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=404,
            details=details,
        )


class ConflictError(ToolgateException):
    """Raised when a registration collides with an existing version."""

    rpc_code = CONFLICT

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="CONFLICT",
            status_code=409,
            details=details,
        )


class ForbiddenError(ToolgateException):
    """Raised on context mismatch, disabled tools or non-owner mutations."""

    rpc_code = FORBIDDEN

    def __init__(self, message: str = "Forbidden", details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="FORBIDDEN",
            status_code=403,
            details=details,
        )


class AuthenticationError(ToolgateException):
    """Raised when the API key is missing or invalid."""

    rpc_code = UNAUTHENTICATED

    def __init__(self, message: str = "Invalid or missing API key", details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="AUTHENTICATION_ERROR",
            status_code=401,
            details=details,
        )


class RateLimitExceededError(ToolgateException):
    """Raised when a caller exceeds the request ceiling for the current window."""

    rpc_code = RATE_LIMITED

    def __init__(self, retry_after_seconds: int, headers: dict[str, str] | None = None):
        self.retry_after_seconds = retry_after_seconds
        self.headers = headers or {"Retry-After": str(retry_after_seconds)}
        super().__init__(
            message=f"Rate limit exceeded, retry after {retry_after_seconds}s",
            error_code="RATE_LIMITED",
            status_code=429,
            details={"retry_after_seconds": retry_after_seconds},
        )


class NotInitializedError(ToolgateException):
    """Raised when a session calls tool methods before ``initialize``."""

    rpc_code = NOT_INITIALIZED

    def __init__(self, method: str):
        super().__init__(
            message=f"Session not initialized, cannot call '{method}'",
            error_code="NOT_INITIALIZED",
            status_code=400,
            details={"method": method},
        )


# Upstream faults. Detail stays in server logs, callers see one generic message.
class UpstreamFailure(ToolgateException):
    """Base class for failures of an externally hosted tool endpoint."""

    rpc_code = TOOL_INVOCATION_FAILED
    public_message = "Tool invocation failed"

    def __init__(self, message: str, error_code: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=502,
            details=details,
        )


class UpstreamTimeoutError(UpstreamFailure):
    """Raised when the upstream endpoint does not answer within the timeout."""

    def __init__(self, endpoint_url: str, timeout_seconds: float):
        super().__init__(
            message=f"Upstream endpoint {endpoint_url} timed out after {timeout_seconds}s",
            error_code="UPSTREAM_TIMEOUT",
            details={"endpoint_url": endpoint_url, "timeout_seconds": timeout_seconds},
        )
        self.status_code = 504


class UpstreamUnreachableError(UpstreamFailure):
    """Raised on DNS, connection or TLS failures."""

    def __init__(self, endpoint_url: str, reason: str):
        super().__init__(
            message=f"Upstream endpoint {endpoint_url} unreachable: {reason}",
            error_code="UPSTREAM_UNREACHABLE",
            details={"endpoint_url": endpoint_url, "reason": reason},
        )


class UpstreamError(UpstreamFailure):
    """Raised when the upstream endpoint answers with a non-success status or bad payload."""

    def __init__(self, endpoint_url: str, reason: str, upstream_status: int | None = None):
        self.upstream_status = upstream_status
        super().__init__(
            message=f"Upstream endpoint {endpoint_url} failed: {reason}",
            error_code="UPSTREAM_ERROR",
            details={"endpoint_url": endpoint_url, "upstream_status": upstream_status, "reason": reason},
        )


class UpstreamSchemaViolationError(UpstreamFailure):
    """Raised when an upstream result does not match the plugin's output schema."""

    def __init__(self, fqn: str, errors: list[str]):
        super().__init__(
            message=f"Result of '{fqn}' violates its output schema",
            error_code="UPSTREAM_SCHEMA_VIOLATION",
            details={"fqn": fqn, "errors": errors},
        )


class InternalError(ToolgateException):
    """Raised for storage or serialization faults that are not the caller's doing."""

    rpc_code = INTERNAL_ERROR

    def __init__(self, message: str = "Internal error", details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="INTERNAL_ERROR",
            status_code=500,
            details=details,
        )
