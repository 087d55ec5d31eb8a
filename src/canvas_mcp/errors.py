"""Exceptions and protocol error mapping.

Defines the failures raised by the Canvas client, configuration and tool
handlers, and maps any of them onto the closed set of JSON-RPC error
codes returned to callers.
"""

from __future__ import annotations

import asyncio
from typing import Any

from canvas_mcp.protocol.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    UPSTREAM_REJECTED,
    UPSTREAM_UNAVAILABLE,
    JsonRpcError,
)


class CanvasMCPError(Exception):
    """Base exception for canvas-mcp."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(CanvasMCPError):
    """Raised when configuration is invalid or missing."""

    pass


class ParameterValidationError(CanvasMCPError):
    """Raised when tool arguments do not match the declared schema."""

    def __init__(self, field: str, expected: str, actual: str, message: str | None = None):
        super().__init__(
            message or f"Invalid parameter '{field}': expected {expected}, got {actual}",
            details={"field": field, "expected": expected, "actual": actual},
        )
        self.field = field
        self.expected = expected
        self.actual = actual


class ToolTimeoutError(CanvasMCPError):
    """Raised when a tool handler exceeds its timeout."""

    def __init__(self, tool_name: str, timeout: float):
        super().__init__(
            f"Tool '{tool_name}' timed out after {timeout:g}s",
            details={"tool": tool_name, "timeout": timeout},
        )
        self.tool_name = tool_name
        self.timeout = timeout


class CanvasAPIError(CanvasMCPError):
    """Raised when a Canvas API request fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.error_code = error_code


class CanvasAuthenticationError(CanvasAPIError):
    """Raised when the Canvas API token is rejected."""

    def __init__(self, message: str = "Canvas authentication failed"):
        super().__init__(message, status_code=401, error_code="unauthorized")


class CanvasForbiddenError(CanvasAPIError):
    """Raised when the token lacks permission for a resource."""

    def __init__(self, message: str = "Access to Canvas resource is forbidden"):
        super().__init__(message, status_code=403, error_code="forbidden")


class CanvasNotFoundError(CanvasAPIError):
    """Raised when a Canvas resource does not exist."""

    def __init__(self, message: str = "Canvas resource not found", path: str | None = None):
        super().__init__(
            message,
            status_code=404,
            error_code="not_found",
            details={"path": path} if path else None,
        )


class CanvasRateLimitError(CanvasAPIError):
    """Raised when the Canvas API rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Canvas API rate limit exceeded",
        retry_after: int | None = None,
    ):
        super().__init__(message, status_code=429, error_code="rate_limited")
        self.retry_after = retry_after


class CanvasNetworkError(CanvasAPIError):
    """Raised on timeouts and connection failures reaching Canvas."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, error_code="network_error", details=details)


def _is_transient(error: CanvasAPIError) -> bool:
    if isinstance(error, CanvasRateLimitError | CanvasNetworkError):
        return True
    return error.status_code is None or error.status_code >= 500


def map_exception(error: BaseException) -> JsonRpcError:
    """Map an internal failure onto a protocol error.

    Messages are limited to what is safe to show a caller: exception text
    from unclassified failures is never forwarded.

    Args:
        error: The exception raised while handling a request.

    Returns:
        JsonRpcError carrying the protocol code, message and data.
    """
    if isinstance(error, JsonRpcError):
        return error

    if isinstance(error, ParameterValidationError):
        return JsonRpcError(INVALID_PARAMS, error.message, data=dict(error.details))

    if isinstance(error, ToolTimeoutError | asyncio.TimeoutError):
        data: dict[str, Any] = {"retryable": True}
        if isinstance(error, ToolTimeoutError):
            data["tool"] = error.tool_name
        return JsonRpcError(UPSTREAM_UNAVAILABLE, str(error) or "Request timed out", data=data)

    if isinstance(error, CanvasAPIError):
        data = {"retryable": _is_transient(error)}
        if error.status_code is not None:
            data["status"] = error.status_code
        if error.error_code:
            data["reason"] = error.error_code
        if isinstance(error, CanvasRateLimitError) and error.retry_after is not None:
            data["retryAfter"] = error.retry_after

        if _is_transient(error):
            return JsonRpcError(UPSTREAM_UNAVAILABLE, f"Canvas unavailable: {error.message}", data)
        return JsonRpcError(UPSTREAM_REJECTED, f"Canvas rejected request: {error.message}", data)

    return JsonRpcError(INTERNAL_ERROR, "Internal error")
