"""Tests for exception classes and protocol error mapping."""

import asyncio

import pytest

from canvas_mcp.errors import (
    CanvasAPIError,
    CanvasAuthenticationError,
    CanvasForbiddenError,
    CanvasNetworkError,
    CanvasNotFoundError,
    CanvasRateLimitError,
    ParameterValidationError,
    ToolTimeoutError,
    map_exception,
)
from canvas_mcp.protocol.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    UPSTREAM_REJECTED,
    UPSTREAM_UNAVAILABLE,
    JsonRpcError,
)


class TestMapValidationErrors:
    """Tests for argument failures."""

    def test_parameter_error_becomes_invalid_params(self):
        """Should carry field, expected and actual in data."""
        error = map_exception(ParameterValidationError("course_identifier", "string", "array"))

        assert error.code == INVALID_PARAMS
        assert error.data == {"field": "course_identifier", "expected": "string", "actual": "array"}
        assert "course_identifier" in error.message

    def test_protocol_errors_pass_through(self):
        """Should return an existing JsonRpcError unchanged."""
        original = JsonRpcError(METHOD_NOT_FOUND, "Tool not found: x")
        assert map_exception(original) is original


class TestMapTimeouts:
    """Tests for timeouts."""

    def test_tool_timeout_is_retryable_unavailable(self):
        """Should map a tool timeout to UPSTREAM_UNAVAILABLE."""
        error = map_exception(ToolTimeoutError("list_courses", 30))

        assert error.code == UPSTREAM_UNAVAILABLE
        assert error.data == {"retryable": True, "tool": "list_courses"}
        assert "30s" in error.message

    def test_asyncio_timeout_is_unavailable(self):
        """Should map a bare asyncio timeout the same way."""
        error = map_exception(asyncio.TimeoutError())

        assert error.code == UPSTREAM_UNAVAILABLE
        assert error.data["retryable"] is True


class TestMapCanvasErrors:
    """Tests for Canvas API failures."""

    @pytest.mark.parametrize(
        "exc",
        [
            CanvasRateLimitError(retry_after=30),
            CanvasNetworkError("Request timeout: ReadTimeout"),
            CanvasAPIError("Bad gateway", status_code=502),
            CanvasAPIError("Unknown failure"),
        ],
    )
    def test_transient_failures_are_unavailable(self, exc):
        """Should map rate limits, network failures and 5xx as retryable."""
        error = map_exception(exc)

        assert error.code == UPSTREAM_UNAVAILABLE
        assert error.data["retryable"] is True

    @pytest.mark.parametrize(
        "exc,status",
        [
            (CanvasAuthenticationError(), 401),
            (CanvasForbiddenError(), 403),
            (CanvasNotFoundError(path="/courses/1"), 404),
            (CanvasAPIError("Unprocessable", status_code=422), 422),
        ],
    )
    def test_client_errors_are_rejected(self, exc, status):
        """Should map 4xx failures as not retryable."""
        error = map_exception(exc)

        assert error.code == UPSTREAM_REJECTED
        assert error.data["retryable"] is False
        assert error.data["status"] == status

    def test_rate_limit_carries_retry_after(self):
        """Should tell the caller when to retry."""
        error = map_exception(CanvasRateLimitError(retry_after=12))
        assert error.data["retryAfter"] == 12
        assert error.data["reason"] == "rate_limited"


class TestMapUnexpectedErrors:
    """Tests for failures with no specific mapping."""

    def test_unknown_exception_is_internal(self):
        """Should hide the original text behind a generic message."""
        error = map_exception(RuntimeError("secret path /etc/shadow"))

        assert error.code == INTERNAL_ERROR
        assert error.message == "Internal error"
        assert error.data is None


class TestExceptionDetails:
    """Tests for exception attributes."""

    def test_not_found_records_path(self):
        """Should keep the missing resource path."""
        error = CanvasNotFoundError(path="/courses/9")
        assert error.status_code == 404
        assert error.details == {"path": "/courses/9"}

    def test_timeout_records_tool(self):
        """Should keep tool name and limit."""
        error = ToolTimeoutError("get_course", 2.5)
        assert error.details == {"tool": "get_course", "timeout": 2.5}
