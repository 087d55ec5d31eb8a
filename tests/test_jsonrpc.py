"""Tests for the JSON-RPC 2.0 codec."""

import json

import pytest

from canvas_mcp.protocol.identifier import Identifier
from canvas_mcp.protocol.jsonrpc import (
    ERROR_NAMES,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    UPSTREAM_REJECTED,
    UPSTREAM_UNAVAILABLE,
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    format_error,
    format_notification,
    format_response,
    parse_message,
)


def decode_error(raw: str) -> JsonRpcError:
    with pytest.raises(JsonRpcError) as exc_info:
        parse_message(raw)
    return exc_info.value


class TestDecodeRequests:
    """Tests for messages that carry an id."""

    def test_tool_call_request(self):
        """Should decode id, method and params."""
        msg = parse_message(
            '{"jsonrpc": "2.0", "id": 4, "method": "tools/call",'
            ' "params": {"name": "get_course", "arguments": {"course_identifier": 1}}}'
        )

        assert isinstance(msg, JsonRpcRequest)
        assert msg.id == 4
        assert msg.method == "tools/call"
        assert msg.params["name"] == "get_course"

    def test_text_id_and_missing_params(self):
        """Should keep text ids and leave params unset."""
        msg = parse_message('{"jsonrpc": "2.0", "id": "abc-1", "method": "ping"}')

        assert msg.id == "abc-1"
        assert msg.params is None

    def test_integral_float_id_is_kept_as_sent(self):
        """Should accept 5.0 and echo it unchanged, while matching the id 5."""
        msg = parse_message('{"jsonrpc": "2.0", "id": 5.0, "method": "ping"}')

        assert isinstance(msg.id, float)
        assert msg.identifier == Identifier(5)
        assert json.loads(format_response(msg.id, {}))["id"] == 5.0
        assert '"id": 5.0' in format_response(msg.id, {})

    def test_identifier_matches_other_spelling(self):
        """Should expose an id equal to its text spelling."""
        msg = parse_message('{"jsonrpc": "2.0", "id": 7, "method": "ping"}')

        assert msg.identifier == Identifier("7")

    @pytest.mark.parametrize("bad_id", [True, None, 1.5, -3, "", {"n": 1}, [1]])
    def test_rejects_unusable_ids(self, bad_id):
        """Should refuse ids that are not text or non-negative integers."""
        error = decode_error(json.dumps({"jsonrpc": "2.0", "id": bad_id, "method": "ping"}))

        assert error.code == INVALID_REQUEST


class TestDecodeNotifications:
    """Tests for messages without an id."""

    def test_cancellation_notification(self):
        """Should decode a notification with params."""
        msg = parse_message(
            '{"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"requestId": 4}}'
        )

        assert isinstance(msg, JsonRpcNotification)
        assert msg.method == "notifications/cancelled"
        assert msg.params == {"requestId": 4}


class TestDecodeFailures:
    """Tests for malformed frames and envelopes."""

    @pytest.mark.parametrize(
        "raw",
        [
            "not valid json{",
            '{"jsonrpc": "2.0", "id": 3, "meth',
            "",
        ],
    )
    def test_malformed_json_is_parse_error(self, raw):
        """Should report unparseable frames as ParseError with no id."""
        error = decode_error(raw)

        assert error.code == PARSE_ERROR
        assert error.request_id is None

    @pytest.mark.parametrize(
        "message",
        [
            {"id": 1, "method": "ping"},
            {"jsonrpc": "1.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "id": 1},
            {"jsonrpc": "2.0", "id": 1, "method": ""},
            {"jsonrpc": "2.0", "id": 1, "method": 42},
            {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": [1, 2]},
        ],
    )
    def test_bad_envelope_is_invalid_request(self, message):
        """Should reject envelopes missing required members."""
        error = decode_error(json.dumps(message))

        assert error.code == INVALID_REQUEST
        assert error.request_id == 1

    @pytest.mark.parametrize("raw", ['"text"', "42", "[]", '[{"jsonrpc": "2.0", "method": "ping"}]'])
    def test_non_object_is_invalid_request(self, raw):
        """Should reject scalars and batches."""
        assert decode_error(raw).code == INVALID_REQUEST

    def test_deeply_nested_frame_is_parse_error(self):
        """Should report nesting beyond the decoder's depth as ParseError."""
        error = decode_error("[" * 100_000)

        assert error.code == PARSE_ERROR
        assert error.request_id is None

    def test_oversized_frame_is_parse_error(self):
        """Should refuse frames over 1 MiB before decoding."""
        raw = json.dumps(
            {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {"pad": "x" * 1_048_600}}
        )

        error = decode_error(raw)

        assert error.code == PARSE_ERROR
        assert "too large" in error.message

    def test_large_frame_under_limit(self):
        """Should decode frames below the limit."""
        raw = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {"pad": "x" * 500_000}})

        assert isinstance(parse_message(raw), JsonRpcRequest)


class TestEncode:
    """Tests for response and notification encoding."""

    def test_success_response(self):
        """Should echo the id and carry only a result."""
        assert json.loads(format_response("r-1", {"tools": []})) == {
            "jsonrpc": "2.0",
            "id": "r-1",
            "result": {"tools": []},
        }

    def test_error_response_with_data(self):
        """Should carry code, message and data, and no result."""
        decoded = json.loads(format_error(3, INVALID_PARAMS, "Bad", {"field": "course_identifier"}))

        assert decoded == {
            "jsonrpc": "2.0",
            "id": 3,
            "error": {"code": INVALID_PARAMS, "message": "Bad", "data": {"field": "course_identifier"}},
        }

    def test_error_response_without_id(self):
        """Should encode a null id for uncorrelated errors."""
        decoded = json.loads(format_error(None, PARSE_ERROR, "Parse error"))

        assert decoded["id"] is None
        assert "data" not in decoded["error"]

    def test_notification(self):
        """Should encode notifications without an id."""
        assert json.loads(format_notification("notifications/tools/list_changed")) == {
            "jsonrpc": "2.0",
            "method": "notifications/tools/list_changed",
        }
        assert json.loads(format_notification("x", {"a": 1}))["params"] == {"a": 1}


class TestJsonRpcErrorClass:
    """Tests for the JsonRpcError exception."""

    def test_attributes(self):
        """Should keep code, message, data and id."""
        error = JsonRpcError(METHOD_NOT_FOUND, "Tool not found: x", {"tool": "x"}, request_id=8)

        assert str(error) == "Tool not found: x"
        assert error.to_dict() == {
            "code": METHOD_NOT_FOUND,
            "message": "Tool not found: x",
            "data": {"tool": "x"},
        }
        assert error.request_id == 8

    def test_error_codes_are_distinct(self):
        """Should give every error kind its own code and name."""
        assert len(set(ERROR_NAMES.values())) == len(ERROR_NAMES) == 7
        assert ERROR_NAMES[UPSTREAM_UNAVAILABLE] == "UpstreamUnavailable"
        assert ERROR_NAMES[UPSTREAM_REJECTED] == "UpstreamRejected"
