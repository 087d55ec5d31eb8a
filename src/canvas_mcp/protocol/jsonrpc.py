"""JSON-RPC 2.0 codec for MCP over stdio.

Decodes one frame into a request or notification, and encodes responses,
error responses and server notifications. Decoding failures carry the
request id whenever it can be recovered so the error stays correlated.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from canvas_mcp.protocol.identifier import Identifier, IdentifierError

JSONRPC_VERSION = "2.0"

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Server-defined codes for upstream (Canvas API) failures
UPSTREAM_UNAVAILABLE = -32001
UPSTREAM_REJECTED = -32002

ERROR_NAMES = {
    PARSE_ERROR: "ParseError",
    INVALID_REQUEST: "InvalidRequest",
    METHOD_NOT_FOUND: "MethodNotFound",
    INVALID_PARAMS: "InvalidParams",
    INTERNAL_ERROR: "InternalError",
    UPSTREAM_UNAVAILABLE: "UpstreamUnavailable",
    UPSTREAM_REJECTED: "UpstreamRejected",
}

# Frames above 1 MiB are refused before decoding
MAX_MESSAGE_SIZE = 1_048_576

# Integral floats (5.0) are accepted and echoed as sent
RequestId = int | float | str


class JsonRpcError(Exception):
    """A protocol-level failure, sent back to the client as an error object."""

    def __init__(
        self,
        code: int,
        message: str,
        data: Any | None = None,
        request_id: RequestId | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            code: Error code from the closed set above.
            message: Short, caller-safe description.
            data: Structured detail (field names, retry hints).
            request_id: Id of the offending request, when it could be recovered.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data
        self.request_id = request_id

    def to_dict(self) -> dict[str, Any]:
        """The ``error`` member of a response."""
        return _error_object(self.code, self.message, self.data)


@dataclass
class JsonRpcRequest:
    """A message that expects exactly one response."""

    id: RequestId
    method: str
    params: dict[str, Any] | None = None

    @property
    def identifier(self) -> Identifier:
        """Request id as a canonical Identifier."""
        return Identifier.parse(self.id)


@dataclass
class JsonRpcNotification:
    """A message without an id; never answered."""

    method: str
    params: dict[str, Any] | None = None


def _recover_id(data: dict[str, Any]) -> RequestId | None:
    """Return the request id if it is usable for correlating an error."""
    msg_id = data.get("id")
    try:
        Identifier.parse(msg_id)
    except IdentifierError:
        return None
    return msg_id


def _decode(raw: str) -> dict[str, Any]:
    if len(raw) > MAX_MESSAGE_SIZE:
        raise JsonRpcError(
            PARSE_ERROR, f"Message too large: {len(raw)} bytes exceeds {MAX_MESSAGE_SIZE} limit"
        )
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise JsonRpcError(PARSE_ERROR, f"Parse error: {e.msg} at position {e.pos}") from e
    except (RecursionError, ValueError) as e:
        # Nesting too deep for the decoder, or a number it refuses to convert
        raise JsonRpcError(PARSE_ERROR, f"Parse error: {type(e).__name__}") from e

    if not isinstance(data, dict):
        kind = "array (batches are not supported)" if isinstance(data, list) else "not an object"
        raise JsonRpcError(INVALID_REQUEST, f"Invalid Request: message is {kind}")
    return data


def _check_envelope(data: dict[str, Any]) -> None:
    """Verify version, method and params. Raises JsonRpcError(INVALID_REQUEST)."""
    problem = None
    if data.get("jsonrpc") != JSONRPC_VERSION:
        problem = "jsonrpc must be '2.0'"
    elif not isinstance(data.get("method"), str) or not data["method"]:
        problem = "method must be a non-empty string"
    elif data.get("params") is not None and not isinstance(data["params"], dict):
        problem = "params must be an object"

    if problem:
        raise JsonRpcError(
            INVALID_REQUEST, f"Invalid Request: {problem}", request_id=_recover_id(data)
        )


def parse_message(raw: str) -> JsonRpcRequest | JsonRpcNotification:
    """Decode one frame.

    Args:
        raw: Frame text.

    Returns:
        JsonRpcRequest when the message has an id, else JsonRpcNotification.

    Raises:
        JsonRpcError: PARSE_ERROR for oversized or malformed JSON,
            INVALID_REQUEST for a well-formed but invalid envelope.
    """
    data = _decode(raw)
    _check_envelope(data)
    method: str = data["method"]
    params = data.get("params")

    if "id" not in data:
        return JsonRpcNotification(method=method, params=params)

    msg_id = data["id"]
    try:
        Identifier.parse(msg_id)
    except IdentifierError as e:
        raise JsonRpcError(INVALID_REQUEST, f"Invalid Request: bad id ({e})") from e
    return JsonRpcRequest(id=msg_id, method=method, params=params)


def _error_object(code: int, message: str, data: Any | None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return error


def _encode(**members: Any) -> str:
    return json.dumps({"jsonrpc": JSONRPC_VERSION, **members})


def format_response(msg_id: RequestId, result: Any) -> str:
    """Encode a success response echoing the request id."""
    return _encode(id=msg_id, result=result)


def format_error(
    msg_id: RequestId | None,
    code: int,
    message: str,
    data: Any | None = None,
) -> str:
    """Encode an error response.

    Args:
        msg_id: Request id, or None when it could not be recovered.
        code: Error code.
        message: Caller-safe message.
        data: Optional structured detail.
    """
    return _encode(id=msg_id, error=_error_object(code, message, data))


def format_notification(method: str, params: dict[str, Any] | None = None) -> str:
    """Encode a server-to-client notification."""
    if params is None:
        return _encode(method=method)
    return _encode(method=method, params=params)
