"""MCP Protocol layer for JSON-RPC communication."""

from canvas_mcp.protocol.identifier import Identifier, IdentifierError
from canvas_mcp.protocol.jsonrpc import (
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    format_error,
    format_notification,
    format_response,
    parse_message,
)
from canvas_mcp.protocol.lifecycle import (
    MCP_PROTOCOL_VERSION,
    LifecycleManager,
    LifecycleState,
    ProtocolError,
)
from canvas_mcp.protocol.transport import StdioTransport, TransportError

__all__ = [
    "Identifier",
    "IdentifierError",
    "JsonRpcError",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "LifecycleManager",
    "LifecycleState",
    "MCP_PROTOCOL_VERSION",
    "ProtocolError",
    "StdioTransport",
    "TransportError",
    "format_error",
    "format_notification",
    "format_response",
    "parse_message",
]
