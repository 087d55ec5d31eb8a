"""MCP lifecycle management.

Handles the initialize handshake and the shutdown sequence, and tracks
connection state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Supported MCP protocol versions (oldest first)
SUPPORTED_PROTOCOL_VERSIONS = ["2024-11-05", "2025-03-26", "2025-06-18"]
# Version advertised when the client asks for one we do not know
MCP_PROTOCOL_VERSION = "2024-11-05"


class LifecycleState(Enum):
    """MCP connection lifecycle states."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


class ProtocolError(Exception):
    """Raised when protocol constraints are violated."""

    pass


@dataclass
class LifecycleManager:
    """Manages MCP connection lifecycle.

    ``UNINITIALIZED -> READY -> SHUTTING_DOWN -> CLOSED``. The state only
    moves forward.
    """

    server_info: dict[str, str] = field(
        default_factory=lambda: {"name": "canvas-mcp", "version": "0.1.0"}
    )
    capabilities: dict[str, Any] = field(default_factory=lambda: {"tools": {"listChanged": False}})
    state: LifecycleState = LifecycleState.UNINITIALIZED
    protocol_version: str | None = None
    client_info: dict[str, str] | None = None
    client_capabilities: dict[str, Any] | None = None

    @property
    def is_ready(self) -> bool:
        """Check if the connection is ready for operations."""
        return self.state == LifecycleState.READY

    @property
    def is_shutting_down(self) -> bool:
        """True once shutdown has been requested."""
        return self.state in (LifecycleState.SHUTTING_DOWN, LifecycleState.CLOSED)

    @property
    def connected_client(self) -> dict[str, str] | None:
        """Get information about the connected client.

        Returns:
            Client info dict with 'name' and 'version', or None if not initialized.
        """
        return self.client_info

    def require_ready(self) -> None:
        """Assert that the connection is ready.

        Raises:
            ProtocolError: If not ready for operations.
        """
        if self.is_shutting_down:
            raise ProtocolError("Server is shutting down")
        if self.state != LifecycleState.READY:
            raise ProtocolError("Server not initialized")

    def negotiate_version(self, requested: str | None) -> str:
        """Pick the protocol version to answer with.

        Args:
            requested: Version the client asked for.

        Returns:
            The requested version if supported, else the default.
        """
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            return requested
        return MCP_PROTOCOL_VERSION

    def handle_initialize(
        self, params: dict[str, Any], instructions: str | None = None
    ) -> dict[str, Any]:
        """Handle initialize request.

        Args:
            params: Initialize request parameters.
            instructions: Optional human-readable server instructions.

        Returns:
            Initialize response result.

        Raises:
            ProtocolError: If already initialized or shutting down.
        """
        if self.is_shutting_down:
            raise ProtocolError("Server is shutting down")
        if self.state != LifecycleState.UNINITIALIZED:
            raise ProtocolError("Server already initialized")

        self.protocol_version = self.negotiate_version(params.get("protocolVersion"))
        self.client_info = params.get("clientInfo")
        self.client_capabilities = params.get("capabilities", {})

        self.state = LifecycleState.READY

        result: dict[str, Any] = {
            "protocolVersion": self.protocol_version,
            "capabilities": self.capabilities,
            "serverInfo": self.server_info,
        }
        if instructions:
            result["instructions"] = instructions
        return result

    def handle_shutdown(self) -> None:
        """Handle shutdown request or notification."""
        if self.state != LifecycleState.CLOSED:
            self.state = LifecycleState.SHUTTING_DOWN

    def close(self) -> None:
        """Mark the connection closed once in-flight work has drained."""
        self.state = LifecycleState.CLOSED
